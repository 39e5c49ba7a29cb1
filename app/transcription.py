"""Voice-note transcription for bookings.

Parents can record a short note about the child at booking time. The note
is transcribed with OpenAI audio transcription and handed to the voice agent
as `voice_info`. Transcription is advisory: any failure yields "".
"""

from __future__ import annotations

from app.config import config
from app.logging_config import get_logger

logger = get_logger(__name__)

# MIME type -> file extension used for the upload name and storage key.
AUDIO_EXTENSIONS = {
    "audio/webm": "webm",
    "audio/mp3": "mp3",
    "audio/mpeg": "mp3",
    "audio/wav": "wav",
    "audio/m4a": "m4a",
    "audio/ogg": "ogg",
}


def extension_for(mime_type: str) -> str:
    base = (mime_type or "").split(";")[0].strip().lower()
    return AUDIO_EXTENSIONS.get(base, "webm")


def _get_openai_client():
    from openai import OpenAI

    return OpenAI(api_key=config.OPENAI_API_KEY)


class VoiceNoteTranscriber:
    def __init__(self, model: str = ""):
        self.model = model or config.OPENAI_TRANSCRIBE_MODEL

    def transcribe(self, audio_bytes: bytes, mime_type: str = "audio/webm") -> str:
        """Transcribe audio bytes to text. Returns empty string on failure."""
        if not audio_bytes:
            return ""

        if not config.has_openai_key():
            logger.info("voice_note_transcription_skipped", reason="openai_not_configured")
            return ""

        filename = f"voice-note.{extension_for(mime_type)}"
        try:
            client = _get_openai_client()
            # The OpenAI python client accepts a (filename, bytes, mime) tuple.
            result = client.audio.transcriptions.create(
                model=self.model,
                file=(filename, audio_bytes, mime_type),
            )
        except Exception as e:
            logger.warning("voice_note_transcription_failed", error=str(e))
            return ""

        text = getattr(result, "text", None)
        if isinstance(text, str):
            return text.strip()
        if isinstance(result, dict) and isinstance(result.get("text"), str):
            return result["text"].strip()
        return ""
