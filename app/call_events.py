"""ElevenLabs post-call webhooks: transcription, audio and initiation failure.

Events are matched to Calls by conversation id. An event for a conversation
we do not know is acknowledged with a warning so the provider stops
re-delivering it.
"""

from __future__ import annotations

import base64
import binascii
from typing import Any, Optional, Protocol

from sqlalchemy.orm import Session

from app.config import config
from app.db_models import DBCall, CallEventType, VideoStatus, utcnow
from app.lifecycle import status_from_failure_reason, status_from_transcription
from app.logging_config import get_logger
from app.metrics import webhook_events
from app.models import (
    AudioEvent,
    InitiationFailureEvent,
    TranscriptionEvent,
    TranscriptTurn,
    UnknownVoiceEvent,
    parse_voice_event,
)
from app.services import CallService, CallEventService
from app.storage import SupabaseStorage, recording_key

logger = get_logger(__name__)


class RenderQueue(Protocol):
    def enqueue(self, call_id: str) -> None: ...


def format_transcript(turns: list[TranscriptTurn]) -> str:
    """Readable transcript: "Santa: ...\\n\\nChild: ..." """
    lines = []
    for turn in turns:
        speaker = "Santa" if turn.role == "agent" else "Child"
        lines.append(f"{speaker}: {turn.message or ''}")
    return "\n\n".join(lines)


class CallEventWebhookHandler:
    """Applies verified ElevenLabs events to Calls."""

    def __init__(self, db: Session, storage: SupabaseStorage, render_queue: Optional[RenderQueue] = None):
        self.db = db
        self.storage = storage
        self.render_queue = render_queue

    def handle(self, payload: dict) -> dict[str, Any]:
        """
        Route one decoded webhook body. Raises pydantic.ValidationError for
        a malformed known event and StorageError if the recording upload fails.
        """
        event = parse_voice_event(payload)
        webhook_events.labels(provider="elevenlabs", type=event.type or "unknown").inc()

        if isinstance(event, UnknownVoiceEvent):
            logger.warning("elevenlabs_unknown_event", event_type=event.type)
            return {"received": True}

        call = CallService.get_call_by_conversation_id(self.db, event.data.conversation_id)
        if call is None:
            logger.warning(
                "elevenlabs_call_not_found",
                event_type=event.type,
                conversation_id=event.data.conversation_id,
            )
            return {"received": True, "warning": "Call not found"}

        if isinstance(event, TranscriptionEvent):
            self._handle_transcription(call, event)
            kind = "transcription"
        elif isinstance(event, AudioEvent):
            self._handle_audio(call, event)
            kind = "audio"
        else:
            self._handle_failure(call, event)
            kind = "failure"

        return {"received": True, "callId": call.id, "type": kind}

    def _handle_transcription(self, call: DBCall, event: TranscriptionEvent) -> None:
        data = event.data
        metadata = data.metadata
        analysis = data.analysis
        target = status_from_transcription(data.status)

        duration = None
        if metadata and metadata.call_duration_secs is not None:
            duration = int(metadata.call_duration_secs)

        CallEventService.log_event(
            self.db,
            call.id,
            CallEventType.POST_CALL_TRANSCRIPTION,
            {
                "status": data.status,
                "duration_secs": duration,
                "call_successful": analysis.call_successful if analysis else None,
                "summary": analysis.transcript_summary if analysis else None,
            },
            commit=False,
        )

        fields: dict[str, Any] = {
            "transcript": format_transcript(data.transcript),
            "call_ended_at": utcnow(),
        }
        if duration is not None:
            fields["call_duration_seconds"] = duration
        CallService.transition(self.db, call, target, **fields)

        logger.info(
            "call_transcription_received",
            call_id=call.id,
            status=data.status,
            duration_secs=duration,
            turns=len(data.transcript),
        )

    def _handle_audio(self, call: DBCall, event: AudioEvent) -> None:
        try:
            audio = base64.b64decode(event.data.full_audio, validate=False)
        except (binascii.Error, ValueError) as e:
            raise ValueError(f"Invalid base64 audio payload: {e}") from e

        key = recording_key(call.id)
        self.storage.upload(config.RECORDINGS_BUCKET, key, audio, "audio/mpeg", upsert=True)
        recording_url = self.storage.public_url(config.RECORDINGS_BUCKET, key)

        CallEventService.log_event(
            self.db,
            call.id,
            CallEventType.POST_CALL_AUDIO,
            {"file_name": key, "file_size_bytes": len(audio), "recording_url": recording_url},
            commit=False,
        )
        CallService.update_fields(self.db, call, recording_url=recording_url)
        logger.info("call_recording_stored", call_id=call.id, size_bytes=len(audio))

        self._queue_render(call)

    def _queue_render(self, call: DBCall) -> None:
        """
        Mark the video pending and hand it to the render queue. If the queue
        is unavailable the Call stays pending for the pending-video batch.
        """
        if VideoStatus(call.video_status) == VideoStatus.PROCESSING:
            logger.info("video_render_already_running", call_id=call.id)
            return

        CallService.set_video_status(self.db, call, VideoStatus.PENDING)
        if self.render_queue is None:
            return
        try:
            self.render_queue.enqueue(call.id)
        except Exception as e:
            logger.warning("video_render_enqueue_failed", call_id=call.id, error=str(e))
            return
        CallEventService.log_event(self.db, call.id, CallEventType.VIDEO_RENDER_QUEUED, {})

    def _handle_failure(self, call: DBCall, event: InitiationFailureEvent) -> None:
        data = event.data
        target = status_from_failure_reason(data.failure_reason)

        CallEventService.log_event(
            self.db,
            call.id,
            CallEventType.CALL_INITIATION_FAILURE,
            {
                "failure_reason": data.failure_reason,
                "provider_type": data.metadata.type if data.metadata else None,
                "provider_details": data.metadata.body if data.metadata else None,
            },
            commit=False,
        )
        CallService.transition(self.db, call, target, call_ended_at=utcnow())
        logger.info("call_initiation_failed", call_id=call.id, failure_reason=data.failure_reason)
