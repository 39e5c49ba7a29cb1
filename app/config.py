"""Configuration management for Call Santa."""

import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


class Config:
    """Application configuration."""

    # Application Settings
    DEBUG: bool = os.getenv("DEBUG", "False").lower() == "true"
    APP_URL: str = os.getenv("APP_URL", "https://www.santasnumber.com")  # Public site, used in email links
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    HTTP_TIMEOUT_SECONDS: float = float(os.getenv("HTTP_TIMEOUT_SECONDS", "30"))

    # Persistence / background jobs
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./callsanta.db")
    REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")

    # Security
    API_KEY: str = os.getenv("API_KEY", "")  # Admin endpoints (manual re-render)
    CRON_SECRET: str = os.getenv("CRON_SECRET", "")  # Sent by the scheduler as "Authorization: Bearer <secret>"

    # Stripe Configuration
    STRIPE_SECRET_KEY: str = os.getenv("STRIPE_SECRET_KEY", "")
    STRIPE_WEBHOOK_SECRET: str = os.getenv("STRIPE_WEBHOOK_SECRET", "")
    STRIPE_CALL_PRICE_ID: str = os.getenv("STRIPE_CALL_PRICE_ID", "")
    STRIPE_RECORDING_PRICE_ID: str = os.getenv("STRIPE_RECORDING_PRICE_ID", "")

    # ElevenLabs Conversational AI (places the call over Twilio on our behalf)
    ELEVENLABS_API_KEY: str = os.getenv("ELEVENLABS_API_KEY", "")
    ELEVENLABS_AGENT_ID: str = os.getenv("ELEVENLABS_AGENT_ID", "")
    ELEVENLABS_AGENT_PHONE_NUMBER_ID: str = os.getenv("ELEVENLABS_AGENT_PHONE_NUMBER_ID", "")
    ELEVENLABS_WEBHOOK_SECRET: str = os.getenv("ELEVENLABS_WEBHOOK_SECRET", "")
    ELEVENLABS_API_BASE: str = os.getenv("ELEVENLABS_API_BASE", "https://api.elevenlabs.io")
    # Reject post-call webhooks whose signed timestamp is older than this.
    ELEVENLABS_SIGNATURE_TOLERANCE_SECONDS: int = int(os.getenv("ELEVENLABS_SIGNATURE_TOLERANCE_SECONDS", "1800"))

    # Supabase Storage
    SUPABASE_URL: str = os.getenv("SUPABASE_URL", "")
    SUPABASE_SERVICE_ROLE_KEY: str = os.getenv("SUPABASE_SERVICE_ROLE_KEY", "")
    RECORDINGS_BUCKET: str = os.getenv("RECORDINGS_BUCKET", "call-recordings")
    VIDEOS_BUCKET: str = os.getenv("VIDEOS_BUCKET", "call-videos")
    VOICE_NOTES_BUCKET: str = os.getenv("VOICE_NOTES_BUCKET", "voice-recordings")
    SIGNED_URL_EXPIRY_SECONDS: int = int(os.getenv("SIGNED_URL_EXPIRY_SECONDS", "3600"))

    # Email (Resend) and Discord
    RESEND_API_KEY: str = os.getenv("RESEND_API_KEY", "")
    RESEND_API_BASE: str = os.getenv("RESEND_API_BASE", "https://api.resend.com")
    EMAIL_FROM: str = os.getenv("EMAIL_FROM", "Santa <santa@santasnumber.com>")
    SUPPORT_EMAIL: str = os.getenv("SUPPORT_EMAIL", "questions@santasnumber.com")
    DISCORD_PAYMENT_WEBHOOK_URL: str = os.getenv("DISCORD_PAYMENT_WEBHOOK_URL", "")

    # OpenAI transcription model for parent voice notes
    OPENAI_API_KEY: str = os.getenv("OPENAI_API_KEY", "")
    OPENAI_TRANSCRIBE_MODEL: str = os.getenv("OPENAI_TRANSCRIBE_MODEL", "gpt-4o-mini-transcribe")

    # Video rendering
    FFMPEG_BINARY: str = os.getenv("FFMPEG_BINARY", "ffmpeg")
    FFPROBE_BINARY: str = os.getenv("FFPROBE_BINARY", "ffprobe")
    OUTRO_PATH: str = os.getenv("OUTRO_PATH", os.path.join(os.getcwd(), "public", "outro.mov"))
    VIDEO_FPS: int = int(os.getenv("VIDEO_FPS", "60"))
    VIDEO_INTRO_SECONDS: int = int(os.getenv("VIDEO_INTRO_SECONDS", "2"))
    # Degraded-mode placeholder when the recording cannot be analyzed.
    VIDEO_FALLBACK_DURATION_SECONDS: float = float(os.getenv("VIDEO_FALLBACK_DURATION_SECONDS", "30"))
    VIDEO_WAVEFORM_POINTS_PER_SECOND: int = int(os.getenv("VIDEO_WAVEFORM_POINTS_PER_SECOND", "100"))
    RENDER_TIMEOUT_SECONDS: int = int(os.getenv("RENDER_TIMEOUT_SECONDS", "900"))
    PENDING_VIDEO_BATCH_SIZE: int = int(os.getenv("PENDING_VIDEO_BATCH_SIZE", "10"))

    @classmethod
    def has_stripe_config(cls) -> bool:
        """Check if Stripe can create payments and verify webhooks."""
        return bool(cls.STRIPE_SECRET_KEY and cls.STRIPE_WEBHOOK_SECRET)

    @classmethod
    def has_elevenlabs_config(cls) -> bool:
        """Check if outbound calls can be placed."""
        return all([
            cls.ELEVENLABS_API_KEY,
            cls.ELEVENLABS_AGENT_ID,
            cls.ELEVENLABS_AGENT_PHONE_NUMBER_ID,
        ])

    @classmethod
    def has_storage_config(cls) -> bool:
        return bool(cls.SUPABASE_URL and cls.SUPABASE_SERVICE_ROLE_KEY)

    @classmethod
    def has_email_config(cls) -> bool:
        return bool(cls.RESEND_API_KEY)

    @classmethod
    def has_openai_key(cls) -> bool:
        """Check if OpenAI API key is configured."""
        return bool(cls.OPENAI_API_KEY)


# Create a global config instance
config = Config()
