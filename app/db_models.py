"""
SQLAlchemy database models.

One `calls` row per booking, an append-only `call_events` audit log, the
active `pricing_config` row used at booking time and the `affiliates`
referral partners.
"""

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text, Boolean, JSON, Index, Enum as SQLEnum
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
import enum
import uuid

from app.database import Base


def utcnow() -> datetime:
    """Naive UTC timestamp, the representation stored in every DateTime column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _new_id() -> str:
    return str(uuid.uuid4())


def _enum_column(enum_cls):
    # Persist enum values ("no_answer"), not member names ("NO_ANSWER").
    return SQLEnum(
        enum_cls,
        values_callable=lambda members: [m.value for m in members],
        native_enum=False,
        validate_strings=True,
        length=32,
    )


class CallStatus(str, enum.Enum):
    """Call lifecycle status."""
    PENDING = "pending"
    SCHEDULED = "scheduled"
    CLAIMING = "claiming"
    QUEUED = "queued"
    COMPLETED = "completed"
    FAILED = "failed"
    NO_ANSWER = "no_answer"
    CANCELLED = "cancelled"


class PaymentStatus(str, enum.Enum):
    """Payment status enum."""
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class VideoStatus(str, enum.Enum):
    """Video render status. NONE until a recording becomes available."""
    NONE = "none"
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class CallEventType(str, enum.Enum):
    """Audit log tags."""
    PAYMENT_RECEIVED = "payment_received"
    PAYMENT_INTENT_SUCCEEDED = "payment_intent_succeeded"
    PAYMENT_FAILED = "payment_failed"
    RECORDING_PURCHASED = "recording_purchased"
    BOOKING_CONFIRMATION_SENT = "booking_confirmation_sent"
    CALL_INITIATED = "call_initiated"
    CALL_FAILED = "call_failed"
    POST_CALL_TRANSCRIPTION = "post_call_transcription"
    POST_CALL_AUDIO = "post_call_audio"
    CALL_INITIATION_FAILURE = "call_initiation_failure"
    REMINDER_EMAIL_SENT = "reminder_email_sent"
    VIDEO_RENDER_QUEUED = "video_render_queued"
    VIDEO_RENDER_COMPLETED = "video_render_completed"
    VIDEO_RENDER_FAILED = "video_render_failed"
    POST_CALL_EMAIL_SENT = "post_call_email_sent"


class DBCall(Base):
    """
    Call model - one row per booked Santa call.
    Provider identifiers stay NULL until the provider assigns them.
    """
    __tablename__ = "calls"

    id = Column(String(36), primary_key=True, default=_new_id)

    # Child
    child_name = Column(String(100), nullable=False)
    child_age = Column(Integer, nullable=False)
    child_info_text = Column(Text, nullable=True)
    child_info_voice_url = Column(String(500), nullable=True)
    child_info_voice_transcript = Column(Text, nullable=True)
    gift_budget = Column(Integer, nullable=False, default=0)  # dollars, 0-1000

    # Contact
    phone_number = Column(String(50), nullable=False)
    phone_country_code = Column(String(5), nullable=False)
    parent_email = Column(String(255), nullable=False)

    # Scheduling
    scheduled_at = Column(DateTime, nullable=False, index=True)
    timezone = Column(String(64), nullable=False)
    call_now = Column(Boolean, nullable=False, default=False)

    # Commercial (amounts in cents)
    base_amount_cents = Column(Integer, nullable=False)
    recording_purchased = Column(Boolean, nullable=False, default=False)
    recording_amount_cents = Column(Integer, nullable=True)
    total_amount_cents = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False, default="usd")
    payment_status = Column(_enum_column(PaymentStatus), nullable=False, default=PaymentStatus.PENDING)
    recording_purchased_at = Column(DateTime, nullable=True)

    # Provider correlation
    stripe_payment_intent_id = Column(String(255), nullable=True)
    stripe_checkout_session_id = Column(String(255), nullable=True)
    twilio_call_sid = Column(String(100), nullable=True)
    elevenlabs_conversation_id = Column(String(100), nullable=True, unique=True, index=True)

    # Call lifecycle
    call_status = Column(_enum_column(CallStatus), nullable=False, default=CallStatus.PENDING, index=True)
    call_started_at = Column(DateTime, nullable=True)
    call_ended_at = Column(DateTime, nullable=True)
    call_duration_seconds = Column(Integer, nullable=True)

    # Call artifacts
    transcript = Column(Text, nullable=True)
    recording_url = Column(String(500), nullable=True)
    transcript_sent_at = Column(DateTime, nullable=True)

    # Video artifacts
    video_url = Column(String(500), nullable=True)
    video_status = Column(_enum_column(VideoStatus), nullable=False, default=VideoStatus.NONE, index=True)
    video_generated_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    events = relationship(
        "DBCallEvent",
        back_populates="call",
        cascade="all, delete-orphan",
        order_by="DBCallEvent.id",
    )

    __table_args__ = (
        Index("ix_calls_dispatch", "call_status", "payment_status", "call_now", "scheduled_at"),
    )


class DBCallEvent(Base):
    """
    Append-only audit log. Rows are never updated or deleted by the
    application; duplicates from provider re-delivery are tolerated.
    """
    __tablename__ = "call_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    call_id = Column(String(36), ForeignKey("calls.id"), nullable=False, index=True)
    event_type = Column(String(64), nullable=False, index=True)
    event_data = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime, default=utcnow)

    call = relationship("DBCall", back_populates="events")


class DBPricingConfig(Base):
    """Pricing used when a booking is created. Exactly one row is active."""
    __tablename__ = "pricing_config"

    id = Column(Integer, primary_key=True, index=True)
    base_price_cents = Column(Integer, nullable=False)
    recording_addon_cents = Column(Integer, nullable=False, default=0)
    currency = Column(String(3), nullable=False, default="usd")
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime, default=utcnow)


class DBAffiliate(Base):
    """
    Referral partner. Bookings arrive through `/<slug>` or `?aff=<public_code>`.
    Slug, email and public code are each unique.
    """
    __tablename__ = "affiliates"

    id = Column(String(36), primary_key=True, default=_new_id)
    name = Column(String(100), nullable=False)
    email = Column(String(255), nullable=False, unique=True, index=True)
    slug = Column(String(50), nullable=False, unique=True, index=True)
    public_code = Column(String(12), nullable=False, unique=True, index=True)
    payout_percent = Column(Integer, nullable=False, default=20)
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime, default=utcnow)
