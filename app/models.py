"""Data models for Call Santa: request payloads, provider events and results."""

from datetime import datetime
from typing import Annotated, Any, Literal, Optional, Union
from pydantic import BaseModel, ConfigDict, EmailStr, Field, TypeAdapter


class BookingRequest(BaseModel):
    """Booking form payload (the JSON `data` field of POST /api/calls)."""
    model_config = ConfigDict(populate_by_name=True)

    child_name: str = Field(alias="childName", min_length=1, max_length=100)
    child_age: int = Field(alias="childAge", ge=1)
    child_info_text: Optional[str] = Field(default=None, alias="childInfoText", max_length=2000)
    phone_number: str = Field(alias="phoneNumber", min_length=10)
    phone_country_code: str = Field(alias="phoneCountryCode", min_length=2, max_length=5)
    scheduled_at: datetime = Field(alias="scheduledAt")
    timezone: str = Field(alias="timezone", min_length=1)
    parent_email: EmailStr = Field(alias="parentEmail")
    purchase_recording: bool = Field(default=False, alias="purchaseRecording")
    call_now: bool = Field(default=False, alias="callNow")
    gift_budget: int = Field(default=0, alias="giftBudget", ge=0, le=1000)


class BookingResponse(BaseModel):
    """What the booking UI needs to confirm payment."""
    model_config = ConfigDict(populate_by_name=True)

    call_id: str = Field(serialization_alias="callId")
    client_secret: str = Field(serialization_alias="clientSecret")
    amount: int
    currency: str
    checkout_url: str = Field(serialization_alias="checkoutUrl")


class AffiliateSignupRequest(BaseModel):
    """Public affiliate signup form (POST /api/affiliates)."""
    name: str = Field(min_length=1, max_length=100)
    email: EmailStr
    slug: str = Field(min_length=3, max_length=50, pattern=r"^[a-z0-9][a-z0-9-]*[a-z0-9]$")


class AffiliateOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    email: str
    slug: str
    public_code: str
    payout_percent: int
    is_active: bool
    created_at: Optional[datetime] = None


class AffiliateLinks(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    direct: str
    with_code: str = Field(serialization_alias="withCode")


class AffiliateSignupResponse(BaseModel):
    affiliate: AffiliateOut
    links: AffiliateLinks


class CallData(BaseModel):
    """Personalisation passed to the voice agent."""
    child_name: str
    child_age: int
    gift_budget: int = 0
    child_info_text: Optional[str] = None
    child_info_voice_transcript: Optional[str] = None


class DispatchResult(BaseModel):
    conversation_id: Optional[str] = None
    call_sid: Optional[str] = None
    success: bool = False


class RenderResult(BaseModel):
    """Outcome of one video render; the pipeline never raises past this."""
    success: bool
    video_url: Optional[str] = None
    error: Optional[str] = None


class BatchItemResult(BaseModel):
    """One entry of a cron driver report."""
    call_id: str = Field(serialization_alias="callId")
    success: bool
    error: Optional[str] = None
    conversation_id: Optional[str] = Field(default=None, serialization_alias="conversationId")
    skipped: bool = False


class BatchReport(BaseModel):
    processed: int = 0
    success: int = 0
    failed: int = 0
    results: list[BatchItemResult] = Field(default_factory=list)

    def add(self, item: BatchItemResult) -> None:
        self.results.append(item)
        self.processed += 1
        if item.success:
            self.success += 1
        else:
            self.failed += 1


# ElevenLabs post-call webhook events
#
# Parsed into a closed union; any other `type` becomes UnknownVoiceEvent and
# is acknowledged without touching state.

class TranscriptTurn(BaseModel):
    role: str
    message: Optional[str] = None
    time_in_call_secs: Optional[float] = None


class TranscriptionMetadata(BaseModel):
    start_time_unix_secs: Optional[int] = None
    call_duration_secs: Optional[float] = None
    cost: Optional[float] = None


class CallAnalysis(BaseModel):
    call_successful: Optional[str] = None
    transcript_summary: Optional[str] = None


class TranscriptionData(BaseModel):
    agent_id: Optional[str] = None
    conversation_id: str
    status: Optional[str] = None
    transcript: list[TranscriptTurn] = Field(default_factory=list)
    metadata: Optional[TranscriptionMetadata] = None
    analysis: Optional[CallAnalysis] = None


class AudioData(BaseModel):
    agent_id: Optional[str] = None
    conversation_id: str
    full_audio: str


class FailureMetadata(BaseModel):
    type: Optional[str] = None
    body: Optional[dict[str, Any]] = None


class InitiationFailureData(BaseModel):
    agent_id: Optional[str] = None
    conversation_id: str
    failure_reason: Optional[str] = None
    metadata: Optional[FailureMetadata] = None


class TranscriptionEvent(BaseModel):
    type: Literal["post_call_transcription"]
    event_timestamp: Optional[int] = None
    data: TranscriptionData


class AudioEvent(BaseModel):
    type: Literal["post_call_audio"]
    event_timestamp: Optional[int] = None
    data: AudioData


class InitiationFailureEvent(BaseModel):
    type: Literal["call_initiation_failure"]
    event_timestamp: Optional[int] = None
    data: InitiationFailureData


class UnknownVoiceEvent(BaseModel):
    type: str
    event_timestamp: Optional[int] = None
    data: dict[str, Any] = Field(default_factory=dict)


KnownVoiceEvent = Annotated[
    Union[TranscriptionEvent, AudioEvent, InitiationFailureEvent],
    Field(discriminator="type"),
]
VoiceEvent = Union[TranscriptionEvent, AudioEvent, InitiationFailureEvent, UnknownVoiceEvent]

_KNOWN_VOICE_EVENT_TYPES = {"post_call_transcription", "post_call_audio", "call_initiation_failure"}
_known_voice_event_adapter = TypeAdapter(KnownVoiceEvent)


def parse_voice_event(payload: dict) -> VoiceEvent:
    """Parse a decoded webhook body; raises pydantic.ValidationError for malformed known events."""
    if not isinstance(payload, dict):
        return UnknownVoiceEvent(type="")
    event_type = payload.get("type")
    if event_type in _KNOWN_VOICE_EVENT_TYPES:
        return _known_voice_event_adapter.validate_python(payload)
    data = payload.get("data")
    return UnknownVoiceEvent(
        type=str(event_type or ""),
        event_timestamp=payload.get("event_timestamp") if isinstance(payload.get("event_timestamp"), int) else None,
        data=data if isinstance(data, dict) else {},
    )
