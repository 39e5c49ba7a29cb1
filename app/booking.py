"""Booking intake: validate, store the optional voice note, price, create the
Call, and open the Stripe payment."""

from __future__ import annotations

import uuid
from datetime import timezone
from typing import Any, Optional

import stripe
from sqlalchemy.orm import Session

from app.config import config
from app.db_models import DBCall
from app.logging_config import get_logger
from app.models import BookingRequest, BookingResponse
from app.services import CallService, PricingService
from app.storage import StorageError, SupabaseStorage
from app.transcription import VoiceNoteTranscriber, extension_for

logger = get_logger(__name__)

MAX_VOICE_NOTE_BYTES = 10 * 1024 * 1024
ALLOWED_AUDIO_TYPES = {
    "audio/webm",
    "audio/mp3",
    "audio/wav",
    "audio/m4a",
    "audio/mpeg",
    "audio/ogg",
}


class BookingError(Exception):
    """A booking request that cannot be accepted; carries the HTTP answer."""

    def __init__(self, status_code: int, error: str, details: Any = None):
        super().__init__(error)
        self.status_code = status_code
        self.error = error
        self.details = details

    def to_dict(self) -> dict:
        body = {"error": self.error}
        if self.details is not None:
            body["details"] = self.details
        return body


class StripeGateway:
    """PaymentIntent and Checkout Session creation for a new booking."""

    def __init__(self, api_key: str, call_price_id: str = "", recording_price_id: str = "", app_url: str = ""):
        self.api_key = api_key
        self.call_price_id = call_price_id
        self.recording_price_id = recording_price_id
        self.app_url = app_url.rstrip("/")

    @classmethod
    def from_config(cls) -> "StripeGateway":
        return cls(
            api_key=config.STRIPE_SECRET_KEY,
            call_price_id=config.STRIPE_CALL_PRICE_ID,
            recording_price_id=config.STRIPE_RECORDING_PRICE_ID,
            app_url=config.APP_URL,
        )

    def create_payment_intent(self, call: DBCall, include_recording: bool, amount_cents: int, currency: str) -> dict:
        intent = stripe.PaymentIntent.create(
            api_key=self.api_key,
            amount=amount_cents,
            currency=currency,
            automatic_payment_methods={"enabled": True},
            metadata={
                "call_id": call.id,
                "child_name": call.child_name,
                "include_recording": "true" if include_recording else "false",
            },
            receipt_email=call.parent_email,
        )
        return {"id": intent["id"], "client_secret": intent["client_secret"]}

    def create_checkout_session(self, call: DBCall, include_recording: bool) -> dict:
        line_items = [{"price": self.call_price_id, "quantity": 1}]
        if include_recording:
            line_items.append({"price": self.recording_price_id, "quantity": 1})

        session = stripe.checkout.Session.create(
            api_key=self.api_key,
            mode="payment",
            line_items=line_items,
            success_url=f"{self.app_url}/success?session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{self.app_url}/cancelled?call_id={call.id}",
            customer_email=call.parent_email,
            metadata={
                "call_id": call.id,
                "child_name": call.child_name,
                "include_recording": "true" if include_recording else "false",
            },
            payment_intent_data={"metadata": {"call_id": call.id, "child_name": call.child_name}},
        )
        if not session["url"]:
            raise RuntimeError("Failed to create checkout session URL")
        return {"id": session["id"], "url": session["url"]}


class BookingService:
    def __init__(
        self,
        db: Session,
        payments: StripeGateway,
        storage: Optional[SupabaseStorage] = None,
        transcriber: Optional[VoiceNoteTranscriber] = None,
    ):
        self.db = db
        self.payments = payments
        self.storage = storage
        self.transcriber = transcriber

    @staticmethod
    def check_voice_note(content: bytes, content_type: str) -> None:
        if len(content) > MAX_VOICE_NOTE_BYTES:
            raise BookingError(400, "Voice file too large (max 10MB)")
        base_type = (content_type or "").split(";")[0].strip().lower()
        if base_type not in ALLOWED_AUDIO_TYPES:
            raise BookingError(400, f"Invalid audio file type: {content_type}")

    def store_voice_note(self, content: bytes, content_type: str) -> tuple[Optional[str], Optional[str]]:
        """Upload and transcribe the note. Any failure means "no voice note"."""
        if self.storage is None:
            return None, None
        key = f"{uuid.uuid4()}.{extension_for(content_type)}"
        try:
            self.storage.upload(config.VOICE_NOTES_BUCKET, key, content, content_type, upsert=False)
        except StorageError as e:
            logger.warning("voice_note_upload_failed", error=str(e))
            return None, None

        url = self.storage.public_url(config.VOICE_NOTES_BUCKET, key)
        transcript = self.transcriber.transcribe(content, content_type) if self.transcriber else ""
        return url, transcript or None

    def create_booking(
        self,
        request: BookingRequest,
        voice_note: Optional[bytes] = None,
        voice_content_type: str = "",
    ) -> BookingResponse:
        voice_url, voice_transcript = None, None
        if voice_note:
            self.check_voice_note(voice_note, voice_content_type)
            voice_url, voice_transcript = self.store_voice_note(voice_note, voice_content_type)

        pricing = PricingService.get_active_pricing(self.db)
        if pricing is None:
            logger.error("pricing_config_missing")
            raise BookingError(500, "Unable to fetch pricing configuration")

        recording_amount = pricing.recording_addon_cents if request.purchase_recording else 0
        total_amount = pricing.base_price_cents + recording_amount
        currency = pricing.currency or "usd"

        # Stored naive UTC like every other timestamp.
        scheduled_at = request.scheduled_at
        if scheduled_at.tzinfo is not None:
            scheduled_at = scheduled_at.astimezone(timezone.utc).replace(tzinfo=None)

        call = CallService.create_call(
            self.db,
            child_name=request.child_name,
            child_age=request.child_age,
            child_info_text=request.child_info_text or None,
            child_info_voice_url=voice_url,
            child_info_voice_transcript=voice_transcript,
            gift_budget=request.gift_budget,
            phone_number=request.phone_number,
            phone_country_code=request.phone_country_code,
            parent_email=str(request.parent_email),
            scheduled_at=scheduled_at,
            timezone=request.timezone,
            call_now=request.call_now,
            base_amount_cents=pricing.base_price_cents,
            recording_purchased=request.purchase_recording,
            recording_amount_cents=recording_amount if request.purchase_recording else None,
            total_amount_cents=total_amount,
            currency=currency,
        )

        try:
            intent = self.payments.create_payment_intent(call, request.purchase_recording, total_amount, currency)
            if not intent.get("client_secret"):
                raise RuntimeError("Missing client secret on payment intent")
            session = self.payments.create_checkout_session(call, request.purchase_recording)
        except Exception as e:
            logger.error("booking_payment_setup_failed", call_id=call.id, error=str(e))
            raise BookingError(500, "Failed to create booking") from e

        CallService.update_fields(
            self.db,
            call,
            stripe_payment_intent_id=intent["id"],
            stripe_checkout_session_id=session["id"],
        )
        logger.info("booking_created", call_id=call.id, amount=total_amount, call_now=call.call_now)

        return BookingResponse(
            call_id=call.id,
            client_secret=intent["client_secret"],
            amount=total_amount,
            currency=currency,
            checkout_url=session["url"],
        )
