"""Stripe payment settlement: webhook verification and Call reconciliation.

Every update is an absolute field set, so a re-delivered event converges on
the same Call state. The only non-idempotent side effect, dispatching an
immediate call, is guarded by the claim in CallService.claim_for_dispatch.
"""

from __future__ import annotations

import json
from typing import Any, Optional

import stripe
from sqlalchemy.orm import Session

from app.db_models import DBCall, CallStatus, PaymentStatus, CallEventType, utcnow
from app.discord import DiscordNotifier
from app.dispatcher import CallDispatcher, dispatch_claimed_call
from app.email_client import EmailClient
from app.logging_config import get_logger
from app.metrics import webhook_events
from app.security import SignatureError
from app.services import CallService, CallEventService

logger = get_logger(__name__)

CHECKOUT_COMPLETED = "checkout.session.completed"
PAYMENT_INTENT_SUCCEEDED = "payment_intent.succeeded"
PAYMENT_INTENT_FAILED = "payment_intent.payment_failed"


def verify_stripe_event(payload: bytes, signature: Optional[str], secret: str) -> dict:
    """
    Verify the `stripe-signature` header over the raw body and return the
    decoded event as plain dicts.
    """
    if not signature:
        raise SignatureError("Missing signature")
    if not secret:
        raise SignatureError("STRIPE_WEBHOOK_SECRET is not configured")
    try:
        stripe.Webhook.construct_event(payload, signature, secret)
    except (stripe.SignatureVerificationError, ValueError) as e:
        raise SignatureError(f"Invalid signature: {e}") from e
    return json.loads(payload)


class PaymentSettlementHandler:
    """Applies Stripe events to Calls."""

    def __init__(
        self,
        db: Session,
        dispatcher: CallDispatcher,
        email_client: EmailClient,
        notifier: Optional[DiscordNotifier] = None,
    ):
        self.db = db
        self.dispatcher = dispatcher
        self.email_client = email_client
        self.notifier = notifier

    def handle_event(self, event: dict) -> None:
        """
        Route one verified event. Raises CallNotFoundError when the event
        names a Call we do not have; the caller answers 500 so Stripe retries
        and the inconsistency is visible.
        """
        event_type = event.get("type", "")
        obj = (event.get("data") or {}).get("object") or {}
        webhook_events.labels(provider="stripe", type=event_type).inc()

        if event_type == CHECKOUT_COMPLETED:
            self._handle_payment_succeeded(obj, source="checkout")
        elif event_type == PAYMENT_INTENT_SUCCEEDED:
            self._handle_payment_succeeded(obj, source="payment_intent")
        elif event_type == PAYMENT_INTENT_FAILED:
            self._handle_payment_failed(obj)
        else:
            logger.info("stripe_event_unhandled", event_type=event_type)

    def _handle_payment_succeeded(self, obj: dict, source: str) -> None:
        metadata = obj.get("metadata") or {}
        call_id = metadata.get("call_id")
        if not call_id:
            # Payment links and other out-of-band payments carry no metadata.
            logger.info("stripe_payment_without_call_id", source=source, object_id=obj.get("id"))
            return

        if metadata.get("type") == "recording_purchase":
            self._handle_recording_purchase(call_id, obj, source)
            return

        call = CallService.require_call(self.db, call_id)
        was_paid = PaymentStatus(call.payment_status) == PaymentStatus.PAID

        fields: dict[str, Any] = {"payment_status": PaymentStatus.PAID}
        if "include_recording" in metadata:
            fields["recording_purchased"] = metadata.get("include_recording") == "true"

        if source == "checkout":
            fields["stripe_checkout_session_id"] = obj.get("id")
            if isinstance(obj.get("payment_intent"), str):
                fields["stripe_payment_intent_id"] = obj["payment_intent"]
            event_type = CallEventType.PAYMENT_RECEIVED
            event_data = {
                "session_id": obj.get("id"),
                "payment_intent": obj.get("payment_intent"),
                "amount": obj.get("amount_total"),
                "currency": obj.get("currency"),
                "include_recording": fields.get("recording_purchased", call.recording_purchased),
            }
        else:
            fields["stripe_payment_intent_id"] = obj.get("id")
            event_type = CallEventType.PAYMENT_INTENT_SUCCEEDED
            event_data = {
                "payment_intent_id": obj.get("id"),
                "amount": obj.get("amount"),
                "currency": obj.get("currency"),
                "include_recording": fields.get("recording_purchased", call.recording_purchased),
                "type": metadata.get("type"),
            }

        CallEventService.log_event(self.db, call.id, event_type, event_data, commit=False)

        if call.call_now:
            # Payment is committed before dispatch: money captured is recorded
            # regardless of what the voice provider does next.
            CallService.update_fields(self.db, call, **fields)
            if CallService.claim_for_dispatch(self.db, call.id, expected=[CallStatus.PENDING, CallStatus.SCHEDULED]):
                self.db.refresh(call)
                dispatch_claimed_call(self.db, self.dispatcher, call, source="payment")
        else:
            CallService.transition(self.db, call, CallStatus.SCHEDULED, **fields)

        logger.info(
            "payment_settled",
            call_id=call.id,
            source=source,
            call_now=call.call_now,
            call_status=CallStatus(call.call_status).value,
        )

        if not was_paid:
            self._notify_payment(call)
        self._send_confirmation_once(call)

    def _handle_recording_purchase(self, call_id: str, obj: dict, source: str) -> None:
        call = CallService.require_call(self.db, call_id)
        CallEventService.log_event(
            self.db,
            call.id,
            CallEventType.RECORDING_PURCHASED,
            {
                "source": source,
                "object_id": obj.get("id"),
                "amount": obj.get("amount_total", obj.get("amount")),
            },
            commit=False,
        )
        CallService.update_fields(
            self.db,
            call,
            recording_purchased=True,
            recording_purchased_at=call.recording_purchased_at or utcnow(),
        )
        logger.info("recording_purchased", call_id=call.id, source=source)

    def _handle_payment_failed(self, obj: dict) -> None:
        metadata = obj.get("metadata") or {}
        call_id = metadata.get("call_id")
        if not call_id:
            logger.info("stripe_payment_failed_without_call_id", object_id=obj.get("id"))
            return

        call = CallService.require_call(self.db, call_id)
        error_message = (obj.get("last_payment_error") or {}).get("message")

        CallEventService.log_event(
            self.db,
            call.id,
            CallEventType.PAYMENT_FAILED,
            {"payment_intent_id": obj.get("id"), "error": error_message},
            commit=False,
        )

        if PaymentStatus(call.payment_status) == PaymentStatus.PAID:
            # A later failed attempt does not undo money already captured.
            logger.warning("payment_failed_after_paid_ignored", call_id=call.id, payment_intent_id=obj.get("id"))
            self.db.commit()
            return

        CallService.update_fields(
            self.db,
            call,
            payment_status=PaymentStatus.FAILED,
            stripe_payment_intent_id=obj.get("id") or call.stripe_payment_intent_id,
        )
        logger.info("payment_failed", call_id=call.id, error=error_message)

    def _notify_payment(self, call: DBCall) -> None:
        if self.notifier is None:
            return
        try:
            self.notifier.notify_payment(call)
        except Exception as e:
            logger.warning("discord_notification_error", call_id=call.id, error=str(e))

    def _send_confirmation_once(self, call: DBCall) -> None:
        """Booking confirmation goes out once per Call; failures are logged only."""
        try:
            if CallEventService.has_event(self.db, call.id, CallEventType.BOOKING_CONFIRMATION_SENT):
                return
            result = self.email_client.send_booking_confirmation(call)
            if result.success:
                CallEventService.log_event(
                    self.db,
                    call.id,
                    CallEventType.BOOKING_CONFIRMATION_SENT,
                    {"email_id": result.id},
                )
            else:
                logger.warning("booking_confirmation_not_sent", call_id=call.id, error=result.error)
        except Exception as e:
            logger.error("booking_confirmation_error", call_id=call.id, error=str(e))
