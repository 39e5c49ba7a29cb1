"""
Service layer for database operations on calls, their audit log, pricing
and affiliates.
"""

from typing import Any, Iterable, List, Optional
from sqlalchemy.orm import Session
from datetime import datetime, timedelta

from app.db_models import (
    DBAffiliate,
    DBCall,
    DBCallEvent,
    DBPricingConfig,
    CallStatus,
    PaymentStatus,
    VideoStatus,
    CallEventType,
    utcnow,
)
from app.lifecycle import can_transition, can_transition_video
from app.logging_config import get_logger

logger = get_logger(__name__)

DISPATCH_LOOKAHEAD = timedelta(seconds=60)
REMINDER_WINDOW_START = timedelta(minutes=55)
REMINDER_WINDOW_END = timedelta(minutes=65)

RENDERABLE_VIDEO_STATUSES = (VideoStatus.PENDING, VideoStatus.NONE, VideoStatus.FAILED)


class CallNotFoundError(LookupError):
    """A provider event references a Call id that does not exist."""


class CallService:
    """Service for managing calls."""

    @staticmethod
    def create_call(db: Session, **fields: Any) -> DBCall:
        """Create a new call in pending/pending state."""
        call = DBCall(
            payment_status=PaymentStatus.PENDING,
            call_status=CallStatus.PENDING,
            video_status=VideoStatus.NONE,
            **fields,
        )
        db.add(call)
        db.commit()
        db.refresh(call)

        logger.info("call_created", call_id=call.id, call_now=call.call_now)
        return call

    @staticmethod
    def get_call(db: Session, call_id: str) -> Optional[DBCall]:
        """Get call by ID."""
        return db.query(DBCall).filter(DBCall.id == call_id).first()

    @staticmethod
    def require_call(db: Session, call_id: str) -> DBCall:
        call = CallService.get_call(db, call_id)
        if call is None:
            raise CallNotFoundError(f"Call {call_id} not found")
        return call

    @staticmethod
    def get_call_by_conversation_id(db: Session, conversation_id: str) -> Optional[DBCall]:
        """Get call by ElevenLabs conversation ID."""
        if not conversation_id:
            return None
        return db.query(DBCall).filter(DBCall.elevenlabs_conversation_id == conversation_id).first()

    @staticmethod
    def update_fields(db: Session, call: DBCall, **fields: Any) -> DBCall:
        """Absolute field sets; re-applying the same update is harmless."""
        for name, value in fields.items():
            setattr(call, name, value)
        db.commit()
        db.refresh(call)
        return call

    @staticmethod
    def transition(db: Session, call: DBCall, target: CallStatus, **fields: Any) -> bool:
        """
        Move `call` to `target` if the lifecycle allows it and apply `fields`.

        Fields are always written (last write wins). The status is only
        written when the move is legal; an illegal move is logged and
        reported by returning False.
        """
        current = CallStatus(call.call_status)
        allowed = can_transition(current, target)
        if allowed:
            call.call_status = target
        else:
            logger.warning(
                "call_transition_rejected",
                call_id=call.id,
                current=current.value,
                target=CallStatus(target).value,
            )
        for name, value in fields.items():
            setattr(call, name, value)
        db.commit()
        db.refresh(call)

        if allowed and current != target:
            logger.info("call_status_updated", call_id=call.id, previous=current.value, status=CallStatus(target).value)
        return allowed

    @staticmethod
    def claim_for_dispatch(db: Session, call_id: str, expected: Iterable[CallStatus]) -> bool:
        """
        Atomically move a call into `claiming` if it is still in one of the
        `expected` statuses and carries no conversation id yet. Only the
        caller that gets True may dispatch.
        """
        expected = [CallStatus(s) for s in expected]
        updated = (
            db.query(DBCall)
            .filter(
                DBCall.id == call_id,
                DBCall.call_status.in_(expected),
                DBCall.elevenlabs_conversation_id.is_(None),
            )
            .update(
                {DBCall.call_status: CallStatus.CLAIMING, DBCall.updated_at: utcnow()},
                synchronize_session=False,
            )
        )
        db.commit()
        claimed = updated == 1
        if not claimed:
            logger.info("call_claim_skipped", call_id=call_id, expected=[s.value for s in expected])
        return claimed

    @staticmethod
    def set_video_status(db: Session, call: DBCall, target: VideoStatus, **fields: Any) -> bool:
        current = VideoStatus(call.video_status)
        allowed = can_transition_video(current, target)
        if allowed:
            call.video_status = target
        else:
            logger.warning("video_transition_rejected", call_id=call.id, current=current.value, target=target.value)
        for name, value in fields.items():
            setattr(call, name, value)
        db.commit()
        db.refresh(call)
        return allowed

    @staticmethod
    def claim_for_render(db: Session, call_id: str) -> bool:
        """
        Atomically move a call's video into `processing` from a renderable
        status (pending, none or failed). A completed video is only
        re-rendered after something resets it to `pending`.
        """
        updated = (
            db.query(DBCall)
            .filter(DBCall.id == call_id, DBCall.video_status.in_(RENDERABLE_VIDEO_STATUSES))
            .update(
                {DBCall.video_status: VideoStatus.PROCESSING, DBCall.updated_at: utcnow()},
                synchronize_session=False,
            )
        )
        db.commit()
        return updated == 1

    @staticmethod
    def requeue_stale_renders(db: Session, older_than: timedelta, now: Optional[datetime] = None) -> int:
        """Put `processing` videos untouched for `older_than` back to `pending` (worker died mid-render)."""
        cutoff = (now or utcnow()) - older_than
        updated = (
            db.query(DBCall)
            .filter(DBCall.video_status == VideoStatus.PROCESSING, DBCall.updated_at < cutoff)
            .update(
                {DBCall.video_status: VideoStatus.PENDING, DBCall.updated_at: utcnow()},
                synchronize_session=False,
            )
        )
        db.commit()
        if updated:
            logger.warning("stale_renders_requeued", count=updated)
        return updated

    @staticmethod
    def list_stale_dispatch_claims(db: Session, older_than: timedelta, now: Optional[datetime] = None) -> List[DBCall]:
        cutoff = (now or utcnow()) - older_than
        return (
            db.query(DBCall)
            .filter(DBCall.call_status == CallStatus.CLAIMING, DBCall.updated_at < cutoff)
            .all()
        )

    @staticmethod
    def claim_post_call_email(db: Session, call_id: str) -> bool:
        """Stamp `transcript_sent_at` only if it is still empty; True means we own the send."""
        updated = (
            db.query(DBCall)
            .filter(DBCall.id == call_id, DBCall.transcript_sent_at.is_(None))
            .update({DBCall.transcript_sent_at: utcnow()}, synchronize_session=False)
        )
        db.commit()
        return updated == 1

    @staticmethod
    def release_post_call_email(db: Session, call_id: str) -> None:
        """Undo `claim_post_call_email` after a failed send so a later run can retry."""
        db.query(DBCall).filter(DBCall.id == call_id).update(
            {DBCall.transcript_sent_at: None}, synchronize_session=False
        )
        db.commit()

    @staticmethod
    def list_due_for_dispatch(db: Session, now: Optional[datetime] = None) -> List[DBCall]:
        """Paid, scheduled, non-immediate calls whose time is within the next minute."""
        now = now or utcnow()
        return (
            db.query(DBCall)
            .filter(
                DBCall.call_status == CallStatus.SCHEDULED,
                DBCall.payment_status == PaymentStatus.PAID,
                DBCall.call_now.is_(False),
                DBCall.scheduled_at <= now + DISPATCH_LOOKAHEAD,
            )
            .order_by(DBCall.scheduled_at)
            .all()
        )

    @staticmethod
    def list_due_for_reminder(db: Session, now: Optional[datetime] = None) -> List[DBCall]:
        """Paid, scheduled calls starting 55-65 minutes from now."""
        now = now or utcnow()
        return (
            db.query(DBCall)
            .filter(
                DBCall.call_status == CallStatus.SCHEDULED,
                DBCall.payment_status == PaymentStatus.PAID,
                DBCall.scheduled_at >= now + REMINDER_WINDOW_START,
                DBCall.scheduled_at <= now + REMINDER_WINDOW_END,
            )
            .order_by(DBCall.scheduled_at)
            .all()
        )

    @staticmethod
    def list_pending_videos(db: Session, limit: int = 10) -> List[DBCall]:
        return (
            db.query(DBCall)
            .filter(DBCall.video_status == VideoStatus.PENDING, DBCall.recording_url.isnot(None))
            .order_by(DBCall.updated_at)
            .limit(limit)
            .all()
        )


class CallEventService:
    """Service for the append-only call audit log."""

    @staticmethod
    def log_event(
        db: Session,
        call_id: str,
        event_type: CallEventType,
        event_data: Optional[dict] = None,
        commit: bool = True,
    ) -> DBCallEvent:
        """
        Append an audit event. With commit=False the row joins the caller's
        transaction and is written with the caller's next commit.
        """
        event = DBCallEvent(
            call_id=call_id,
            event_type=CallEventType(event_type).value,
            event_data=event_data or {},
        )
        db.add(event)
        if commit:
            db.commit()
            db.refresh(event)

        logger.debug("call_event_logged", call_id=call_id, event_type=event.event_type)
        return event

    @staticmethod
    def has_event(db: Session, call_id: str, event_type: CallEventType) -> bool:
        return (
            db.query(DBCallEvent.id)
            .filter(DBCallEvent.call_id == call_id, DBCallEvent.event_type == CallEventType(event_type).value)
            .first()
            is not None
        )

    @staticmethod
    def list_events(db: Session, call_id: str) -> List[DBCallEvent]:
        return db.query(DBCallEvent).filter(DBCallEvent.call_id == call_id).order_by(DBCallEvent.id).all()


class PricingService:
    """Service for booking prices."""

    @staticmethod
    def get_active_pricing(db: Session) -> Optional[DBPricingConfig]:
        return (
            db.query(DBPricingConfig)
            .filter(DBPricingConfig.is_active.is_(True))
            .order_by(DBPricingConfig.id.desc())
            .first()
        )


class AffiliateService:
    """Service for referral partners."""

    @staticmethod
    def get_by_slug(db: Session, slug: str) -> Optional[DBAffiliate]:
        return db.query(DBAffiliate).filter(DBAffiliate.slug == slug).first()

    @staticmethod
    def get_by_email(db: Session, email: str) -> Optional[DBAffiliate]:
        return db.query(DBAffiliate).filter(DBAffiliate.email == email).first()

    @staticmethod
    def public_code_taken(db: Session, public_code: str) -> bool:
        return db.query(DBAffiliate.id).filter(DBAffiliate.public_code == public_code).first() is not None

    @staticmethod
    def create_affiliate(db: Session, **fields: Any) -> DBAffiliate:
        affiliate = DBAffiliate(**fields)
        db.add(affiliate)
        db.commit()
        db.refresh(affiliate)
        logger.info("affiliate_created", affiliate_id=affiliate.id, slug=affiliate.slug)
        return affiliate

    @staticmethod
    def list_affiliates(db: Session, active_only: bool = True) -> List[DBAffiliate]:
        """Newest first."""
        query = db.query(DBAffiliate)
        if active_only:
            query = query.filter(DBAffiliate.is_active.is_(True))
        return query.order_by(DBAffiliate.created_at.desc()).all()
