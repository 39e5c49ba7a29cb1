"""Timer-driven batch jobs: scheduled-call dispatch and one-hour reminders.

Both drivers isolate failures per Call: one bad row is recorded in the
report and the batch moves on.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from app.db_models import CallStatus, CallEventType
from app.dispatcher import CallDispatcher, dispatch_claimed_call
from app.email_client import EmailClient
from app.logging_config import get_logger
from app.models import BatchItemResult, BatchReport
from app.services import CallService, CallEventService

logger = get_logger(__name__)

# A dispatch is one provider HTTP request; a claim older than this was abandoned by a dead worker.
STALE_DISPATCH_CLAIM = timedelta(minutes=10)


class ScheduledCallDriver:
    """Dispatches paid scheduled calls whose time has come (with a 60 s look-ahead)."""

    def __init__(self, db: Session, dispatcher: CallDispatcher):
        self.db = db
        self.dispatcher = dispatcher

    def run(self, now: Optional[datetime] = None) -> BatchReport:
        report = BatchReport()
        self._fail_stale_claims(report, now)
        due = CallService.list_due_for_dispatch(self.db, now=now)
        logger.info("scheduled_calls_due", count=len(due))

        for call in due:
            call_id = call.id
            try:
                if not CallService.claim_for_dispatch(self.db, call_id, expected=[CallStatus.SCHEDULED]):
                    # Another tick got there first.
                    continue
                self.db.refresh(call)
                report.add(dispatch_claimed_call(self.db, self.dispatcher, call, source="cron"))
            except Exception as e:
                self.db.rollback()
                logger.error("scheduled_call_error", call_id=call_id, error=str(e))
                report.add(BatchItemResult(call_id=call_id, success=False, error=str(e)))

        logger.info(
            "scheduled_calls_processed",
            processed=report.processed,
            success=report.success,
            failed=report.failed,
        )
        return report

    def _fail_stale_claims(self, report: BatchReport, now: Optional[datetime]) -> None:
        """
        Fail calls stuck in `claiming`. They are not retried: the provider
        may already have placed the call before the worker died.
        """
        for call in CallService.list_stale_dispatch_claims(self.db, STALE_DISPATCH_CLAIM, now=now):
            error = "Dispatch interrupted"
            logger.error("stale_dispatch_claim", call_id=call.id)
            CallEventService.log_event(
                self.db, call.id, CallEventType.CALL_FAILED, {"error": error, "source": "cron"}, commit=False
            )
            CallService.transition(self.db, call, CallStatus.FAILED)
            report.add(BatchItemResult(call_id=call.id, success=False, error=error))


class ReminderDriver:
    """Sends the reminder email for calls starting in 55-65 minutes, once per Call."""

    def __init__(self, db: Session, email_client: EmailClient):
        self.db = db
        self.email_client = email_client

    def run(self, now: Optional[datetime] = None) -> BatchReport:
        report = BatchReport()
        due = CallService.list_due_for_reminder(self.db, now=now)

        for call in due:
            call_id = call.id
            try:
                if CallEventService.has_event(self.db, call_id, CallEventType.REMINDER_EMAIL_SENT):
                    continue

                result = self.email_client.send_reminder(call)
                if not result.success:
                    report.add(BatchItemResult(call_id=call_id, success=False, error=result.error))
                    continue

                CallEventService.log_event(
                    self.db,
                    call_id,
                    CallEventType.REMINDER_EMAIL_SENT,
                    {"email_id": result.id, "scheduled_at": call.scheduled_at.isoformat()},
                )
                report.add(BatchItemResult(call_id=call_id, success=True))
            except Exception as e:
                self.db.rollback()
                logger.error("reminder_error", call_id=call_id, error=str(e))
                report.add(BatchItemResult(call_id=call_id, success=False, error=str(e)))

        logger.info("reminders_processed", processed=report.processed, success=report.success, failed=report.failed)
        return report
