"""Transactional email through the Resend HTTP API.

Email is best-effort everywhere in the booking flow: every send returns an
EmailResult and never raises.
"""

from __future__ import annotations

from typing import Optional

import httpx
from pydantic import BaseModel

from app import email_templates
from app.config import config
from app.db_models import DBCall
from app.logging_config import get_logger
from app.metrics import emails_sent

logger = get_logger(__name__)


class EmailResult(BaseModel):
    success: bool
    id: Optional[str] = None
    error: Optional[str] = None


class EmailClient:
    """Sends the three booking emails."""

    def __init__(
        self,
        api_key: str,
        sender: str,
        base_url: str = "https://api.resend.com",
        http_client: Optional[httpx.Client] = None,
        timeout_s: float = 30.0,
    ):
        self.api_key = api_key
        self.sender = sender
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self._http_client = http_client

    @classmethod
    def from_config(cls, http_client: Optional[httpx.Client] = None) -> "EmailClient":
        return cls(
            api_key=config.RESEND_API_KEY,
            sender=config.EMAIL_FROM.strip().strip("\"'") or "Santa <santa@santasnumber.com>",
            base_url=config.RESEND_API_BASE,
            http_client=http_client,
            timeout_s=config.HTTP_TIMEOUT_SECONDS,
        )

    def send(self, to: str, subject: str, html: str, kind: str = "generic") -> EmailResult:
        if not self.api_key:
            logger.warning("email_not_configured", kind=kind)
            emails_sent.labels(kind=kind, outcome="skipped").inc()
            return EmailResult(success=False, error="RESEND_API_KEY is not configured")
        if not to:
            emails_sent.labels(kind=kind, outcome="skipped").inc()
            return EmailResult(success=False, error="No recipient")

        payload = {"from": self.sender, "to": [to], "subject": subject, "html": html}
        headers = {"Authorization": f"Bearer {self.api_key}"}
        try:
            if self._http_client is not None:
                resp = self._http_client.post(f"{self.base_url}/emails", json=payload, headers=headers)
            else:
                with httpx.Client(timeout=self.timeout_s) as client:
                    resp = client.post(f"{self.base_url}/emails", json=payload, headers=headers)
        except httpx.HTTPError as e:
            logger.error("email_send_failed", kind=kind, error=str(e))
            emails_sent.labels(kind=kind, outcome="error").inc()
            return EmailResult(success=False, error=str(e))

        if not resp.is_success:
            logger.error("email_send_failed", kind=kind, status_code=resp.status_code, error=resp.text[:500])
            emails_sent.labels(kind=kind, outcome="error").inc()
            return EmailResult(success=False, error=f"Resend API error: {resp.status_code}")

        email_id = None
        try:
            email_id = resp.json().get("id")
        except ValueError:
            pass

        logger.info("email_sent", kind=kind, email_id=email_id)
        emails_sent.labels(kind=kind, outcome="sent").inc()
        return EmailResult(success=True, id=email_id)

    def send_booking_confirmation(self, call: DBCall) -> EmailResult:
        return self.send(
            call.parent_email,
            email_templates.booking_confirmation_subject(call),
            email_templates.build_booking_confirmation(call),
            kind="booking_confirmation",
        )

    def send_reminder(self, call: DBCall) -> EmailResult:
        return self.send(
            call.parent_email,
            email_templates.reminder_subject(call),
            email_templates.build_reminder(call),
            kind="reminder",
        )

    def send_post_call(self, call: DBCall, video_url: str) -> EmailResult:
        return self.send(
            call.parent_email,
            email_templates.post_call_subject(call),
            email_templates.build_post_call(call, video_url),
            kind="post_call",
        )
