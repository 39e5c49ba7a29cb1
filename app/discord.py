"""Discord channel notifications (best-effort)."""

from __future__ import annotations

import re
from typing import Any, Optional

import httpx

from app.config import config
from app.db_models import DBAffiliate, DBCall, utcnow
from app.email_templates import format_date, format_time
from app.logging_config import get_logger

logger = get_logger(__name__)

CHRISTMAS_GREEN = 0x2ECC71


def mask_phone_number(phone: str) -> str:
    """+1 234 567 8901 -> +1 ***-***-901"""
    has_plus = (phone or "").startswith("+")
    digits = re.sub(r"\D", "", phone or "")
    if len(digits) < 4:
        return "***"
    country = f"+{digits[0]}" if has_plus else digits[0]
    return f"{country} ***-***-{digits[-3:]}"


def build_payment_message(call: DBCall) -> dict[str, Any]:
    when = f"{format_date(call.scheduled_at, call.timezone)} {format_time(call.scheduled_at, call.timezone)}"
    call_type = "\U0001F4DE Immediate Call" if call.call_now else "\U0001F4C5 Scheduled Call"
    return {
        "username": "Santa's Workshop",
        "embeds": [
            {
                "title": "\U0001F385 New Santa Call Booked! \U0001F384",
                "color": CHRISTMAS_GREEN,
                "fields": [
                    {"name": "Child", "value": call.child_name, "inline": True},
                    {"name": "Age", "value": f"{call.child_age} years old", "inline": True},
                    {"name": "Phone", "value": mask_phone_number(call.phone_number), "inline": True},
                    {"name": "Scheduled", "value": when, "inline": False},
                    {"name": "Type", "value": call_type, "inline": True},
                    {"name": "Parent Email", "value": call.parent_email, "inline": True},
                ],
                "timestamp": utcnow().isoformat() + "Z",
                "footer": {"text": "Santa's Number - Spreading Holiday Joy"},
            }
        ],
    }


def build_affiliate_message(affiliate: DBAffiliate) -> dict[str, Any]:
    return {
        "username": "Santa's Workshop",
        "embeds": [
            {
                "title": "\U0001F91D New Affiliate Joined!",
                "color": CHRISTMAS_GREEN,
                "fields": [
                    {"name": "Name", "value": affiliate.name, "inline": True},
                    {"name": "Email", "value": affiliate.email, "inline": True},
                    {"name": "Link", "value": f"{config.APP_URL.rstrip('/')}/{affiliate.slug}", "inline": False},
                ],
                "timestamp": utcnow().isoformat() + "Z",
                "footer": {"text": "Santa's Number - Affiliate Program"},
            }
        ],
    }


class DiscordNotifier:
    def __init__(self, webhook_url: str, http_client: Optional[httpx.Client] = None, timeout_s: float = 10.0):
        self.webhook_url = webhook_url
        self.timeout_s = timeout_s
        self._http_client = http_client

    @classmethod
    def from_config(cls, http_client: Optional[httpx.Client] = None) -> "DiscordNotifier":
        return cls(config.DISCORD_PAYMENT_WEBHOOK_URL, http_client=http_client)

    def notify_payment(self, call: DBCall) -> bool:
        """Post the new-booking embed. Returns False (never raises) on any failure."""
        if self._post(build_payment_message(call), call_id=call.id):
            logger.info("discord_payment_notification_sent", call_id=call.id)
            return True
        return False

    def notify_affiliate_joined(self, affiliate: DBAffiliate) -> bool:
        if self._post(build_affiliate_message(affiliate), affiliate_id=affiliate.id):
            logger.info("discord_affiliate_notification_sent", affiliate_id=affiliate.id)
            return True
        return False

    def _post(self, message: dict[str, Any], **log_context: Any) -> bool:
        if not self.webhook_url:
            logger.warning("discord_not_configured", **log_context)
            return False

        try:
            if self._http_client is not None:
                resp = self._http_client.post(self.webhook_url, json=message)
            else:
                with httpx.Client(timeout=self.timeout_s) as client:
                    resp = client.post(self.webhook_url, json=message)
        except httpx.HTTPError as e:
            logger.warning("discord_notification_failed", error=str(e), **log_context)
            return False

        if not resp.is_success:
            logger.warning("discord_notification_failed", status_code=resp.status_code, **log_context)
            return False
        return True
