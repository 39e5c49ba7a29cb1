"""Affiliate signup: reserve a slug, mint a public code, announce the partner."""

from __future__ import annotations

import re
import secrets
import string
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.config import config
from app.discord import DiscordNotifier
from app.logging_config import get_logger
from app.models import AffiliateLinks, AffiliateOut, AffiliateSignupRequest, AffiliateSignupResponse
from app.services import AffiliateService

logger = get_logger(__name__)

DEFAULT_PAYOUT_PERCENT = 20
PUBLIC_CODE_LENGTH = 12
PUBLIC_CODE_ATTEMPTS = 5

# Top-level site and API paths; an affiliate slug lives at `/<slug>` beside them.
RESERVED_SLUGS = frozenset({
    "affiliate",
    "affiliates",
    "api",
    "book",
    "cancelled",
    "demo",
    "health",
    "legal",
    "metrics",
    "recording",
    "success",
})

_CODE_ALPHABET = string.ascii_uppercase + string.digits


class AffiliateError(Exception):
    def __init__(self, status_code: int, error: str):
        super().__init__(error)
        self.status_code = status_code
        self.error = error

    def to_dict(self) -> dict:
        return {"error": self.error}


def generate_public_code(slug: str) -> str:
    """`north-pole-mom` -> `NORTHPOLXXXX`: up to 8 slug characters plus a random suffix."""
    base = re.sub(r"[^A-Z0-9]", "", slug.upper())
    suffix = "".join(secrets.choice(_CODE_ALPHABET) for _ in range(4))
    return f"{base[:8]}{suffix}"[:PUBLIC_CODE_LENGTH]


def affiliate_links(slug: str, public_code: str, app_url: str = "") -> AffiliateLinks:
    base = (app_url or config.APP_URL).rstrip("/")
    return AffiliateLinks(direct=f"{base}/{slug}", with_code=f"{base}/book?aff={public_code}")


class AffiliateSignup:
    def __init__(self, db: Session, notifier: Optional[DiscordNotifier] = None):
        self.db = db
        self.notifier = notifier

    def _unused_public_code(self, slug: str) -> str:
        for _ in range(PUBLIC_CODE_ATTEMPTS):
            code = generate_public_code(slug)
            if not AffiliateService.public_code_taken(self.db, code):
                return code
        raise AffiliateError(500, "Failed to create affiliate")

    def signup(self, request: AffiliateSignupRequest) -> AffiliateSignupResponse:
        slug = request.slug.lower()
        email = str(request.email)

        if slug in RESERVED_SLUGS:
            raise AffiliateError(400, "This slug is reserved and cannot be used")
        if AffiliateService.get_by_slug(self.db, slug) is not None:
            raise AffiliateError(400, "This slug is already taken")
        if AffiliateService.get_by_email(self.db, email) is not None:
            raise AffiliateError(400, "An affiliate with this email already exists")

        try:
            affiliate = AffiliateService.create_affiliate(
                self.db,
                name=request.name,
                email=email,
                slug=slug,
                public_code=self._unused_public_code(slug),
                payout_percent=DEFAULT_PAYOUT_PERCENT,
                is_active=True,
            )
        except IntegrityError as e:
            # A concurrent signup took the slug or email between the checks and the insert.
            self.db.rollback()
            logger.warning("affiliate_signup_conflict", slug=slug, error=str(e.orig))
            raise AffiliateError(400, "This slug or email is already registered") from e

        if self.notifier is not None:
            try:
                self.notifier.notify_affiliate_joined(affiliate)
            except Exception as e:
                logger.warning("affiliate_notification_error", affiliate_id=affiliate.id, error=str(e))

        return AffiliateSignupResponse(
            affiliate=AffiliateOut.model_validate(affiliate),
            links=affiliate_links(affiliate.slug, affiliate.public_code),
        )

    def list_affiliates(self, active_only: bool = True) -> list[AffiliateOut]:
        return [AffiliateOut.model_validate(a) for a in AffiliateService.list_affiliates(self.db, active_only)]
