"""
Request authentication.

Three schemes, one per kind of caller: an X-API-Key for operator and admin
routes, a bearer secret for cron triggers and an HMAC signature for
ElevenLabs webhooks. Stripe signatures are checked by the Stripe SDK (app.payments).
"""

import hashlib
import hmac
import time
from typing import Optional

from fastapi import Header, HTTPException, Security
from fastapi.security import APIKeyHeader
from app.config import config
from app.logging_config import get_logger

logger = get_logger(__name__)

api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


class SignatureError(ValueError):
    """A webhook request could not be authenticated."""


async def verify_api_key(api_key: str = Security(api_key_header)) -> str:
    """Operator routes (manual re-render). An unset API_KEY leaves them open for local development."""
    if not config.API_KEY:
        return "development"

    if not api_key or not hmac.compare_digest(api_key, config.API_KEY):
        logger.warning("operator_key_rejected", key_prefix=api_key[:4] if api_key else None)
        raise HTTPException(status_code=403, detail="Invalid or missing API key")

    return api_key


async def verify_admin_api_key(api_key: str = Security(api_key_header)) -> str:
    """Admin reads of partner data. Unlike operator routes, an unset API_KEY rejects everything."""
    if not config.API_KEY:
        logger.warning("admin_key_not_configured")
        raise HTTPException(status_code=403, detail="Invalid or missing API key")
    return await verify_api_key(api_key)


async def verify_cron_secret(authorization: Optional[str] = Header(default=None)) -> None:
    """
    Cron triggers must send `Authorization: Bearer <CRON_SECRET>`.
    An unset secret rejects every request.
    """
    expected = f"Bearer {config.CRON_SECRET}"
    if not config.CRON_SECRET or not authorization or not hmac.compare_digest(authorization, expected):
        logger.warning("cron_authentication_failed", has_header=bool(authorization))
        raise HTTPException(status_code=401, detail="Unauthorized")


def parse_signature_header(header: str) -> tuple[int, str]:
    """`t=1700000000,v0=abc...` -> (1700000000, "abc...")"""
    timestamp = None
    digest = None
    for part in header.split(","):
        key, _, value = part.strip().partition("=")
        if key == "t":
            timestamp = value
        elif key == "v0":
            digest = value
    if not timestamp or not digest:
        raise SignatureError("Malformed signature header")
    try:
        return int(timestamp), digest
    except ValueError as e:
        raise SignatureError("Malformed signature timestamp") from e


def compute_elevenlabs_signature(raw_body: bytes, timestamp: int, secret: str) -> str:
    message = f"{timestamp}.".encode() + raw_body
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


def verify_elevenlabs_signature(
    raw_body: bytes,
    header: Optional[str],
    secret: str,
    now: Optional[float] = None,
    tolerance_s: int = 1800,
) -> None:
    """
    Check an `ElevenLabs-Signature` header: HMAC-SHA256 over
    "{t}.{raw_body}", no older than `tolerance_s`. Raises SignatureError.
    """
    if not secret:
        raise SignatureError("ELEVENLABS_WEBHOOK_SECRET is not configured")
    if not header:
        raise SignatureError("Missing signature header")

    timestamp, digest = parse_signature_header(header)
    now = time.time() if now is None else now
    if timestamp < now - tolerance_s:
        raise SignatureError("Signature timestamp too old")

    expected = compute_elevenlabs_signature(raw_body, timestamp, secret)
    if not hmac.compare_digest(expected, digest):
        raise SignatureError("Signature mismatch")
