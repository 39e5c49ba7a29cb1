"""
Liveness, readiness and configuration probes for the load balancer and
the ops dashboard. Only the database gates readiness; provider keys are
reported so a half-configured deploy is visible at a glance.
"""

import os

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.orm import Session

from app.config import config
from app.database import get_db
from app.logging_config import logger

router = APIRouter(tags=["Health & Monitoring"])

SERVICE_NAME = "call-santa"
SERVICE_VERSION = "1.0.0"


def _configured(flag: bool):
    return flag or "not_configured"


# GET /health
# Gets: nothing
# Returns: {status, service, version}
# Example:
#   curl http://localhost:8000/health
@router.get("/health")
async def health_check():
    """Liveness: the process is up and serving."""
    return {"status": "healthy", "service": SERVICE_NAME, "version": SERVICE_VERSION}


# GET /health/ready
# Gets: nothing
# Returns: per-dependency checks; 503 while the database is unreachable
# Example:
#   curl http://localhost:8000/health/ready
@router.get("/health/ready")
def readiness_check(db: Session = Depends(get_db)):
    checks = {
        "database": False,
        "stripe": _configured(config.has_stripe_config()),
        "elevenlabs": _configured(config.has_elevenlabs_config()),
        "storage": _configured(config.has_storage_config()),
        "email": _configured(config.has_email_config()),
        "ready": False,
    }

    try:
        db.execute(text("SELECT 1"))
        checks["database"] = True
    except Exception as e:
        logger.warning("readiness_database_unreachable", error=str(e))

    checks["ready"] = checks["database"] is True
    return JSONResponse(status_code=200 if checks["ready"] else 503, content=checks)


# GET /health/info
# Gets: nothing
# Returns: which integrations are configured and which features that enables
# Example:
#   curl http://localhost:8000/health/info
@router.get("/health/info")
async def system_info():
    return {
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "configuration": {
            "stripe_configured": config.has_stripe_config(),
            "elevenlabs_configured": config.has_elevenlabs_config(),
            "storage_configured": config.has_storage_config(),
            "email_configured": config.has_email_config(),
            "discord_configured": bool(config.DISCORD_PAYMENT_WEBHOOK_URL),
            "openai_configured": config.has_openai_key(),
            "cron_secret_configured": bool(config.CRON_SECRET),
            "debug_mode": config.DEBUG,
        },
        "features": {
            "immediate_calls": config.has_elevenlabs_config(),
            "post_call_webhooks": bool(config.ELEVENLABS_WEBHOOK_SECRET),
            "voice_note_transcription": config.has_openai_key(),
            "video_rendering": config.has_storage_config(),
            "outro_clip": bool(config.OUTRO_PATH) and os.path.exists(config.OUTRO_PATH),
        },
    }
