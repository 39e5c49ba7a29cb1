from __future__ import annotations

import json

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from app.call_events import CallEventWebhookHandler
from app.clients import get_call_event_handler, get_payment_handler
from app.config import config
from app.logging_config import logger
from app.payments import PaymentSettlementHandler, verify_stripe_event
from app.security import SignatureError, verify_elevenlabs_signature

router = APIRouter(prefix="/api/webhooks", tags=["Webhooks"])


# POST /api/webhooks/stripe
# Gets: raw Stripe event JSON + `stripe-signature` header
# Returns: {"received": true}; 400 on a bad signature, 500 if handling fails
# Example:
#   stripe listen --forward-to localhost:8000/api/webhooks/stripe
@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    handler: PaymentSettlementHandler = Depends(get_payment_handler),
):
    """Settle payments: mark Calls paid, dispatch immediate calls, send confirmations."""
    raw = await request.body()
    try:
        event = verify_stripe_event(raw, request.headers.get("stripe-signature"), config.STRIPE_WEBHOOK_SECRET)
    except SignatureError as e:
        logger.warning("stripe_signature_rejected", error=str(e))
        return JSONResponse(status_code=400, content={"error": str(e)})

    logger.info("stripe_webhook_received", event_type=event.get("type"), event_id=event.get("id"))
    try:
        await run_in_threadpool(handler.handle_event, event)
    except Exception as e:
        logger.error("stripe_webhook_failed", event_type=event.get("type"), error=str(e))
        return JSONResponse(status_code=500, content={"error": "Webhook handler failed"})

    return {"received": True}


# POST /api/webhooks/elevenlabs
# Gets: raw post-call event JSON + `ElevenLabs-Signature: t=<unix>,v0=<hex>` header
# Returns: {"received": true, "callId", "type"} or {"received": true, "warning": "Call not found"}
# Example:
#   curl -X POST http://localhost:8000/api/webhooks/elevenlabs -H 'ElevenLabs-Signature: t=...,v0=...' -d @event.json
@router.post("/elevenlabs")
async def elevenlabs_webhook(
    request: Request,
    handler: CallEventWebhookHandler = Depends(get_call_event_handler),
):
    """Apply post-call transcription, audio and initiation-failure events."""
    raw = await request.body()
    try:
        verify_elevenlabs_signature(
            raw,
            request.headers.get("elevenlabs-signature"),
            config.ELEVENLABS_WEBHOOK_SECRET,
            tolerance_s=config.ELEVENLABS_SIGNATURE_TOLERANCE_SECONDS,
        )
    except SignatureError as e:
        logger.warning("elevenlabs_signature_rejected", error=str(e))
        return JSONResponse(status_code=401, content={"error": "Invalid signature"})

    try:
        payload = json.loads(raw)
    except ValueError:
        return JSONResponse(status_code=400, content={"error": "Invalid JSON"})

    try:
        return await run_in_threadpool(handler.handle, payload)
    except Exception as e:
        logger.error("elevenlabs_webhook_failed", event_type=payload.get("type") if isinstance(payload, dict) else None, error=str(e))
        return JSONResponse(status_code=500, content={"error": "Webhook handler failed"})


# GET /api/webhooks/elevenlabs
# Gets: nothing
# Returns: liveness message for the provider dashboard
# Example:
#   curl http://localhost:8000/api/webhooks/elevenlabs
@router.get("/elevenlabs")
async def elevenlabs_webhook_probe():
    return {"status": "ok", "message": "ElevenLabs webhook endpoint is active"}
