from __future__ import annotations

import json
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool
from starlette.datastructures import UploadFile

from app.booking import BookingError, BookingService
from app.clients import get_booking_service, get_storage
from app.config import config
from app.database import get_db
from app.db_models import DBCall, CallStatus, PaymentStatus, VideoStatus
from app.logging_config import logger
from app.models import BookingRequest
from app.services import CallService
from app.storage import StorageError, SupabaseStorage, recording_key, video_key

router = APIRouter(prefix="/api/calls", tags=["Calls"])


# POST /api/calls
# Gets: multipart form: `data` (JSON booking) + optional `voiceRecording` audio file
# Returns: {callId, clientSecret, amount, currency, checkoutUrl}
# Example:
#   curl -X POST http://localhost:8000/api/calls -F 'data={"childName":"Emma",...}' -F voiceRecording=@note.webm
@router.post("")
async def create_call(request: Request, service: BookingService = Depends(get_booking_service)):
    """Create a booking and open its Stripe payment."""
    form = await request.form()
    data = form.get("data")
    if not data or not isinstance(data, str):
        return JSONResponse(status_code=400, content={"error": "Missing form data"})

    try:
        parsed = json.loads(data)
    except ValueError:
        return JSONResponse(status_code=400, content={"error": "Invalid JSON data"})

    try:
        booking = BookingRequest.model_validate(parsed)
    except ValidationError as e:
        return JSONResponse(
            status_code=400,
            content={"error": "Validation failed", "details": json.loads(e.json(include_url=False))},
        )

    voice_bytes: Optional[bytes] = None
    voice_type = ""
    voice_file = form.get("voiceRecording")
    if isinstance(voice_file, UploadFile):
        voice_bytes = await voice_file.read()
        voice_type = voice_file.content_type or ""

    try:
        response = await run_in_threadpool(service.create_booking, booking, voice_bytes, voice_type)
    except BookingError as e:
        return JSONResponse(status_code=e.status_code, content=e.to_dict())

    return response.model_dump(by_alias=True)


def _signed_or_none(storage: SupabaseStorage, bucket: str, key: str, call_id: str) -> Optional[str]:
    try:
        return storage.create_signed_url(bucket, key, config.SIGNED_URL_EXPIRY_SECONDS)
    except StorageError as e:
        logger.warning("signed_url_failed", call_id=call_id, bucket=bucket, error=str(e))
        return None


# GET /api/calls/{call_id}
# Gets: path param call_id
# Returns: booking status with fresh 1-hour signed artifact URLs
# Example:
#   curl http://localhost:8000/api/calls/5f3c...
@router.get("/{call_id}")
def get_call_status(
    call_id: str,
    db: Session = Depends(get_db),
    storage: SupabaseStorage = Depends(get_storage),
):
    call: Optional[DBCall] = CallService.get_call(db, call_id)
    if call is None:
        raise HTTPException(status_code=404, detail="Call not found")

    recording_url = None
    if call.recording_url:
        recording_url = _signed_or_none(storage, config.RECORDINGS_BUCKET, recording_key(call.id), call.id)
    video_url = None
    if call.video_url and VideoStatus(call.video_status) == VideoStatus.COMPLETED:
        video_url = _signed_or_none(storage, config.VIDEOS_BUCKET, video_key(call.id), call.id)

    return {
        "callId": call.id,
        "childName": call.child_name,
        "callStatus": CallStatus(call.call_status).value,
        "paymentStatus": PaymentStatus(call.payment_status).value,
        "videoStatus": VideoStatus(call.video_status).value,
        "scheduledAt": call.scheduled_at.isoformat(),
        "recordingUrl": recording_url,
        "videoUrl": video_url,
    }
