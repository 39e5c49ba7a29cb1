from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from app.clients import get_render_queue, CeleryRenderQueue
from app.database import get_db
from app.db_models import CallEventType, VideoStatus
from app.logging_config import logger
from app.security import verify_api_key
from app.services import CallService, CallEventService

router = APIRouter(prefix="/api/videos", tags=["Videos"])


# POST /api/videos/{call_id}/render
# Gets: path param call_id + X-API-Key header
# Returns: {"queued": true, "callId"} (202)
# Example:
#   curl -X POST -H 'X-API-Key: <key>' http://localhost:8000/api/videos/5f3c.../render
@router.post("/{call_id}/render", status_code=202)
async def rerender_video(
    call_id: str,
    db: Session = Depends(get_db),
    render_queue: CeleryRenderQueue = Depends(get_render_queue),
    api_key: str = Depends(verify_api_key),
):
    """Queue a (re-)render of a call video."""
    call = CallService.get_call(db, call_id)
    if call is None:
        raise HTTPException(status_code=404, detail="Call not found")
    if not call.recording_url:
        raise HTTPException(status_code=409, detail="Call has no recording yet")
    if VideoStatus(call.video_status) == VideoStatus.PROCESSING:
        raise HTTPException(status_code=409, detail="Render already in progress")

    CallService.set_video_status(db, call, VideoStatus.PENDING)
    try:
        await run_in_threadpool(render_queue.enqueue, call_id)
    except Exception as e:
        logger.warning("video_render_enqueue_failed", call_id=call_id, error=str(e))
        return {"queued": False, "callId": call_id, "videoStatus": VideoStatus.PENDING.value}

    CallEventService.log_event(db, call_id, CallEventType.VIDEO_RENDER_QUEUED, {"source": "manual"})
    return {"queued": True, "callId": call_id, "videoStatus": VideoStatus.PENDING.value}
