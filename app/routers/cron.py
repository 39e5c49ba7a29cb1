from fastapi import APIRouter, Depends
from starlette.concurrency import run_in_threadpool

from app.clients import get_reminder_driver, get_scheduled_call_driver, get_video_pipeline
from app.config import config
from app.database import get_db
from app.scheduler import ReminderDriver, ScheduledCallDriver
from app.security import verify_cron_secret
from app.video.pipeline import VideoRenderPipeline, process_pending_videos

router = APIRouter(prefix="/api/cron", tags=["Cron"], dependencies=[Depends(verify_cron_secret)])


# GET /api/cron/schedule-calls
# Gets: Authorization: Bearer <CRON_SECRET>
# Returns: {processed, success, failed, results[]}
# Example:
#   curl -H "Authorization: Bearer $CRON_SECRET" http://localhost:8000/api/cron/schedule-calls
@router.get("/schedule-calls")
async def schedule_calls(driver: ScheduledCallDriver = Depends(get_scheduled_call_driver)):
    """Dispatch paid scheduled calls that are due within the next minute."""
    report = await run_in_threadpool(driver.run)
    return report.model_dump(by_alias=True)


# GET /api/cron/send-reminders
# Gets: Authorization: Bearer <CRON_SECRET>
# Returns: {processed, success, failed, results[]}
# Example:
#   curl -H "Authorization: Bearer $CRON_SECRET" http://localhost:8000/api/cron/send-reminders
@router.get("/send-reminders")
async def send_reminders(driver: ReminderDriver = Depends(get_reminder_driver)):
    """Email parents whose call starts in about an hour."""
    report = await run_in_threadpool(driver.run)
    return report.model_dump(by_alias=True)


# GET /api/cron/process-videos
# Gets: Authorization: Bearer <CRON_SECRET>
# Returns: {processed, success, failed, results[]}
# Example:
#   curl -H "Authorization: Bearer $CRON_SECRET" http://localhost:8000/api/cron/process-videos
@router.get("/process-videos")
async def process_videos(
    pipeline: VideoRenderPipeline = Depends(get_video_pipeline),
    db=Depends(get_db),
):
    """Render pending videos (backup for render jobs that never reached the queue)."""
    report = await run_in_threadpool(process_pending_videos, db, pipeline, config.PENDING_VIDEO_BATCH_SIZE)
    return report.model_dump(by_alias=True)
