"""
Background jobs with Celery (Redis broker).

`render_call_video` is queued by the post-call audio webhook and the manual
re-render route. Beat drives the three periodic jobs, which do the same work
as the /api/cron routes for deployments without an external scheduler.

Run a worker with beat:
    celery -A app.celery_tasks:celery_app worker --beat --loglevel=info
"""

from celery import Celery
from app.config import config

celery_app = Celery(
    'call_santa',
    broker=config.REDIS_URL,
    backend=config.REDIS_URL
)

celery_app.conf.update(
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone='UTC',
    enable_utc=True,
    task_track_started=True,
    # A render may run up to RENDER_TIMEOUT_SECONDS in ffmpeg alone.
    task_time_limit=config.RENDER_TIMEOUT_SECONDS + 300,
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    beat_schedule={
        'dispatch-scheduled-calls': {'task': 'dispatch_scheduled_calls', 'schedule': 60.0},
        'send-call-reminders': {'task': 'send_call_reminders', 'schedule': 300.0},
        'process-pending-videos': {'task': 'process_pending_videos', 'schedule': 120.0},
    },
)


@celery_app.task(name='render_call_video')
def render_call_video_task(call_id: str):
    """
    Render and publish the keepsake video for one call.

    Returns:
        dict: RenderResult fields
    """
    from app.clients import build_video_pipeline
    from app.database import session_scope
    from app.logging_config import call_context, logger
    from app.services import CallService

    with call_context(call_id, task='render_call_video'), session_scope() as db:
        call = CallService.get_call(db, call_id)
        if not call:
            logger.error("render_call_not_found")
            return {"success": False, "error": "Call not found"}

        result = build_video_pipeline(db).render(call.id, call.child_name)
        return result.model_dump()


@celery_app.task(name='process_pending_videos')
def process_pending_videos_task(limit: int = 0):
    """Backup for renders that never reached the queue."""
    from app.clients import build_video_pipeline
    from app.database import session_scope
    from app.video.pipeline import process_pending_videos

    with session_scope() as db:
        report = process_pending_videos(db, build_video_pipeline(db), limit or config.PENDING_VIDEO_BATCH_SIZE)
        return report.model_dump(by_alias=True)


@celery_app.task(name='dispatch_scheduled_calls')
def dispatch_scheduled_calls_task():
    from app.database import session_scope
    from app.dispatcher import CallDispatcher
    from app.scheduler import ScheduledCallDriver

    with session_scope() as db:
        return ScheduledCallDriver(db, CallDispatcher.from_config()).run().model_dump(by_alias=True)


@celery_app.task(name='send_call_reminders')
def send_call_reminders_task():
    from app.database import session_scope
    from app.email_client import EmailClient
    from app.scheduler import ReminderDriver

    with session_scope() as db:
        return ReminderDriver(db, EmailClient.from_config()).run().model_dump(by_alias=True)
