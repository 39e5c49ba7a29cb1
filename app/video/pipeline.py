"""Post-call video pipeline.

render() chains signed URL -> download -> analysis -> render -> outro ->
upload -> Call update -> post-call email. Analysis and outro failures
degrade; signed URL, render and upload failures mark the video failed.
Nothing is raised past render(); callers always get a RenderResult. Only a
render this worker claimed is ever marked failed.
"""

from __future__ import annotations

import os
import shutil
import tempfile
from datetime import timedelta
from typing import Optional

from sqlalchemy.orm import Session

from app.config import config
from app.db_models import CallEventType, VideoStatus, utcnow
from app.email_client import EmailClient
from app.logging_config import get_logger
from app.metrics import videos_rendered
from app.models import BatchItemResult, BatchReport, RenderResult
from app.services import CallService, CallEventService
from app.storage import SupabaseStorage, recording_key, video_key
from app.video.audio_analysis import AudioAnalysis, AudioAnalyzer, fallback_analysis
from app.video.outro import concatenate_with_outro
from app.video.renderer import FfmpegVideoRenderer, RenderJob

logger = get_logger(__name__)


def stale_render_age() -> timedelta:
    """A `processing` video older than the worker hard time limit belongs to a dead worker."""
    return timedelta(seconds=config.RENDER_TIMEOUT_SECONDS + 300)


class VideoRenderPipeline:
    def __init__(
        self,
        db: Session,
        storage: SupabaseStorage,
        analyzer: AudioAnalyzer,
        renderer: FfmpegVideoRenderer,
        email_client: Optional[EmailClient] = None,
        outro_path: Optional[str] = None,
        fps: Optional[int] = None,
        intro_seconds: Optional[int] = None,
    ):
        self.db = db
        self.storage = storage
        self.analyzer = analyzer
        self.renderer = renderer
        self.email_client = email_client
        self.outro_path = config.OUTRO_PATH if outro_path is None else outro_path
        self.fps = fps or config.VIDEO_FPS
        self.intro_seconds = config.VIDEO_INTRO_SECONDS if intro_seconds is None else intro_seconds

    def render(self, call_id: str, child_name: str) -> RenderResult:
        try:
            refused = self._claim(call_id)
        except Exception as e:
            self.db.rollback()
            error = str(e) or e.__class__.__name__
            logger.error("video_render_claim_failed", call_id=call_id, error=error)
            return RenderResult(success=False, error=error)
        if refused is not None:
            return refused

        logger.info("video_pipeline_started", call_id=call_id)
        try:
            video_url = self._render_and_publish(call_id, child_name)
        except Exception as e:
            error = str(e) or e.__class__.__name__
            logger.error("video_pipeline_failed", call_id=call_id, error=error)
            self._mark_failed(call_id, error)
            return RenderResult(success=False, error=error)

        self._send_post_call_email(call_id, video_url)
        return RenderResult(success=True, video_url=video_url)

    def _claim(self, call_id: str) -> Optional[RenderResult]:
        """None when this worker owns the render; otherwise the refusal."""
        call = CallService.get_call(self.db, call_id)
        if call is None:
            logger.warning("video_render_call_not_found", call_id=call_id)
            return RenderResult(success=False, error="Call not found")

        if CallService.claim_for_render(self.db, call_id):
            return None

        self.db.refresh(call)
        status = VideoStatus(call.video_status)
        if status == VideoStatus.PROCESSING:
            logger.info("video_render_already_running", call_id=call_id)
            return RenderResult(success=False, error="Render already in progress")
        logger.info("video_render_not_pending", call_id=call_id, video_status=status.value)
        return RenderResult(success=False, error="Video already rendered")

    def _render_and_publish(self, call_id: str, child_name: str) -> str:
        work_dir = tempfile.mkdtemp(prefix=f"santa-{call_id}-")
        try:
            video_url = self._render_and_upload(call_id, child_name, work_dir)
        finally:
            shutil.rmtree(work_dir, ignore_errors=True)

        call = CallService.require_call(self.db, call_id)
        CallService.set_video_status(
            self.db,
            call,
            VideoStatus.COMPLETED,
            video_url=video_url,
            video_generated_at=utcnow(),
        )
        CallEventService.log_event(self.db, call_id, CallEventType.VIDEO_RENDER_COMPLETED, {"video_url": video_url})
        videos_rendered.labels(outcome="completed").inc()
        logger.info("video_pipeline_completed", call_id=call_id, video_url=video_url)
        return video_url

    def _render_and_upload(self, call_id: str, child_name: str, work_dir: str) -> str:
        signed_url = self.storage.create_signed_url(
            config.RECORDINGS_BUCKET, recording_key(call_id), config.SIGNED_URL_EXPIRY_SECONDS
        )

        audio_path = os.path.join(work_dir, "audio.mp3")
        size = self.storage.download_to_file(signed_url, audio_path)
        logger.info("video_audio_downloaded", call_id=call_id, size_bytes=size)

        analysis = self._analyze(call_id, audio_path)

        job = RenderJob(
            call_id=call_id,
            child_name=child_name,
            audio_path=audio_path,
            audio_duration_seconds=analysis.duration_seconds,
            waveform=analysis.waveform,
            points_per_second=getattr(self.analyzer, "points_per_second", config.VIDEO_WAVEFORM_POINTS_PER_SECOND),
            fps=self.fps,
            intro_seconds=self.intro_seconds,
        )
        main_path = self.renderer.render(job, os.path.join(work_dir, "main.mp4"))
        final_path = concatenate_with_outro(
            main_path,
            self.outro_path,
            os.path.join(work_dir, "final.mp4"),
            ffmpeg=config.FFMPEG_BINARY,
        )

        with open(final_path, "rb") as f:
            content = f.read()
        key = video_key(call_id)
        self.storage.upload(config.VIDEOS_BUCKET, key, content, "video/mp4", upsert=True)
        return self.storage.public_url(config.VIDEOS_BUCKET, key)

    def _analyze(self, call_id: str, audio_path: str) -> AudioAnalysis:
        try:
            return self.analyzer.analyze(audio_path)
        except Exception as e:
            logger.warning("audio_analysis_failed", call_id=call_id, error=str(e))
            return fallback_analysis()

    def _mark_failed(self, call_id: str, error: str) -> None:
        videos_rendered.labels(outcome="failed").inc()
        try:
            self.db.rollback()
            call = CallService.get_call(self.db, call_id)
            if call is not None:
                CallService.set_video_status(self.db, call, VideoStatus.FAILED)
            CallEventService.log_event(self.db, call_id, CallEventType.VIDEO_RENDER_FAILED, {"error": error})
        except Exception as e:
            logger.error("video_status_update_failed", call_id=call_id, error=str(e))

    def _send_post_call_email(self, call_id: str, video_url: str) -> None:
        """At most one post-call email per Call, claimed through transcript_sent_at."""
        if self.email_client is None:
            return
        try:
            call = CallService.require_call(self.db, call_id)
            if not CallService.claim_post_call_email(self.db, call.id):
                logger.info("post_call_email_already_sent", call_id=call.id)
                return
            result = self.email_client.send_post_call(call, video_url)
            if not result.success:
                CallService.release_post_call_email(self.db, call.id)
                logger.warning("post_call_email_not_sent", call_id=call.id, error=result.error)
                return
            CallEventService.log_event(
                self.db,
                call.id,
                CallEventType.POST_CALL_EMAIL_SENT,
                {"email_id": result.id, "video_url": video_url},
            )
        except Exception as e:
            self.db.rollback()
            logger.error("post_call_email_error", call_id=call_id, error=str(e))


def process_pending_videos(db: Session, pipeline: VideoRenderPipeline, limit: int = 10) -> BatchReport:
    """Render every Call whose video is pending; one failure never stops the batch."""
    report = BatchReport()
    CallService.requeue_stale_renders(db, stale_render_age())
    calls = CallService.list_pending_videos(db, limit=limit)
    logger.info("pending_videos_found", count=len(calls))

    for call in calls:
        call_id = call.id
        try:
            result = pipeline.render(call_id, call.child_name)
            report.add(BatchItemResult(call_id=call_id, success=result.success, error=result.error))
        except Exception as e:
            db.rollback()
            logger.error("pending_video_error", call_id=call_id, error=str(e))
            report.add(BatchItemResult(call_id=call_id, success=False, error=str(e)))

    logger.info("pending_videos_processed", processed=report.processed, success=report.success, failed=report.failed)
    return report
