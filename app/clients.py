"""
Production wiring: builds provider clients from configuration and exposes
them, and the components that use them, as FastAPI dependencies.

Tests replace the leaf factories through `app.dependency_overrides`.
"""

from fastapi import Depends
from sqlalchemy.orm import Session

from app.affiliates import AffiliateSignup
from app.booking import BookingService, StripeGateway
from app.call_events import CallEventWebhookHandler
from app.database import get_db
from app.discord import DiscordNotifier
from app.dispatcher import CallDispatcher
from app.email_client import EmailClient
from app.logging_config import get_logger
from app.payments import PaymentSettlementHandler
from app.scheduler import ReminderDriver, ScheduledCallDriver
from app.storage import SupabaseStorage
from app.transcription import VoiceNoteTranscriber
from app.video.audio_analysis import AudioAnalyzer
from app.video.pipeline import VideoRenderPipeline
from app.video.renderer import FfmpegVideoRenderer

logger = get_logger(__name__)


class CeleryRenderQueue:
    """Hands render jobs to the Celery worker."""

    def enqueue(self, call_id: str) -> None:
        from app.celery_tasks import render_call_video_task

        render_call_video_task.delay(call_id)
        logger.info("video_render_enqueued", call_id=call_id)


# Leaf clients

def get_dispatcher() -> CallDispatcher:
    return CallDispatcher.from_config()


def get_storage() -> SupabaseStorage:
    return SupabaseStorage.from_config()


def get_email_client() -> EmailClient:
    return EmailClient.from_config()


def get_notifier() -> DiscordNotifier:
    return DiscordNotifier.from_config()


def get_render_queue() -> CeleryRenderQueue:
    return CeleryRenderQueue()


def get_stripe_gateway() -> StripeGateway:
    return StripeGateway.from_config()


def get_transcriber() -> VoiceNoteTranscriber:
    return VoiceNoteTranscriber()


def get_analyzer() -> AudioAnalyzer:
    return AudioAnalyzer.from_config()


def get_renderer() -> FfmpegVideoRenderer:
    return FfmpegVideoRenderer.from_config()


# Components

def get_payment_handler(
    db: Session = Depends(get_db),
    dispatcher: CallDispatcher = Depends(get_dispatcher),
    email_client: EmailClient = Depends(get_email_client),
    notifier: DiscordNotifier = Depends(get_notifier),
) -> PaymentSettlementHandler:
    return PaymentSettlementHandler(db, dispatcher, email_client, notifier)


def get_call_event_handler(
    db: Session = Depends(get_db),
    storage: SupabaseStorage = Depends(get_storage),
    render_queue: CeleryRenderQueue = Depends(get_render_queue),
) -> CallEventWebhookHandler:
    return CallEventWebhookHandler(db, storage, render_queue)


def get_scheduled_call_driver(
    db: Session = Depends(get_db),
    dispatcher: CallDispatcher = Depends(get_dispatcher),
) -> ScheduledCallDriver:
    return ScheduledCallDriver(db, dispatcher)


def get_reminder_driver(
    db: Session = Depends(get_db),
    email_client: EmailClient = Depends(get_email_client),
) -> ReminderDriver:
    return ReminderDriver(db, email_client)


def get_video_pipeline(
    db: Session = Depends(get_db),
    storage: SupabaseStorage = Depends(get_storage),
    analyzer: AudioAnalyzer = Depends(get_analyzer),
    renderer: FfmpegVideoRenderer = Depends(get_renderer),
    email_client: EmailClient = Depends(get_email_client),
) -> VideoRenderPipeline:
    return VideoRenderPipeline(db, storage, analyzer, renderer, email_client)


def get_booking_service(
    db: Session = Depends(get_db),
    payments: StripeGateway = Depends(get_stripe_gateway),
    storage: SupabaseStorage = Depends(get_storage),
    transcriber: VoiceNoteTranscriber = Depends(get_transcriber),
) -> BookingService:
    return BookingService(db, payments, storage, transcriber)


def get_affiliate_signup(
    db: Session = Depends(get_db),
    notifier: DiscordNotifier = Depends(get_notifier),
) -> AffiliateSignup:
    return AffiliateSignup(db, notifier)


def build_video_pipeline(db: Session) -> VideoRenderPipeline:
    """Pipeline for workers running outside a request."""
    return VideoRenderPipeline(
        db,
        SupabaseStorage.from_config(),
        AudioAnalyzer.from_config(),
        FfmpegVideoRenderer.from_config(),
        EmailClient.from_config(),
    )
