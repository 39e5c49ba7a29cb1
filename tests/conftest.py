from datetime import timedelta
from typing import Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.db_models import DBPricingConfig, utcnow
from app.dispatcher import DispatchError
from app.email_client import EmailResult
from app.models import CallData, DispatchResult
from app.services import CallService
from app.storage import StorageError


@pytest.fixture(autouse=True)
def _safe_test_config(monkeypatch):
    """Force deterministic, offline-safe config for tests.

    The repo loads .env on import; these overrides keep every provider
    pointed at fakes or disabled.
    """
    from app.config import config, Config

    overrides = {
        "API_KEY": "",
        "CRON_SECRET": "test-cron-secret",
        "STRIPE_SECRET_KEY": "sk_test_dummy",
        "STRIPE_WEBHOOK_SECRET": "whsec_test_secret",
        "ELEVENLABS_API_KEY": "xi-test",
        "ELEVENLABS_AGENT_ID": "agent_test",
        "ELEVENLABS_AGENT_PHONE_NUMBER_ID": "phone_test",
        "ELEVENLABS_WEBHOOK_SECRET": "el_test_secret",
        "SUPABASE_URL": "https://storage.test",
        "SUPABASE_SERVICE_ROLE_KEY": "service-role-test",
        "RESEND_API_KEY": "",
        "DISCORD_PAYMENT_WEBHOOK_URL": "",
        "OPENAI_API_KEY": "",
        "OUTRO_PATH": "",
    }
    for name, value in overrides.items():
        monkeypatch.setattr(Config, name, value, raising=False)
        # Keep the instance in sync for any code that reads instance attributes directly.
        monkeypatch.setattr(config, name, value, raising=False)
    return config


@pytest.fixture
def db_session():
    """Fresh in-memory database per test."""
    from app import db_models  # noqa: F401
    from app.database import Base

    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def pricing(db_session):
    row = DBPricingConfig(base_price_cents=1499, recording_addon_cents=500, currency="usd", is_active=True)
    db_session.add(row)
    db_session.commit()
    return row


@pytest.fixture
def make_call(db_session):
    def _make_call(**overrides):
        fields = dict(
            child_name="Emma",
            child_age=6,
            child_info_text="Loves dinosaurs",
            gift_budget=100,
            phone_number="+15551234567",
            phone_country_code="+1",
            parent_email="parent@example.com",
            scheduled_at=utcnow() + timedelta(days=1),
            timezone="America/New_York",
            call_now=False,
            base_amount_cents=1499,
            total_amount_cents=1499,
            currency="usd",
        )
        status_fields = {
            k: overrides.pop(k)
            for k in list(overrides)
            if k in {"call_status", "payment_status", "video_status", "elevenlabs_conversation_id",
                     "recording_url", "transcript_sent_at", "video_url"}
        }
        fields.update(overrides)
        call = CallService.create_call(db_session, **fields)
        if status_fields:
            CallService.update_fields(db_session, call, **status_fields)
        return call

    return _make_call


# Fakes for provider clients

class FakeDispatcher:
    def __init__(self):
        self.calls: list[tuple[str, CallData]] = []
        self.fail_for: set[str] = set()
        self.error: Optional[Exception] = None

    def dispatch(self, phone_number: str, call_data: CallData) -> DispatchResult:
        self.calls.append((phone_number, call_data))
        if self.error is not None:
            raise self.error
        if phone_number in self.fail_for:
            raise DispatchError("ElevenLabs call failed: 500 - boom")
        n = len(self.calls)
        return DispatchResult(conversation_id=f"conv_{n}", call_sid=f"CA{n:04d}", success=True)


class FakeStorage:
    def __init__(self):
        self.objects: dict[tuple[str, str], bytes] = {}
        self.fail_upload_buckets: set[str] = set()
        self.fail_sign = False
        self.download_content = b"ID3fake-mp3-bytes"

    def upload(self, bucket, key, content, content_type, upsert=True):
        if bucket in self.fail_upload_buckets:
            raise StorageError(f"Failed to upload {bucket}/{key}: 500")
        self.objects[(bucket, key)] = content

    def public_url(self, bucket, key):
        return f"https://storage.test/storage/v1/object/public/{bucket}/{key}"

    def create_signed_url(self, bucket, key, expires_in=3600):
        if self.fail_sign:
            raise StorageError(f"Failed to sign {bucket}/{key}: 404")
        return f"https://storage.test/storage/v1/object/sign/{bucket}/{key}?token=t&expires={expires_in}"

    def download_to_file(self, url, dest_path):
        with open(dest_path, "wb") as f:
            f.write(self.download_content)
        return len(self.download_content)


class FakeEmailClient:
    def __init__(self):
        self.sent: list[tuple[str, str]] = []
        self.fail = False

    def _send(self, kind, call):
        self.sent.append((kind, call.id))
        if self.fail:
            return EmailResult(success=False, error="Resend API error: 500")
        return EmailResult(success=True, id=f"email_{len(self.sent)}")

    def send_booking_confirmation(self, call):
        return self._send("booking_confirmation", call)

    def send_reminder(self, call):
        return self._send("reminder", call)

    def send_post_call(self, call, video_url):
        return self._send("post_call", call)

    def kinds(self):
        return [kind for kind, _ in self.sent]


class FakeNotifier:
    def __init__(self):
        self.notified: list[str] = []

    def notify_payment(self, call):
        self.notified.append(call.id)
        return True

    def notify_affiliate_joined(self, affiliate):
        self.notified.append(affiliate.slug)
        return True


class FakeRenderQueue:
    def __init__(self):
        self.enqueued: list[str] = []
        self.fail = False

    def enqueue(self, call_id):
        if self.fail:
            raise ConnectionError("broker unavailable")
        self.enqueued.append(call_id)


class FakeStripeGateway:
    def __init__(self):
        self.intents = []
        self.sessions = []
        self.fail = False

    def create_payment_intent(self, call, include_recording, amount_cents, currency):
        if self.fail:
            raise RuntimeError("stripe down")
        self.intents.append((call.id, include_recording, amount_cents, currency))
        return {"id": "pi_test_1", "client_secret": "pi_test_1_secret_abc"}

    def create_checkout_session(self, call, include_recording):
        self.sessions.append((call.id, include_recording))
        return {"id": "cs_test_1", "url": "https://checkout.stripe.test/cs_test_1"}


class FakeTranscriber:
    def __init__(self, text="She wants a red bike"):
        self.text = text
        self.seen = []

    def transcribe(self, audio_bytes, mime_type="audio/webm"):
        self.seen.append((len(audio_bytes), mime_type))
        return self.text


class Fakes:
    def __init__(self):
        self.dispatcher = FakeDispatcher()
        self.storage = FakeStorage()
        self.email = FakeEmailClient()
        self.notifier = FakeNotifier()
        self.render_queue = FakeRenderQueue()
        self.stripe = FakeStripeGateway()
        self.transcriber = FakeTranscriber()


@pytest.fixture
def fakes():
    return Fakes()


@pytest.fixture
def client(db_session, fakes):
    """TestClient wired to the in-memory database and provider fakes."""
    from fastapi.testclient import TestClient

    from app import clients
    from app.database import get_db
    from app.main import app

    def _get_db():
        yield db_session

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[clients.get_dispatcher] = lambda: fakes.dispatcher
    app.dependency_overrides[clients.get_storage] = lambda: fakes.storage
    app.dependency_overrides[clients.get_email_client] = lambda: fakes.email
    app.dependency_overrides[clients.get_notifier] = lambda: fakes.notifier
    app.dependency_overrides[clients.get_render_queue] = lambda: fakes.render_queue
    app.dependency_overrides[clients.get_stripe_gateway] = lambda: fakes.stripe
    app.dependency_overrides[clients.get_transcriber] = lambda: fakes.transcriber
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
