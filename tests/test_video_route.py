from app.config import config
from app.database import normalize_database_url
from app.db_models import CallEventType, VideoStatus
from app.logging_config import redact_secrets
from app.services import CallEventService, CallService

RECORDING = "https://storage.test/storage/v1/object/public/call-recordings/x.mp3"


def test_rerender_queues_job(client, db_session, make_call, fakes):
    call = make_call(recording_url=RECORDING, video_status=VideoStatus.FAILED)

    resp = client.post(f"/api/videos/{call.id}/render")

    assert resp.status_code == 202
    assert resp.json() == {"queued": True, "callId": call.id, "videoStatus": "pending"}
    assert fakes.render_queue.enqueued == [call.id]
    db_session.expire_all()
    assert CallService.get_call(db_session, call.id).video_status == VideoStatus.PENDING
    events = CallEventService.list_events(db_session, call.id)
    assert events[-1].event_type == CallEventType.VIDEO_RENDER_QUEUED.value
    assert events[-1].event_data == {"source": "manual"}


def test_rerender_unknown_call(client):
    assert client.post("/api/videos/missing/render").status_code == 404


def test_rerender_requires_recording(client, make_call):
    call = make_call()
    assert client.post(f"/api/videos/{call.id}/render").status_code == 409


def test_rerender_refused_while_processing(client, make_call, fakes):
    call = make_call(recording_url=RECORDING, video_status=VideoStatus.PROCESSING)

    assert client.post(f"/api/videos/{call.id}/render").status_code == 409
    assert fakes.render_queue.enqueued == []


def test_rerender_queue_down_leaves_video_pending(client, db_session, make_call, fakes):
    call = make_call(recording_url=RECORDING, video_status=VideoStatus.COMPLETED)
    fakes.render_queue.fail = True

    resp = client.post(f"/api/videos/{call.id}/render")

    assert resp.status_code == 202
    assert resp.json()["queued"] is False
    db_session.expire_all()
    assert CallService.get_call(db_session, call.id).video_status == VideoStatus.PENDING


def test_rerender_checks_api_key(client, make_call, monkeypatch):
    monkeypatch.setattr(config, "API_KEY", "operator-key")
    call = make_call(recording_url=RECORDING)

    assert client.post(f"/api/videos/{call.id}/render").status_code == 403
    assert client.post(f"/api/videos/{call.id}/render", headers={"X-API-Key": "nope"}).status_code == 403
    assert client.post(f"/api/videos/{call.id}/render", headers={"X-API-Key": "operator-key"}).status_code == 202


def test_supabase_database_url_is_normalized():
    assert normalize_database_url("postgres://u:p@db.supabase.co:5432/postgres") == (
        "postgresql://u:p@db.supabase.co:5432/postgres"
    )
    assert normalize_database_url("sqlite:///./callsanta.db") == "sqlite:///./callsanta.db"


def test_secrets_are_redacted_from_logs():
    event = redact_secrets(None, "info", {"event": "booking_created", "client_secret": "pi_secret", "call_id": "c1"})
    assert event == {"event": "booking_created", "client_secret": "[redacted]", "call_id": "c1"}
