"""ElevenLabs post-call webhook: signatures, transcription, audio and failures."""

import base64
import json
import time

import pytest

from app.config import config
from app.db_models import CallEventType, CallStatus, VideoStatus
from app.security import (
    SignatureError,
    compute_elevenlabs_signature,
    parse_signature_header,
    verify_elevenlabs_signature,
)
from app.services import CallEventService, CallService


def signed_post(client, event: dict, timestamp: int = None, secret: str = None, body: bytes = None):
    raw = body if body is not None else json.dumps(event).encode()
    timestamp = int(time.time()) if timestamp is None else timestamp
    digest = compute_elevenlabs_signature(json.dumps(event).encode(), timestamp, secret or config.ELEVENLABS_WEBHOOK_SECRET)
    return client.post(
        "/api/webhooks/elevenlabs",
        content=raw,
        headers={"ElevenLabs-Signature": f"t={timestamp},v0={digest}", "content-type": "application/json"},
    )


def transcription_event(conversation_id="conv_abc", status="done"):
    return {
        "type": "post_call_transcription",
        "event_timestamp": 1734000000,
        "data": {
            "agent_id": "agent_test",
            "conversation_id": conversation_id,
            "status": status,
            "transcript": [
                {"role": "agent", "message": "Ho ho ho! Hello Emma!", "time_in_call_secs": 0},
                {"role": "user", "message": "Hi Santa!", "time_in_call_secs": 3},
            ],
            "metadata": {"start_time_unix_secs": 1733999900, "call_duration_secs": 95.6},
            "analysis": {"call_successful": "success", "transcript_summary": "Emma asked for a bike."},
        },
    }


def audio_event(conversation_id="conv_abc", audio=b"ID3-mp3-audio-bytes"):
    return {
        "type": "post_call_audio",
        "data": {
            "agent_id": "agent_test",
            "conversation_id": conversation_id,
            "full_audio": base64.b64encode(audio).decode(),
        },
    }


def failure_event(conversation_id="conv_abc", reason="no-answer"):
    return {
        "type": "call_initiation_failure",
        "data": {
            "agent_id": "agent_test",
            "conversation_id": conversation_id,
            "failure_reason": reason,
            "metadata": {"type": "twilio", "body": {"CallStatus": "no-answer"}},
        },
    }


@pytest.fixture
def queued_call(make_call):
    return make_call(call_status=CallStatus.QUEUED, elevenlabs_conversation_id="conv_abc")


# Signature verification

def test_parse_signature_header():
    assert parse_signature_header("t=1700000000,v0=abc123") == (1700000000, "abc123")


@pytest.mark.parametrize("header", ["", "v0=abc", "t=1700000000", "t=notanumber,v0=abc", "garbage"])
def test_malformed_signature_header(header):
    with pytest.raises(SignatureError):
        verify_elevenlabs_signature(b"{}", header, "secret", now=1700000000)


def test_valid_signature_accepted():
    body = b'{"type":"post_call_audio"}'
    header = f"t=1700000000,v0={compute_elevenlabs_signature(body, 1700000000, 'secret')}"
    verify_elevenlabs_signature(body, header, "secret", now=1700000100)


def test_signature_older_than_tolerance_rejected():
    body = b"{}"
    header = f"t=1700000000,v0={compute_elevenlabs_signature(body, 1700000000, 'secret')}"
    with pytest.raises(SignatureError, match="too old"):
        verify_elevenlabs_signature(body, header, "secret", now=1700000000 + 1801)


def test_missing_secret_fails_closed():
    with pytest.raises(SignatureError):
        verify_elevenlabs_signature(b"{}", "t=1,v0=abc", "", now=1)


def test_tampered_body_rejected_without_mutation(client, db_session, queued_call):
    event = transcription_event()
    tampered = json.dumps(transcription_event(status="failed")).encode()

    resp = signed_post(client, event, body=tampered)

    assert resp.status_code == 401
    db_session.expire_all()
    assert CallService.get_call(db_session, queued_call.id).call_status == CallStatus.QUEUED
    assert CallEventService.list_events(db_session, queued_call.id) == []


def test_stale_timestamp_rejected(client, db_session, queued_call):
    resp = signed_post(client, transcription_event(), timestamp=int(time.time()) - 3600)

    assert resp.status_code == 401
    assert CallEventService.list_events(db_session, queued_call.id) == []


def test_missing_header_rejected(client):
    resp = client.post("/api/webhooks/elevenlabs", content=json.dumps(transcription_event()))
    assert resp.status_code == 401


# Event handling

def test_transcription_completes_call(client, db_session, queued_call):
    resp = signed_post(client, transcription_event(status="done"))

    assert resp.status_code == 200
    assert resp.json() == {"received": True, "callId": queued_call.id, "type": "transcription"}
    db_session.expire_all()
    call = CallService.get_call(db_session, queued_call.id)
    assert call.call_status == CallStatus.COMPLETED
    assert call.call_duration_seconds == 95
    assert call.transcript == "Santa: Ho ho ho! Hello Emma!\n\nChild: Hi Santa!"
    assert call.call_ended_at is not None
    events = CallEventService.list_events(db_session, queued_call.id)
    assert [e.event_type for e in events] == [CallEventType.POST_CALL_TRANSCRIPTION.value]
    assert events[0].event_data["call_successful"] == "success"
    assert events[0].event_data["summary"] == "Emma asked for a bike."


def test_transcription_redelivery_converges(client, db_session, queued_call):
    signed_post(client, transcription_event())
    resp = signed_post(client, transcription_event())

    assert resp.status_code == 200
    db_session.expire_all()
    call = CallService.get_call(db_session, queued_call.id)
    assert call.call_status == CallStatus.COMPLETED
    assert call.call_duration_seconds == 95


def test_transcription_failed_status(client, db_session, queued_call):
    signed_post(client, transcription_event(status="error"))

    db_session.expire_all()
    assert CallService.get_call(db_session, queued_call.id).call_status == CallStatus.FAILED


def test_audio_is_stored_and_render_queued(client, db_session, queued_call, fakes):
    resp = signed_post(client, audio_event(audio=b"fake-mp3"))

    assert resp.status_code == 200
    assert resp.json()["type"] == "audio"
    assert fakes.storage.objects[(config.RECORDINGS_BUCKET, f"{queued_call.id}.mp3")] == b"fake-mp3"
    db_session.expire_all()
    call = CallService.get_call(db_session, queued_call.id)
    assert call.recording_url.endswith(f"/{config.RECORDINGS_BUCKET}/{queued_call.id}.mp3")
    assert call.video_status == VideoStatus.PENDING
    assert fakes.render_queue.enqueued == [queued_call.id]
    events = CallEventService.list_events(db_session, queued_call.id)
    assert [e.event_type for e in events] == [
        CallEventType.POST_CALL_AUDIO.value,
        CallEventType.VIDEO_RENDER_QUEUED.value,
    ]
    assert events[0].event_data["file_size_bytes"] == len(b"fake-mp3")


def test_audio_enqueue_failure_leaves_video_pending(client, db_session, queued_call, fakes):
    fakes.render_queue.fail = True

    resp = signed_post(client, audio_event())

    assert resp.status_code == 200
    db_session.expire_all()
    assert CallService.get_call(db_session, queued_call.id).video_status == VideoStatus.PENDING


def test_audio_upload_failure_is_server_error(client, db_session, queued_call, fakes):
    fakes.storage.fail_upload_buckets.add(config.RECORDINGS_BUCKET)

    resp = signed_post(client, audio_event())

    assert resp.status_code == 500
    db_session.expire_all()
    assert CallService.get_call(db_session, queued_call.id).recording_url is None


def test_initiation_failure_maps_reason(client, db_session, queued_call):
    resp = signed_post(client, failure_event(reason="no-answer"))

    assert resp.status_code == 200
    assert resp.json()["type"] == "failure"
    db_session.expire_all()
    call = CallService.get_call(db_session, queued_call.id)
    assert call.call_status == CallStatus.NO_ANSWER
    assert call.call_ended_at is not None
    events = CallEventService.list_events(db_session, queued_call.id)
    assert events[0].event_type == CallEventType.CALL_INITIATION_FAILURE.value
    assert events[0].event_data["failure_reason"] == "no-answer"
    assert events[0].event_data["provider_type"] == "twilio"


def test_busy_maps_to_failed(client, db_session, queued_call):
    signed_post(client, failure_event(reason="busy"))

    db_session.expire_all()
    assert CallService.get_call(db_session, queued_call.id).call_status == CallStatus.FAILED


def test_unknown_conversation_acknowledged(client, db_session, queued_call):
    resp = signed_post(client, transcription_event(conversation_id="conv_unknown"))

    assert resp.status_code == 200
    assert resp.json() == {"received": True, "warning": "Call not found"}
    assert CallEventService.list_events(db_session, queued_call.id) == []


def test_unknown_event_type_acknowledged(client, db_session, queued_call):
    resp = signed_post(client, {"type": "conversation_started", "data": {"conversation_id": "conv_abc"}})

    assert resp.status_code == 200
    assert resp.json() == {"received": True}
    assert CallEventService.list_events(db_session, queued_call.id) == []


def test_probe_endpoint(client):
    resp = client.get("/api/webhooks/elevenlabs")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"
