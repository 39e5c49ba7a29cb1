import json

import httpx
import pytest

from app.db_models import CallEventType, CallStatus
from app.dispatcher import (
    CallDispatcher,
    DispatchError,
    build_dynamic_variables,
    dispatch_claimed_call,
    gift_budget_instructions,
)
from app.models import CallData
from app.services import CallEventService, CallService

CALL_DATA = CallData(
    child_name="Emma",
    child_age=6,
    gift_budget=100,
    child_info_text="Loves dinosaurs",
    child_info_voice_transcript="She wants a red bike",
)


def make_dispatcher(handler, **kwargs):
    http_client = httpx.Client(transport=httpx.MockTransport(handler))
    defaults = dict(api_key="xi-test", agent_id="agent_1", phone_number_id="phone_1")
    defaults.update(kwargs)
    return CallDispatcher(base_url="https://api.elevenlabs.test", http_client=http_client, **defaults)


@pytest.mark.parametrize(
    "budget,needle",
    [
        (0, "under $50"),
        (50, "under $50"),
        (51, "over $150"),
        (150, "over $150"),
        (151, "few hundred dollars"),
        (500, "few hundred dollars"),
        (501, "generous budget"),
    ],
)
def test_gift_budget_thresholds(budget, needle):
    assert needle in gift_budget_instructions(budget)


def test_dynamic_variables_are_strings():
    variables = build_dynamic_variables(CALL_DATA)
    assert variables["child_name"] == "Emma"
    assert variables["child_age"] == "6"
    assert variables["child_info"] == "Loves dinosaurs"
    assert variables["voice_info"] == "She wants a red bike"


def test_dispatch_success():
    seen = {}

    def handler(request: httpx.Request):
        seen["url"] = str(request.url)
        seen["key"] = request.headers.get("xi-api-key")
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"success": True, "conversation_id": "conv_1", "callSid": "CA1"})

    result = make_dispatcher(handler).dispatch("+15551234567", CALL_DATA)

    assert result.conversation_id == "conv_1"
    assert result.call_sid == "CA1"
    assert result.success is True
    assert seen["url"] == "https://api.elevenlabs.test/v1/convai/twilio/outbound-call"
    assert seen["key"] == "xi-test"
    assert seen["body"]["to_number"] == "+15551234567"
    assert seen["body"]["agent_phone_number_id"] == "phone_1"
    assert seen["body"]["conversation_initiation_client_data"]["dynamic_variables"]["child_age"] == "6"


def test_dispatch_non_2xx_raises():
    dispatcher = make_dispatcher(lambda request: httpx.Response(500, text="boom"))
    with pytest.raises(DispatchError, match="500"):
        dispatcher.dispatch("+15551234567", CALL_DATA)


def test_dispatch_without_identifiers_raises():
    dispatcher = make_dispatcher(lambda request: httpx.Response(200, json={"success": False, "message": "no line"}))
    with pytest.raises(DispatchError, match="no line"):
        dispatcher.dispatch("+15551234567", CALL_DATA)


def test_dispatch_success_flag_without_conversation_raises():
    dispatcher = make_dispatcher(lambda request: httpx.Response(200, json={"success": True}))
    with pytest.raises(DispatchError):
        dispatcher.dispatch("+15551234567", CALL_DATA)


def test_dispatch_transport_error_raises():
    def handler(request):
        raise httpx.ConnectError("connection refused")

    with pytest.raises(DispatchError):
        make_dispatcher(handler).dispatch("+15551234567", CALL_DATA)


def test_dispatch_missing_config_raises_without_request():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json={})

    with pytest.raises(DispatchError, match="Missing ElevenLabs configuration"):
        make_dispatcher(handler, agent_id="").dispatch("+15551234567", CALL_DATA)
    assert calls == []


def test_get_conversation_and_audio():
    def handler(request: httpx.Request):
        if request.url.path.endswith("/audio"):
            return httpx.Response(200, content=b"mp3-bytes")
        return httpx.Response(200, json={"conversation_id": "conv_1", "status": "done"})

    dispatcher = make_dispatcher(handler)
    assert dispatcher.get_conversation("conv_1")["status"] == "done"
    assert dispatcher.get_conversation_audio("conv_1") == b"mp3-bytes"


def test_get_conversation_not_found_raises():
    dispatcher = make_dispatcher(lambda request: httpx.Response(404, text="missing"))
    with pytest.raises(DispatchError):
        dispatcher.get_conversation("conv_missing")


def test_dispatch_claimed_call_records_success(db_session, make_call, fakes):
    call = make_call(call_status=CallStatus.CLAIMING)

    result = dispatch_claimed_call(db_session, fakes.dispatcher, call, source="test")

    assert result.success is True
    assert call.call_status == CallStatus.QUEUED
    assert call.elevenlabs_conversation_id == "conv_1"
    assert call.twilio_call_sid == "CA0001"
    assert call.call_started_at is not None
    events = [e.event_type for e in CallEventService.list_events(db_session, call.id)]
    assert events == [CallEventType.CALL_INITIATED.value]


def test_dispatch_claimed_call_records_failure(db_session, make_call, fakes):
    call = make_call(call_status=CallStatus.CLAIMING)
    fakes.dispatcher.error = DispatchError("ElevenLabs call failed: 503 - unavailable")

    result = dispatch_claimed_call(db_session, fakes.dispatcher, call, source="test")

    assert result.success is False
    assert "503" in result.error
    assert CallService.get_call(db_session, call.id).call_status == CallStatus.FAILED
    events = CallEventService.list_events(db_session, call.id)
    assert [e.event_type for e in events] == [CallEventType.CALL_FAILED.value]
    assert "503" in events[0].event_data["error"]
