"""Outbound Santa calls through ElevenLabs Conversational AI (Twilio leg).

The dispatcher never retries. A transport error, a non-2xx answer, or a 2xx
answer without a conversation id all raise DispatchError; retries belong to
whoever supervises the dispatch.
"""

from __future__ import annotations

from typing import Any, Optional

import httpx
from sqlalchemy.orm import Session

from app.config import config
from app.db_models import DBCall, CallStatus, CallEventType, utcnow
from app.logging_config import get_logger
from app.metrics import calls_dispatched
from app.models import BatchItemResult, CallData, DispatchResult
from app.services import CallService, CallEventService

logger = get_logger(__name__)

OUTBOUND_CALL_PATH = "/v1/convai/twilio/outbound-call"


class DispatchError(RuntimeError):
    """The voice provider did not accept the outbound call."""


def gift_budget_instructions(budget_dollars: int) -> str:
    """Turn the parent's gift budget (0-1000 dollars) into guidance for the agent."""
    if budget_dollars <= 50:
        return (
            "If the child asks for expensive gifts, gently suggest that Santa's elves are quite busy "
            "this year and maybe something smaller would be just as magical. Keep gift suggestions under $50."
        )
    if budget_dollars <= 150:
        return (
            "Most reasonable gift requests are fine. For very expensive items over $150, "
            "suggest Santa will see what he can do."
        )
    if budget_dollars <= 500:
        return (
            "Be generous with gift promises but stay realistic. "
            "Most gifts up to a few hundred dollars are fine to promise."
        )
    return "Any gift request is acceptable to promise. The family has indicated a generous budget."


def build_dynamic_variables(call_data: CallData) -> dict[str, str]:
    return {
        "child_name": call_data.child_name,
        "child_age": str(call_data.child_age),
        "gift_budget": gift_budget_instructions(call_data.gift_budget),
        "child_info": call_data.child_info_text or "",
        "voice_info": call_data.child_info_voice_transcript or "",
    }


class CallDispatcher:
    """Thin client for the ElevenLabs outbound-call and conversation endpoints."""

    def __init__(
        self,
        api_key: str,
        agent_id: str,
        phone_number_id: str,
        base_url: str = "https://api.elevenlabs.io",
        http_client: Optional[httpx.Client] = None,
        timeout_s: float = 30.0,
    ):
        self.api_key = api_key
        self.agent_id = agent_id
        self.phone_number_id = phone_number_id
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self._http_client = http_client

    @classmethod
    def from_config(cls, http_client: Optional[httpx.Client] = None) -> "CallDispatcher":
        return cls(
            api_key=config.ELEVENLABS_API_KEY,
            agent_id=config.ELEVENLABS_AGENT_ID,
            phone_number_id=config.ELEVENLABS_AGENT_PHONE_NUMBER_ID,
            base_url=config.ELEVENLABS_API_BASE,
            http_client=http_client,
            timeout_s=config.HTTP_TIMEOUT_SECONDS,
        )

    def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        headers = {"xi-api-key": self.api_key, **kwargs.pop("headers", {})}
        url = f"{self.base_url}{path}"
        if self._http_client is not None:
            return self._http_client.request(method, url, headers=headers, **kwargs)
        with httpx.Client(timeout=self.timeout_s) as client:
            return client.request(method, url, headers=headers, **kwargs)

    def dispatch(self, phone_number: str, call_data: CallData) -> DispatchResult:
        """
        Ask ElevenLabs to place the call.

        Returns the provider identifiers; raises DispatchError on any failure.
        """
        if not (self.api_key and self.agent_id and self.phone_number_id):
            raise DispatchError("Missing ElevenLabs configuration (API key, agent ID, or phone number ID)")

        body = {
            "agent_id": self.agent_id,
            "agent_phone_number_id": self.phone_number_id,
            "to_number": phone_number,
            "conversation_initiation_client_data": {
                "dynamic_variables": build_dynamic_variables(call_data),
            },
        }

        try:
            resp = self._request("POST", OUTBOUND_CALL_PATH, json=body)
        except httpx.HTTPError as e:
            raise DispatchError(f"ElevenLabs call failed: {e}") from e

        if not resp.is_success:
            raise DispatchError(f"ElevenLabs call failed: {resp.status_code} - {resp.text}")

        try:
            data = resp.json()
        except ValueError as e:
            raise DispatchError(f"ElevenLabs returned a non-JSON response: {resp.text[:200]}") from e

        # API answers in snake_case; tolerate the camelCase spelling too.
        conversation_id = data.get("conversation_id")
        call_sid = data.get("call_sid") or data.get("callSid")
        success = data.get("success")
        if success is None:
            success = bool(conversation_id)

        if not success or not conversation_id:
            raise DispatchError(
                f"ElevenLabs did not start the call: {data.get('message') or 'no conversation id returned'}"
            )

        logger.info("elevenlabs_call_started", conversation_id=conversation_id, call_sid=call_sid)
        return DispatchResult(conversation_id=conversation_id, call_sid=call_sid, success=True)

    def get_conversation(self, conversation_id: str) -> dict:
        """Fetch conversation details (status, transcript, metadata)."""
        resp = self._request("GET", f"/v1/convai/conversations/{conversation_id}")
        if not resp.is_success:
            raise DispatchError(f"Failed to get conversation: {resp.status_code} - {resp.text}")
        return resp.json()

    def get_conversation_audio(self, conversation_id: str) -> bytes:
        """Download the conversation recording."""
        resp = self._request("GET", f"/v1/convai/conversations/{conversation_id}/audio")
        if not resp.is_success:
            raise DispatchError(f"Failed to get conversation audio: {resp.status_code} - {resp.text}")
        return resp.content


def dispatch_claimed_call(db: Session, dispatcher: CallDispatcher, call: DBCall, source: str) -> BatchItemResult:
    """
    Dispatch a call that the caller has already moved into `claiming`.

    Success moves it to `queued` with the provider identifiers and a
    `call_initiated` event; any failure moves it to `failed` with a
    `call_failed` event. Both outcomes are committed; nothing is raised.
    """
    call_data = CallData(
        child_name=call.child_name,
        child_age=call.child_age,
        gift_budget=call.gift_budget or 0,
        child_info_text=call.child_info_text,
        child_info_voice_transcript=call.child_info_voice_transcript,
    )

    try:
        result = dispatcher.dispatch(call.phone_number, call_data)
    except Exception as e:
        error = str(e) or e.__class__.__name__
        logger.error("call_dispatch_failed", call_id=call.id, source=source, error=error)
        CallEventService.log_event(db, call.id, CallEventType.CALL_FAILED, {"error": error, "source": source}, commit=False)
        CallService.transition(db, call, CallStatus.FAILED)
        calls_dispatched.labels(source=source, outcome="failed").inc()
        return BatchItemResult(call_id=call.id, success=False, error=error)

    CallEventService.log_event(
        db,
        call.id,
        CallEventType.CALL_INITIATED,
        {
            "conversation_id": result.conversation_id,
            "call_sid": result.call_sid,
            "success": result.success,
            "source": source,
        },
        commit=False,
    )
    CallService.transition(
        db,
        call,
        CallStatus.QUEUED,
        twilio_call_sid=result.call_sid,
        elevenlabs_conversation_id=result.conversation_id,
        call_started_at=utcnow(),
    )
    calls_dispatched.labels(source=source, outcome="queued").inc()
    logger.info("call_dispatched", call_id=call.id, source=source, conversation_id=result.conversation_id)
    return BatchItemResult(call_id=call.id, success=True, conversation_id=result.conversation_id)
