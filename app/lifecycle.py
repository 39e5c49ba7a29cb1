"""Call and video lifecycle state machines.

Call:
    pending   -> scheduled | claiming | cancelled
    scheduled -> claiming | queued | failed | cancelled
    claiming  -> queued | failed
    queued    -> completed | failed | no_answer

`claiming` is held only while a dispatcher call is in flight; it is
entered through a conditional UPDATE so two concurrent workers can never
both dispatch the same row. Terminal states accept no transitions.
Re-applying the current state is always allowed so provider re-delivery
stays idempotent.
"""

from app.db_models import CallStatus, VideoStatus

TERMINAL_CALL_STATUSES = frozenset({
    CallStatus.COMPLETED,
    CallStatus.FAILED,
    CallStatus.NO_ANSWER,
    CallStatus.CANCELLED,
})

CALL_TRANSITIONS: dict[CallStatus, frozenset[CallStatus]] = {
    CallStatus.PENDING: frozenset({CallStatus.SCHEDULED, CallStatus.CLAIMING, CallStatus.CANCELLED}),
    CallStatus.SCHEDULED: frozenset({
        CallStatus.CLAIMING,
        CallStatus.QUEUED,
        CallStatus.FAILED,
        CallStatus.CANCELLED,
    }),
    CallStatus.CLAIMING: frozenset({CallStatus.QUEUED, CallStatus.FAILED}),
    CallStatus.QUEUED: frozenset({CallStatus.COMPLETED, CallStatus.FAILED, CallStatus.NO_ANSWER}),
    CallStatus.COMPLETED: frozenset(),
    CallStatus.FAILED: frozenset(),
    CallStatus.NO_ANSWER: frozenset(),
    CallStatus.CANCELLED: frozenset(),
}

VIDEO_TRANSITIONS: dict[VideoStatus, frozenset[VideoStatus]] = {
    VideoStatus.NONE: frozenset({VideoStatus.PENDING, VideoStatus.PROCESSING}),
    VideoStatus.PENDING: frozenset({VideoStatus.PROCESSING}),
    VideoStatus.PROCESSING: frozenset({VideoStatus.COMPLETED, VideoStatus.FAILED}),
    # Re-renders
    VideoStatus.COMPLETED: frozenset({VideoStatus.PENDING, VideoStatus.PROCESSING}),
    VideoStatus.FAILED: frozenset({VideoStatus.PENDING, VideoStatus.PROCESSING}),
}


def is_terminal(status: CallStatus) -> bool:
    return CallStatus(status) in TERMINAL_CALL_STATUSES


def can_transition(current: CallStatus, target: CallStatus) -> bool:
    """True if a Call may move from `current` to `target`."""
    current, target = CallStatus(current), CallStatus(target)
    if current == target:
        return True
    return target in CALL_TRANSITIONS[current]


def can_transition_video(current: VideoStatus, target: VideoStatus) -> bool:
    current, target = VideoStatus(current), VideoStatus(target)
    if current == target:
        return True
    return target in VIDEO_TRANSITIONS[current]


# Provider vocabulary -> call_status

_TRANSCRIPTION_STATUS_MAP = {
    "done": CallStatus.COMPLETED,
    "completed": CallStatus.COMPLETED,
    "failed": CallStatus.FAILED,
    "error": CallStatus.FAILED,
}

_FAILURE_REASON_MAP = {
    "busy": CallStatus.FAILED,
    "no-answer": CallStatus.NO_ANSWER,
    "no_answer": CallStatus.NO_ANSWER,
    "unknown": CallStatus.FAILED,
}


def status_from_transcription(provider_status: str | None) -> CallStatus:
    """Map a post-call transcription status; anything unrecognised counts as completed."""
    return _TRANSCRIPTION_STATUS_MAP.get((provider_status or "").strip().lower(), CallStatus.COMPLETED)


def status_from_failure_reason(reason: str | None) -> CallStatus:
    """Map a call-initiation failure reason; anything unrecognised counts as failed."""
    return _FAILURE_REASON_MAP.get((reason or "").strip().lower(), CallStatus.FAILED)
