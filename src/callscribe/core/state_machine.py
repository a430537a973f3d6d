"""
Call status state machine.

Pure functions only: the registry applies the result inside its per-session
critical section, so the transition rules can be tested without a store.

    Active -> Connecting -> Connected -> Completed | Failed
"""

from enum import Enum
from typing import Optional


class CallStatus(str, Enum):
    ACTIVE = "Active"
    CONNECTING = "Connecting"
    CONNECTED = "Connected"
    COMPLETED = "Completed"
    FAILED = "Failed"


class CallEventKind(Enum):
    """Provider event families, independent of any vendor's exact type names."""
    VALIDATION = "validation"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ENDED = "ended"
    FAILED = "failed"
    PARTICIPANTS_UPDATED = "participants_updated"
    TRANSCRIPTION_STARTED = "transcription_started"
    TRANSCRIPTION_STOPPED = "transcription_stopped"
    TRANSCRIPTION_FAILED = "transcription_failed"
    TRANSCRIPT = "transcript"
    UNKNOWN = "unknown"


TERMINAL_STATUSES = frozenset({CallStatus.COMPLETED, CallStatus.FAILED})

# Statuses a session may still be reaped or fallback-correlated from.
PRE_CONNECTION_STATUSES = frozenset({CallStatus.ACTIVE, CallStatus.CONNECTING})

_RANK = {
    CallStatus.ACTIVE: 0,
    CallStatus.CONNECTING: 1,
    CallStatus.CONNECTED: 2,
    CallStatus.COMPLETED: 3,
    CallStatus.FAILED: 3,
}

_EVENT_TARGETS = {
    CallEventKind.CONNECTING: CallStatus.CONNECTING,
    CallEventKind.CONNECTED: CallStatus.CONNECTED,
    CallEventKind.ENDED: CallStatus.COMPLETED,
    CallEventKind.FAILED: CallStatus.FAILED,
}


def is_terminal(status: CallStatus) -> bool:
    return status in TERMINAL_STATUSES


def status_for_event(kind: CallEventKind) -> Optional[CallStatus]:
    """Target status for a lifecycle event, or None for non-lifecycle events."""
    return _EVENT_TARGETS.get(kind)


def next_status(current: CallStatus, target: CallStatus) -> Optional[CallStatus]:
    """
    Resolve a requested transition.

    Returns the new status, or None when the request must be ignored: the
    session is terminal, the target equals the current status, or the target
    would move the call backwards (e.g. a redelivered "connecting" event
    after "connected").
    """
    if is_terminal(current) or target == current:
        return None
    if is_terminal(target):
        return target
    if _RANK[target] < _RANK[current]:
        return None
    return target
