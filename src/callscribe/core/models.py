"""
Core data models for callscribe.

Records are frozen dataclasses; every change produces a new instance via
``dataclasses.replace`` inside the store's per-key critical section.
``to_dict``/``from_dict`` give the camelCase JSON shape used by the durable
store and the HTTP layer.
"""

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from .state_machine import CallStatus, PRE_CONNECTION_STATUSES, is_terminal


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


def parse_session_key(value: Any) -> Optional[str]:
    """Canonical session key for a UUID-looking value, else None."""
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    try:
        return str(uuid.UUID(text))
    except ValueError:
        return None


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _parse_dt(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    try:
        parsed = datetime.fromisoformat(str(value))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class CallParticipant:
    """A member of a call, keyed by the external user reference."""
    user_id: str
    display_name: str
    identity: Optional[str] = None  # provider communication identity
    id: str = field(default_factory=new_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "displayName": self.display_name,
            "identity": self.identity,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CallParticipant":
        return cls(
            id=data.get("id") or new_id(),
            user_id=data["userId"],
            display_name=data.get("displayName") or data["userId"],
            identity=data.get("identity"),
        )


@dataclass(frozen=True)
class CallSession:
    """Internal record of one call from creation to a terminal status."""
    id: str
    group_id: str
    initiator_id: str
    status: CallStatus = CallStatus.ACTIVE
    started_at: datetime = field(default_factory=utcnow)
    ended_at: Optional[datetime] = None
    connection_id: Optional[str] = None
    server_call_id: Optional[str] = None
    transcription_started_at: Optional[datetime] = None
    participants: Tuple[CallParticipant, ...] = ()

    @property
    def operation_context(self) -> str:
        """Value handed to the provider so its callbacks carry our session id."""
        return self.id

    @property
    def is_terminal(self) -> bool:
        return is_terminal(self.status)

    @property
    def awaiting_connection(self) -> bool:
        return not self.connection_id and self.status in PRE_CONNECTION_STATUSES

    def has_participant(self, user_id: str) -> bool:
        needle = (user_id or "").lower()
        return any(p.user_id.lower() == needle for p in self.participants)

    def with_participants(self, extra: Tuple[CallParticipant, ...]) -> "CallSession":
        return replace(self, participants=self.participants + tuple(extra))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "groupId": self.group_id,
            "initiatorId": self.initiator_id,
            "status": self.status.value,
            "startedAt": _iso(self.started_at),
            "endedAt": _iso(self.ended_at),
            "connectionId": self.connection_id,
            "serverCallId": self.server_call_id,
            "transcriptionStartedAt": _iso(self.transcription_started_at),
            "participants": [p.to_dict() for p in self.participants],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CallSession":
        return cls(
            id=data["id"],
            group_id=data["groupId"],
            initiator_id=data["initiatorId"],
            status=CallStatus(data.get("status") or CallStatus.ACTIVE.value),
            started_at=_parse_dt(data.get("startedAt")) or utcnow(),
            ended_at=_parse_dt(data.get("endedAt")),
            connection_id=data.get("connectionId"),
            server_call_id=data.get("serverCallId"),
            transcription_started_at=_parse_dt(data.get("transcriptionStartedAt")),
            participants=tuple(CallParticipant.from_dict(p) for p in data.get("participants") or []),
        )


@dataclass(frozen=True)
class TranscriptSegment:
    """One finalized or intermediate transcription fragment."""
    session_id: str
    text: str
    speaker_identity: Optional[str] = None
    speaker_user_id: Optional[str] = None
    speaker_display_name: Optional[str] = None
    offset_seconds: Optional[float] = None
    duration_seconds: Optional[float] = None
    created_at: datetime = field(default_factory=utcnow)
    source: str = "provider"
    confidence: Optional[float] = None
    sentiment: Optional[str] = None
    language: Optional[str] = None
    result_status: Optional[str] = None
    id: str = field(default_factory=new_id)

    @property
    def speaker_label(self) -> str:
        return self.speaker_display_name or self.speaker_user_id or "Speaker"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "sessionId": self.session_id,
            "text": self.text,
            "speakerIdentity": self.speaker_identity,
            "speakerUserId": self.speaker_user_id,
            "speakerDisplayName": self.speaker_display_name,
            "offsetSeconds": self.offset_seconds,
            "durationSeconds": self.duration_seconds,
            "createdAt": _iso(self.created_at),
            "source": self.source,
            "confidence": self.confidence,
            "sentiment": self.sentiment,
            "language": self.language,
            "resultStatus": self.result_status,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TranscriptSegment":
        return cls(
            id=data.get("id") or new_id(),
            session_id=data["sessionId"],
            text=data["text"],
            speaker_identity=data.get("speakerIdentity"),
            speaker_user_id=data.get("speakerUserId"),
            speaker_display_name=data.get("speakerDisplayName"),
            offset_seconds=data.get("offsetSeconds"),
            duration_seconds=data.get("durationSeconds"),
            created_at=_parse_dt(data.get("createdAt")) or utcnow(),
            source=data.get("source") or "provider",
            confidence=data.get("confidence"),
            sentiment=data.get("sentiment"),
            language=data.get("language"),
            result_status=data.get("resultStatus"),
        )


@dataclass(frozen=True)
class CallSummary:
    """End-of-call summary; at most one is ever persisted per session."""
    session_id: str
    summary: str
    key_points: Tuple[str, ...] = ()
    action_items: Tuple[str, ...] = ()
    source: str = "fallback"  # provider | fallback
    generated_at: datetime = field(default_factory=utcnow)
    id: str = field(default_factory=new_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "sessionId": self.session_id,
            "summary": self.summary,
            "keyPoints": list(self.key_points),
            "actionItems": list(self.action_items),
            "generatedAt": _iso(self.generated_at),
            "source": self.source,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CallSummary":
        return cls(
            id=data.get("id") or new_id(),
            session_id=data["sessionId"],
            summary=data.get("summary") or "",
            key_points=tuple(data.get("keyPoints") or ()),
            action_items=tuple(data.get("actionItems") or ()),
            generated_at=_parse_dt(data.get("generatedAt")) or utcnow(),
            source=data.get("source") or "fallback",
        )
