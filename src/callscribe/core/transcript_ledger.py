"""
Transcript ledger.

Appends transcription fragments per call session with deduplication by
fingerprint and exposes an offset-ordered read view. Providers deliver
events at least once, so the same fragment routinely arrives several times.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, List, Optional, Sequence, Tuple

from ..logging_config import get_logger
from .events import EventData, TranscriptCandidate, candidates_from, extract_transcription
from .models import CallParticipant, TranscriptSegment
from .store import InMemoryKeyedStore, KeyedStore

logger = get_logger(__name__)

_WHITESPACE = re.compile(r"\s+")


def _fmt(value: Optional[float]) -> str:
    return f"{value or 0.0:.3f}"


def fingerprint(segment: TranscriptSegment) -> str:
    """speaker|offset|duration|text, lower-cased; offsets to the millisecond."""
    speaker = segment.speaker_identity or segment.speaker_user_id or segment.speaker_display_name or "unknown"
    text = _WHITESPACE.sub(" ", (segment.text or "").strip())
    return f"{speaker}|{_fmt(segment.offset_seconds)}|{_fmt(segment.duration_seconds)}|{text}".lower()


def ordered(segments: Sequence[TranscriptSegment]) -> List[TranscriptSegment]:
    """Offset ascending (missing offset counts as 0), then creation time; stable."""
    return sorted(segments, key=lambda s: (s.offset_seconds or 0.0, s.created_at))


def resolve_speaker(
    candidate: TranscriptCandidate,
    participants: Sequence[CallParticipant],
) -> Tuple[Optional[str], Optional[str]]:
    """
    Match a raw speaker to a known participant.

    Provider identity is tried first, then display name, both
    case-insensitively. Returns (user_id, display_name); user_id is None
    when nothing matched and the raw display name is kept.
    """
    identity = (candidate.speaker_identity or "").strip().lower()
    if identity:
        for participant in participants:
            if participant.identity and participant.identity.lower() == identity:
                return participant.user_id, participant.display_name

    display_name = (candidate.speaker_display_name or "").strip().lower()
    if display_name:
        for participant in participants:
            if participant.display_name and participant.display_name.lower() == display_name:
                return participant.user_id, participant.display_name

    return None, candidate.speaker_display_name


@dataclass(frozen=True)
class SessionTranscript:
    """All stored segments of one session plus their fingerprints."""
    session_id: str
    segments: Tuple[TranscriptSegment, ...] = ()
    fingerprints: FrozenSet[str] = field(default_factory=frozenset)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "segments": [s.to_dict() for s in self.segments],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SessionTranscript":
        segments = tuple(TranscriptSegment.from_dict(s) for s in data.get("segments") or [])
        return cls(
            session_id=data["sessionId"],
            segments=segments,
            fingerprints=frozenset(fingerprint(s) for s in segments),
        )


class TranscriptLedger:
    def __init__(self, store: Optional[KeyedStore[SessionTranscript]] = None):
        self._store: KeyedStore[SessionTranscript] = store if store is not None else InMemoryKeyedStore()

    def _segment_for(
        self,
        session_id: str,
        candidate: TranscriptCandidate,
        participants: Sequence[CallParticipant],
    ) -> TranscriptSegment:
        user_id, display_name = resolve_speaker(candidate, participants)
        return TranscriptSegment(
            session_id=session_id,
            text=candidate.text,
            speaker_identity=candidate.speaker_identity,
            speaker_user_id=user_id,
            speaker_display_name=display_name,
            offset_seconds=candidate.offset_seconds,
            duration_seconds=candidate.duration_seconds,
            confidence=candidate.confidence,
            sentiment=candidate.sentiment,
            language=candidate.language,
            result_status=candidate.result_status,
        )

    async def append(
        self,
        session_id: str,
        data: Optional[EventData],
        known_participants: Sequence[CallParticipant] = (),
    ) -> int:
        """Store the new fragments carried by ``data``; returns how many were appended."""
        candidates = candidates_from(extract_transcription(data))
        if not candidates:
            logger.debug("Transcript event carried no text", session_id=session_id)
            return 0

        incoming = [self._segment_for(session_id, c, known_participants) for c in candidates]
        appended = []

        def _mutate(record: SessionTranscript) -> SessionTranscript:
            seen = set(record.fingerprints)
            fresh = []
            for segment in incoming:
                key = fingerprint(segment)
                if key in seen:
                    continue
                seen.add(key)
                fresh.append(segment)
            appended.extend(fresh)
            if not fresh:
                return record
            return SessionTranscript(
                session_id=record.session_id,
                segments=record.segments + tuple(fresh),
                fingerprints=frozenset(seen),
            )

        await self._store.put_if_absent(session_id, SessionTranscript(session_id))
        await self._store.update(session_id, _mutate)

        if appended:
            logger.info(
                "Transcript segments appended",
                session_id=session_id,
                appended=len(appended),
                duplicates=len(incoming) - len(appended),
            )
        else:
            logger.debug("Duplicate transcript fragments ignored", session_id=session_id, duplicates=len(incoming))
        return len(appended)

    async def read(self, session_id: str) -> List[TranscriptSegment]:
        """A fresh, ordered copy of the session's segments."""
        record = await self._store.get(session_id)
        if record is None:
            return []
        return ordered(record.segments)
