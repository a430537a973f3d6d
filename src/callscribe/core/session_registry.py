"""
Call session registry.

Holds call session state behind a ``KeyedStore`` and exposes lookups by every
identifier a provider event may carry. All mutations go through
``KeyedStore.update`` so a read-modify-write on one session never interleaves
with another write to the same session.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Iterable, List, Optional, Sequence

from ..logging_config import get_logger
from .models import CallParticipant, CallSession, new_id, utcnow
from .state_machine import CallStatus, PRE_CONNECTION_STATUSES, next_status
from .store import InMemoryKeyedStore, KeyedStore

logger = get_logger(__name__)

ALREADY_IN_CALL = "already in call"


@dataclass(frozen=True)
class StatusChange:
    """Result of a status request: the stored session and whether it moved."""
    session: CallSession
    previous: CallStatus
    changed: bool


@dataclass(frozen=True)
class SkippedParticipant:
    user_id: str
    reason: str


@dataclass
class AddParticipantsOutcome:
    session: CallSession
    added: List[CallParticipant] = field(default_factory=list)
    skipped: List[SkippedParticipant] = field(default_factory=list)


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _dedupe_participants(participants: Iterable[CallParticipant]) -> List[CallParticipant]:
    seen = set()
    unique = []
    for participant in participants:
        key = participant.user_id.lower()
        if key in seen:
            continue
        seen.add(key)
        unique.append(participant)
    return unique


class CallSessionRegistry:
    """Atomic access to call sessions by id, group id, connection id and server call id."""

    def __init__(self, store: Optional[KeyedStore[CallSession]] = None):
        self._store: KeyedStore[CallSession] = store if store is not None else InMemoryKeyedStore()

    async def create(
        self,
        initiator_id: str,
        group_id: str,
        participants: Sequence[CallParticipant] = (),
    ) -> CallSession:
        session = CallSession(
            id=new_id(),
            group_id=group_id,
            initiator_id=initiator_id,
            status=CallStatus.ACTIVE,
            started_at=utcnow(),
            participants=tuple(_dedupe_participants(participants)),
        )
        await self._store.put(session.id, session)
        logger.info(
            "Call session created",
            session_id=session.id,
            group_id=group_id,
            initiator_id=initiator_id,
            participant_count=len(session.participants),
        )
        return session

    async def get(self, session_id: str) -> Optional[CallSession]:
        if not session_id:
            return None
        return await self._store.get(session_id)

    async def all(self) -> List[CallSession]:
        return await self._store.values()

    async def _find(self, predicate) -> Optional[CallSession]:
        for session in await self._store.values():
            if predicate(session):
                return session
        return None

    async def find_by_group_id(self, group_id: Optional[str]) -> Optional[CallSession]:
        group_id = _clean(group_id)
        if group_id is None:
            return None
        return await self._find(lambda s: s.group_id == group_id)

    async def find_by_connection_id(self, connection_id: Optional[str]) -> Optional[CallSession]:
        connection_id = _clean(connection_id)
        if connection_id is None:
            return None
        return await self._find(lambda s: s.connection_id == connection_id)

    async def find_by_server_call_id(self, server_call_id: Optional[str]) -> Optional[CallSession]:
        server_call_id = _clean(server_call_id)
        if server_call_id is None:
            return None
        return await self._find(lambda s: s.server_call_id == server_call_id)

    async def find_pending_connection(self) -> Optional[CallSession]:
        """
        Best-effort match for events that carry no usable identifier.

        Returns the most recently started session that has no connection id
        yet and is still Active or Connecting. With several such sessions the
        pick can be wrong; the ambiguity is logged.
        """
        candidates = [s for s in await self._store.values() if s.awaiting_connection]
        if not candidates:
            return None
        candidates.sort(key=lambda s: s.started_at, reverse=True)
        if len(candidates) > 1:
            logger.warning(
                "Multiple sessions awaiting a connection id; picking the most recent",
                candidate_count=len(candidates),
                session_id=candidates[0].id,
                other_session_ids=[s.id for s in candidates[1:]],
            )
        return candidates[0]

    async def find_stale(self, cutoff: datetime) -> List[CallSession]:
        """Active/Connecting sessions started before ``cutoff``."""
        return [
            s for s in await self._store.values()
            if s.status in PRE_CONNECTION_STATUSES and s.started_at < cutoff
        ]

    async def add_participants(
        self,
        session_id: str,
        participants: Sequence[CallParticipant],
    ) -> Optional[AddParticipantsOutcome]:
        """
        Append participants not already present by user id.

        Returns None only when the session is unknown; duplicates are
        reported as skipped with reason "already in call".
        """
        outcome = {}

        def _mutate(session: CallSession) -> CallSession:
            added = []
            skipped = []
            known = {p.user_id.lower() for p in session.participants}
            for participant in participants:
                key = participant.user_id.lower()
                if key in known:
                    skipped.append(SkippedParticipant(participant.user_id, ALREADY_IN_CALL))
                    continue
                known.add(key)
                added.append(participant)
            outcome["added"] = added
            outcome["skipped"] = skipped
            if not added:
                return session
            return session.with_participants(tuple(added))

        updated = await self._store.update(session_id, _mutate)
        if updated is None:
            return None
        if outcome["added"]:
            logger.info(
                "Participants added to call session",
                session_id=session_id,
                added=[p.user_id for p in outcome["added"]],
                skipped=[s.user_id for s in outcome["skipped"]],
            )
        return AddParticipantsOutcome(session=updated, added=outcome["added"], skipped=outcome["skipped"])

    async def set_connection(
        self,
        session_id: str,
        connection_id: Optional[str] = None,
        server_call_id: Optional[str] = None,
    ) -> Optional[CallSession]:
        """Record provider call identifiers; blank values never clear stored ones."""
        connection_id = _clean(connection_id)
        server_call_id = _clean(server_call_id)

        def _mutate(session: CallSession) -> CallSession:
            changes = {}
            if connection_id and connection_id != session.connection_id:
                changes["connection_id"] = connection_id
            if server_call_id and server_call_id != session.server_call_id:
                changes["server_call_id"] = server_call_id
            return replace(session, **changes) if changes else session

        updated = await self._store.update(session_id, _mutate)
        if updated is not None and (connection_id or server_call_id):
            logger.debug(
                "Call connection recorded",
                session_id=session_id,
                connection_id=updated.connection_id,
                server_call_id=updated.server_call_id,
            )
        return updated

    async def transition_status(
        self,
        session_id: str,
        new_status: CallStatus,
        ended_at: Optional[datetime] = None,
    ) -> Optional[StatusChange]:
        """
        Apply a status request through the state machine.

        Returns None for an unknown session. ``changed`` is False when the
        request was ignored (terminal session, same status, or a regression).
        """
        observed = {}

        def _mutate(session: CallSession) -> CallSession:
            observed["previous"] = session.status
            target = next_status(session.status, new_status)
            if target is None:
                return session
            changes = {"status": target}
            if target in (CallStatus.COMPLETED, CallStatus.FAILED):
                changes["ended_at"] = ended_at or utcnow()
            return replace(session, **changes)

        updated = await self._store.update(session_id, _mutate)
        if updated is None:
            return None

        previous = observed["previous"]
        changed = updated.status != previous
        if changed:
            logger.info(
                "Call status changed",
                session_id=session_id,
                previous_status=previous.value,
                status=updated.status.value,
            )
        elif previous != new_status:
            logger.debug(
                "Ignored call status request",
                session_id=session_id,
                status=previous.value,
                requested_status=new_status.value,
            )
        return StatusChange(session=updated, previous=previous, changed=changed)

    async def update_status(
        self,
        session_id: str,
        new_status: CallStatus,
        ended_at: Optional[datetime] = None,
    ) -> Optional[CallSession]:
        change = await self.transition_status(session_id, new_status, ended_at)
        return change.session if change is not None else None

    async def mark_transcription_started(self, session_id: str) -> Optional[CallSession]:
        """Set the transcription start time once; later calls keep the first value."""
        def _mutate(session: CallSession) -> CallSession:
            if session.transcription_started_at is not None:
                return session
            return replace(session, transcription_started_at=utcnow())

        return await self._store.update(session_id, _mutate)
