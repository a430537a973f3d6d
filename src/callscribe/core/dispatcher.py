"""
Routes parsed provider events into the core.

Correlation and the state transition complete before ``dispatch`` returns;
transport calls and summary generation are handed to ``CallSideEffects``
and run detached.
"""

from dataclasses import dataclass
from typing import Optional

from ..logging_config import get_logger
from .correlator import EventCorrelator
from .events import IncomingEvent
from .session_registry import CallSessionRegistry
from .side_effects import CallSideEffects
from .state_machine import CallEventKind, CallStatus, is_terminal, status_for_event
from .transcript_ledger import TranscriptLedger

logger = get_logger(__name__)

_IGNORED_KINDS = (CallEventKind.VALIDATION, CallEventKind.UNKNOWN)


@dataclass(frozen=True)
class DispatchOutcome:
    event_type: str
    kind: CallEventKind
    session_id: Optional[str] = None
    matcher: Optional[str] = None
    status_changed: bool = False
    appended: int = 0

    @property
    def correlated(self) -> bool:
        return self.session_id is not None


class EventDispatcher:
    def __init__(
        self,
        registry: CallSessionRegistry,
        correlator: EventCorrelator,
        ledger: TranscriptLedger,
        side_effects: CallSideEffects,
    ):
        self._registry = registry
        self._correlator = correlator
        self._ledger = ledger
        self._side_effects = side_effects

    async def dispatch(self, event: IncomingEvent) -> DispatchOutcome:
        kind = event.kind
        if kind in _IGNORED_KINDS:
            logger.debug("Ignoring provider event", event_type=event.event_type, kind=kind.value)
            return DispatchOutcome(event.event_type, kind)

        match = await self._correlator.resolve(event.data)
        if match is None:
            logger.warning(
                "Event could not be correlated to a call session; dropped",
                event_type=event.event_type,
                raw_identifiers=event.data.identifiers(),
            )
            return DispatchOutcome(event.event_type, kind)

        session = await self._registry.get(match.session_id)
        if session is None:
            logger.warning(
                "Event references an unknown call session; dropped",
                event_type=event.event_type,
                session_id=match.session_id,
                matcher=match.matcher,
            )
            return DispatchOutcome(event.event_type, kind)

        log = logger.bind(session_id=session.id, event_type=event.event_type, matcher=match.matcher)
        status_changed = False
        appended = 0
        data = event.data

        target = status_for_event(kind)
        if target is not None:
            if kind in (CallEventKind.CONNECTING, CallEventKind.CONNECTED):
                await self._registry.set_connection(session.id, data.connection_id, data.server_call_id)
            change = await self._registry.transition_status(session.id, target)
            if change is not None:
                status_changed = change.changed
                current = change.session
                if current.status == CallStatus.CONNECTED:
                    self._side_effects.call_connected(current)
                elif change.changed and is_terminal(current.status):
                    if kind == CallEventKind.FAILED:
                        log.warning("Call failed", reason=data.reason, result_information=data.result_information)
                    self._side_effects.call_finished(current)

        elif kind == CallEventKind.TRANSCRIPT:
            appended = await self._ledger.append(session.id, data, session.participants)

        elif kind == CallEventKind.TRANSCRIPTION_STARTED:
            await self._registry.mark_transcription_started(session.id)
            log.info("Provider reported transcription started")

        elif kind == CallEventKind.TRANSCRIPTION_STOPPED:
            log.info("Provider reported transcription stopped")

        elif kind == CallEventKind.TRANSCRIPTION_FAILED:
            log.warning(
                "Provider reported transcription failure",
                reason=data.reason,
                result_information=data.result_information,
            )

        elif kind == CallEventKind.PARTICIPANTS_UPDATED:
            # Recovery path for a connected call whose transcription never started
            if session.status == CallStatus.CONNECTED and session.transcription_started_at is None:
                log.info("Retrying transcription start after participants update")
                self._side_effects.call_connected(session)

        return DispatchOutcome(
            event_type=event.event_type,
            kind=kind,
            session_id=session.id,
            matcher=match.matcher,
            status_changed=status_changed,
            appended=appended,
        )
