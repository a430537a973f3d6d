"""
Read/write surface of the callscribe core.

``CallService`` wires the registry, ledger, orchestrator and dispatcher
together and exposes the operations the HTTP layer (or any other caller)
needs: starting and joining calls, adding participants, recording provider events and
reading transcripts and summaries.
"""

import asyncio
import secrets
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Mapping, Optional, Sequence

from ..logging_config import get_logger
from ..providers.base import CallTransport, IdentityProvider, IssuedToken, NullCallTransport
from .correlator import EventCorrelator
from .dispatcher import DispatchOutcome, EventDispatcher
from .errors import IdentityProvisioningError
from .events import SUBSCRIPTION_VALIDATION_EVENT, IncomingEvent, parse_events
from .models import CallParticipant, CallSession, CallSummary, TranscriptSegment, new_id
from .session_registry import CallSessionRegistry, SkippedParticipant
from .side_effects import CallSideEffects
from .summary_orchestrator import SummaryOrchestrator
from .store import build_store
from .transcript_ledger import SessionTranscript, TranscriptLedger

logger = get_logger(__name__)

SUMMARY_PENDING = "pending"
SUMMARY_READY = "ready"

VALIDATION_HEADER = "aeg-event-type"
VALIDATION_HEADER_VALUE = "subscriptionvalidation"


@dataclass
class StartedCall:
    session: CallSession
    identity: Optional[str] = None
    token: Optional[IssuedToken] = None


@dataclass(frozen=True)
class AddedParticipant:
    participant: CallParticipant
    invite_dispatched: bool


@dataclass
class ParticipantsResult:
    session: CallSession
    added: List[AddedParticipant] = field(default_factory=list)
    skipped: List[SkippedParticipant] = field(default_factory=list)


@dataclass
class IngestResult:
    received: int
    correlated: int = 0
    validation_response: Optional[str] = None
    outcomes: List[DispatchOutcome] = field(default_factory=list)


@dataclass
class TranscriptView:
    session: CallSession
    segments: List[TranscriptSegment]


@dataclass
class SummaryView:
    session: CallSession
    summary: Optional[CallSummary]

    @property
    def status(self) -> str:
        return SUMMARY_READY if self.summary is not None else SUMMARY_PENDING


def _lower_headers(headers: Optional[Mapping[str, str]]) -> Dict[str, str]:
    return {str(k).lower(): v for k, v in (headers or {}).items()}


class CallService:
    def __init__(
        self,
        registry: CallSessionRegistry,
        ledger: TranscriptLedger,
        summaries: SummaryOrchestrator,
        side_effects: CallSideEffects,
        dispatcher: EventDispatcher,
        identity_provider: Optional[IdentityProvider] = None,
        transport: Optional[CallTransport] = None,
        webhook_config=None,
    ):
        self.registry = registry
        self.ledger = ledger
        self.summaries = summaries
        self.side_effects = side_effects
        self.dispatcher = dispatcher
        self._identity_provider = identity_provider
        self._transport = transport or NullCallTransport()
        self._webhook = webhook_config

    # Write surface ------------------------------------------------------------

    async def _with_identity(self, participant: CallParticipant) -> CallParticipant:
        if participant.identity or self._identity_provider is None:
            return participant
        try:
            identity = await self._identity_provider.ensure_identity(participant.user_id)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("Failed to provision identity", user_id=participant.user_id, error=str(e), exc_info=True)
            raise IdentityProvisioningError(f"Unable to provision identity for '{participant.user_id}'") from e
        return replace(participant, identity=identity)

    async def create_session(
        self,
        initiator: CallParticipant,
        participants: Sequence[CallParticipant] = (),
    ) -> StartedCall:
        """
        Start a call for ``initiator`` and the requested participants.

        The initiator is always the first participant. When an identity
        provider is configured every participant gets a provider identity and
        the initiator receives an access token.

        Raises:
            IdentityProvisioningError: identity or token issuance failed.
        """
        others = [p for p in participants if p.user_id.lower() != initiator.user_id.lower()]
        initiator = await self._with_identity(initiator)
        roster = [initiator]
        for participant in others:
            roster.append(await self._with_identity(participant))

        token = await self._issue_token(initiator)

        session = await self.registry.create(initiator.user_id, new_id(), roster)
        self.side_effects.background.spawn(self._connect(session), name=f"connect-{session.id}")
        return StartedCall(session=session, identity=initiator.identity, token=token)

    async def _issue_token(self, participant: CallParticipant) -> Optional[IssuedToken]:
        if self._identity_provider is None or not participant.identity:
            return None
        try:
            return await self._identity_provider.issue_token(participant.identity)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("Failed to issue token", user_id=participant.user_id, error=str(e), exc_info=True)
            raise IdentityProvisioningError("Unable to issue access token") from e

    async def join_session(self, session_id: str, participant: CallParticipant) -> Optional[StartedCall]:
        """
        Let ``participant`` join an existing call and hand back its access token.

        Joining twice is harmless: a user already on the roster keeps its
        entry and identity and is not invited again. Returns None for an
        unknown session.

        Raises:
            IdentityProvisioningError: identity or token issuance failed.
        """
        session = await self.registry.get(session_id)
        if session is None:
            return None

        existing = next((p for p in session.participants if p.user_id.lower() == participant.user_id.lower()), None)
        joiner = await self._with_identity(existing if existing is not None and existing.identity else participant)
        token = await self._issue_token(joiner)

        outcome = await self.registry.add_participants(session_id, [joiner])
        if outcome is None:
            return None
        for added in outcome.added:
            self.side_effects.background.spawn(
                self._invite(outcome.session, added),
                name=f"invite-{session_id}-{added.user_id}",
            )

        logger.info("Participant joined call", session_id=session_id, user_id=joiner.user_id, new=bool(outcome.added))
        return StartedCall(session=outcome.session, identity=joiner.identity, token=token)

    async def _connect(self, session: CallSession) -> None:
        info = await self._transport.connect_call(session)
        if info is None:
            return
        await self.registry.set_connection(session.id, info.connection_id, info.server_call_id)

    async def add_participants(
        self,
        session_id: str,
        participants: Sequence[CallParticipant],
    ) -> Optional[ParticipantsResult]:
        """
        Add participants not yet in the call and invite them.

        Returns None for an unknown session. Participants already present are
        reported as skipped with reason "already in call". Invites are sent
        only when the call has a connection id.
        """
        session = await self.registry.get(session_id)
        if session is None:
            return None

        provisioned = []
        for participant in participants:
            if session.has_participant(participant.user_id):
                provisioned.append(participant)
            else:
                provisioned.append(await self._with_identity(participant))

        outcome = await self.registry.add_participants(session_id, provisioned)
        if outcome is None:
            return None

        added = []
        for participant in outcome.added:
            added.append(AddedParticipant(participant, await self._invite(outcome.session, participant)))
        return ParticipantsResult(session=outcome.session, added=added, skipped=list(outcome.skipped))

    async def _invite(self, session: CallSession, participant: CallParticipant) -> bool:
        if not session.connection_id:
            logger.debug(
                "No connection id yet; participant will join from the client",
                session_id=session.id,
                user_id=participant.user_id,
            )
            return False
        try:
            return bool(await self._transport.add_participant(session, participant))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(
                "Failed to invite participant",
                session_id=session.id,
                user_id=participant.user_id,
                error=str(e),
                exc_info=True,
            )
            return False

    # Event ingestion ----------------------------------------------------------

    def authorize(self, headers: Optional[Mapping[str, str]]) -> bool:
        """Shared-secret check; always passes when no key is configured or enforcement is off."""
        if self._webhook is None or not self._webhook.auth_required:
            return True
        provided = _lower_headers(headers).get(self._webhook.header_name.lower())
        if not provided:
            return False
        return secrets.compare_digest(provided.encode("utf-8"), self._webhook.key.encode("utf-8"))

    async def record_event(self, event: IncomingEvent) -> DispatchOutcome:
        return await self.dispatcher.dispatch(event)

    async def record_events(self, body, headers: Optional[Mapping[str, str]] = None) -> IngestResult:
        """
        Parse and dispatch a webhook body.

        A subscription-validation event (or any event carrying a validation
        code when the ``aeg-event-type: SubscriptionValidation`` header is
        present) short-circuits the batch with the code to echo back.

        Raises:
            InvalidEventPayload: the body is malformed or holds no events.
        """
        events = parse_events(body)
        header_validation = _lower_headers(headers).get(VALIDATION_HEADER, "").strip().lower() == VALIDATION_HEADER_VALUE

        for event in events:
            code = event.data.validation_code
            if code and (header_validation or event.event_type.lower() == SUBSCRIPTION_VALIDATION_EVENT.lower()):
                logger.info("Subscription validation requested", event_type=event.event_type)
                return IngestResult(received=len(events), validation_response=code)

        result = IngestResult(received=len(events))
        for event in events:
            outcome = await self.record_event(event)
            result.outcomes.append(outcome)
            if outcome.correlated:
                result.correlated += 1

        logger.info("Provider events processed", received=result.received, correlated=result.correlated)
        return result

    # Read surface -------------------------------------------------------------

    async def get_session(self, session_id: str) -> Optional[CallSession]:
        return await self.registry.get(session_id)

    async def get_transcript(self, session_id: str) -> Optional[TranscriptView]:
        session = await self.registry.get(session_id)
        if session is None:
            return None
        return TranscriptView(session=session, segments=await self.ledger.read(session_id))

    async def get_summary(self, session_id: str) -> Optional[SummaryView]:
        """Summary for a known session, generated on first request."""
        session = await self.registry.get(session_id)
        if session is None:
            return None
        summary = await self.summaries.ensure_summary(session_id)
        return SummaryView(session=session, summary=summary)

    async def close(self) -> None:
        await self.side_effects.background.cancel_all()
        await self.summaries.close()

    def describe(self) -> Dict[str, Any]:
        return {
            "summary_provider": self.summaries.provider_active,
            "background_tasks": len(self.side_effects.background),
        }


def build_call_service(
    config,
    *,
    identity_provider: Optional[IdentityProvider] = None,
    transport: Optional[CallTransport] = None,
    summarizer=None,
) -> CallService:
    """Assemble the core from an ``AppConfig``; stores follow ``store.backend``."""
    registry = CallSessionRegistry(build_store(config.store, "sessions", CallSession.to_dict, CallSession.from_dict))
    ledger = TranscriptLedger(build_store(config.store, "transcripts", SessionTranscript.to_dict, SessionTranscript.from_dict))
    summaries = SummaryOrchestrator(
        registry,
        ledger,
        store=build_store(config.store, "summaries", CallSummary.to_dict, CallSummary.from_dict),
        provider=summarizer,
        enabled=config.features.enable_summaries,
    )
    side_effects = CallSideEffects(
        registry,
        summaries,
        transport=transport,
        transcription_enabled=config.features.enable_transcription,
        summaries_enabled=config.features.enable_summaries,
    )
    dispatcher = EventDispatcher(registry, EventCorrelator(registry), ledger, side_effects)
    return CallService(
        registry,
        ledger,
        summaries,
        side_effects,
        dispatcher,
        identity_provider=identity_provider,
        transport=transport,
        webhook_config=config.webhook,
    )
