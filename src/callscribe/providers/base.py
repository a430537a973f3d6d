"""
Capability interfaces consumed by the callscribe core.

Identity issuance, the provider-side call transport and the summarization
model are external collaborators. The core only sees these narrow contracts,
so each can be swapped (or faked in tests) without touching call handling.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Sequence

from ..core.models import CallParticipant, CallSession, TranscriptSegment
from ..logging_config import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class IssuedToken:
    """Short-lived access token for a communication identity."""
    token: str
    expires_at: Optional[datetime] = None


@dataclass(frozen=True)
class ConnectionInfo:
    """Provider call identifiers returned when a call is connected."""
    connection_id: str
    server_call_id: Optional[str] = None


@dataclass
class SummaryDraft:
    """Summarizer output before it becomes a persisted CallSummary."""
    summary: str
    key_points: List[str] = field(default_factory=list)
    action_items: List[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.summary or "").strip() and not self.key_points and not self.action_items


class IdentityProvider(ABC):
    """Issues communication identities and access tokens."""

    @abstractmethod
    async def ensure_identity(self, user_id: str) -> str:
        """Return the provider identity for ``user_id``, creating one if needed."""

    @abstractmethod
    async def issue_token(self, identity: str) -> IssuedToken:
        """Issue an access token for ``identity``."""


class CallTransport(ABC):
    """
    Provider-side call control.

    Implementations report failure by returning False (or None) and logging;
    the core never retries.
    """

    @abstractmethod
    async def add_participant(self, session: CallSession, participant: CallParticipant) -> bool:
        """Invite ``participant`` into the connected call."""

    @abstractmethod
    async def connect_call(self, session: CallSession) -> Optional[ConnectionInfo]:
        """Connect the service to the call's group; ``session.operation_context`` rides along."""

    @abstractmethod
    async def start_transcription(self, session: CallSession) -> bool:
        """Start real-time transcription on the connected call."""

    @abstractmethod
    async def stop_transcription(self, session: CallSession) -> bool:
        """Stop real-time transcription."""


class NullCallTransport(CallTransport):
    """Transport used when no provider call control is configured."""

    async def add_participant(self, session: CallSession, participant: CallParticipant) -> bool:
        logger.info(
            "Call transport not configured; participant invite skipped",
            session_id=session.id,
            user_id=participant.user_id,
        )
        return False

    async def connect_call(self, session: CallSession) -> Optional[ConnectionInfo]:
        logger.info("Call transport not configured; connect skipped", session_id=session.id)
        return None

    async def start_transcription(self, session: CallSession) -> bool:
        logger.info("Call transport not configured; transcription start skipped", session_id=session.id)
        return False

    async def stop_transcription(self, session: CallSession) -> bool:
        logger.info("Call transport not configured; transcription stop skipped", session_id=session.id)
        return False


class SummarizationProvider(ABC):
    """Turns an ordered transcript into a summary draft."""

    @property
    def configured(self) -> bool:
        return True

    @abstractmethod
    async def summarize(
        self,
        transcript: Sequence[TranscriptSegment],
        roster: Sequence[CallParticipant],
        session: CallSession,
    ) -> SummaryDraft:
        """
        Produce a summary draft.

        Raises:
            SummaryProviderError: the provider failed or returned unusable output.
        """
