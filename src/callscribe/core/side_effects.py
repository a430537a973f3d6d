"""
Provider-facing side effects of call status changes.

Everything here runs detached from the webhook request through
``BackgroundTasks``. Transport failures are logged and never change call
session state.
"""

import asyncio
from typing import Optional, Set

from ..logging_config import get_logger
from ..providers.base import CallTransport, NullCallTransport
from .background import BackgroundTasks
from .models import CallSession
from .session_registry import CallSessionRegistry
from .summary_orchestrator import SummaryOrchestrator

logger = get_logger(__name__)


class CallSideEffects:
    def __init__(
        self,
        registry: CallSessionRegistry,
        summaries: SummaryOrchestrator,
        transport: Optional[CallTransport] = None,
        background: Optional[BackgroundTasks] = None,
        transcription_enabled: bool = True,
        summaries_enabled: bool = True,
    ):
        self._registry = registry
        self._summaries = summaries
        self._transport = transport or NullCallTransport()
        self.background = background or BackgroundTasks()
        self._transcription_enabled = transcription_enabled
        self._summaries_enabled = summaries_enabled
        self._starting: Set[str] = set()

    # Transcription ------------------------------------------------------------

    async def start_transcription(self, session_id: str) -> bool:
        """
        Start transcription once per session.

        Skipped when it already started or another start for the session is in
        progress. The start time is recorded only after the transport succeeds.
        """
        if not self._transcription_enabled:
            logger.debug("Transcription disabled; not starting", session_id=session_id)
            return False
        if session_id in self._starting:
            logger.debug("Transcription start already in progress", session_id=session_id)
            return False

        self._starting.add(session_id)
        try:
            session = await self._registry.get(session_id)
            if session is None or session.is_terminal:
                return False
            if session.transcription_started_at is not None:
                logger.debug("Transcription already started", session_id=session_id)
                return False

            try:
                started = await self._transport.start_transcription(session)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("Failed to start transcription", session_id=session_id, error=str(e), exc_info=True)
                return False

            if not started:
                logger.warning("Transcription was not started", session_id=session_id)
                return False
            await self._registry.mark_transcription_started(session_id)
            logger.info("Transcription started", session_id=session_id, connection_id=session.connection_id)
            return True
        finally:
            self._starting.discard(session_id)

    async def stop_transcription(self, session: CallSession) -> bool:
        if not session.connection_id:
            logger.debug("No connection id; transcription stop skipped", session_id=session.id)
            return False
        try:
            stopped = await self._transport.stop_transcription(session)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("Failed to stop transcription", session_id=session.id, error=str(e), exc_info=True)
            return False
        if stopped:
            logger.info("Transcription stopped", session_id=session.id)
        return stopped

    # Dispatch -----------------------------------------------------------------

    def call_connected(self, session: CallSession) -> None:
        if session.transcription_started_at is not None:
            return
        self.background.spawn(self.start_transcription(session.id), name=f"transcription-start-{session.id}")

    def call_finished(self, session: CallSession) -> None:
        """Stop transcription and trigger the summary for a call that reached a terminal status."""
        self.background.spawn(self.stop_transcription(session), name=f"transcription-stop-{session.id}")
        if self._summaries_enabled:
            self.background.spawn(self._summaries.ensure_summary(session.id), name=f"summary-trigger-{session.id}")
