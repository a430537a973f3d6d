"""
End-of-call summaries.

``ensure_summary`` produces at most one summary per call session. Concurrent
callers for the same session join a single in-flight generation task; the
entry is dropped once the task settles so a failed generation can be retried
later. The first persisted summary is never overwritten.
"""

import asyncio
from typing import Dict, List, Optional, Sequence

from ..logging_config import get_logger
from ..providers.base import SummarizationProvider
from .models import CallSession, CallSummary, TranscriptSegment
from .session_registry import CallSessionRegistry
from .store import InMemoryKeyedStore, KeyedStore
from .transcript_ledger import TranscriptLedger

logger = get_logger(__name__)

SOURCE_PROVIDER = "provider"
SOURCE_FALLBACK = "fallback"

KEY_POINT_LIMIT = 3
KEY_POINT_MAX_CHARS = 140
REVIEW_ACTION_ITEM = "Model-generated action items unavailable. Review transcript and capture next steps."
NO_TRANSCRIPT_KEY_POINT = "Transcript not yet available for this call."


def _truncate(text: str, max_length: int) -> str:
    if len(text) <= max_length:
        return text
    return text[:max_length].rstrip() + "..."


def build_fallback_summary(session: CallSession, segments: Sequence[TranscriptSegment]) -> CallSummary:
    """Deterministic digest from the roster and the first transcript segments."""
    names = [p.display_name for p in session.participants if p.display_name] or ["unknown participants"]
    who = ", ".join(names)
    if segments:
        text = (
            f"Call between {who} captured {len(segments)} transcript segment(s). "
            "AI summary unavailable; showing a quick digest from the transcript."
        )
    else:
        text = f"Call between {who} has no transcript yet. Summary pending."

    key_points = [
        f"{s.speaker_display_name or s.speaker_user_id or 'Speaker'}: {_truncate(s.text, KEY_POINT_MAX_CHARS)}"
        for s in segments[:KEY_POINT_LIMIT]
    ] or [NO_TRANSCRIPT_KEY_POINT]

    return CallSummary(
        session_id=session.id,
        summary=text,
        key_points=tuple(key_points),
        action_items=(REVIEW_ACTION_ITEM,),
        source=SOURCE_FALLBACK,
    )


class SummaryOrchestrator:
    def __init__(
        self,
        registry: CallSessionRegistry,
        ledger: TranscriptLedger,
        store: Optional[KeyedStore[CallSummary]] = None,
        provider: Optional[SummarizationProvider] = None,
        enabled: bool = True,
    ):
        self._registry = registry
        self._ledger = ledger
        self._store: KeyedStore[CallSummary] = store if store is not None else InMemoryKeyedStore()
        self._provider = provider
        self._enabled = enabled
        self._in_flight: Dict[str, asyncio.Task] = {}

    @property
    def provider_active(self) -> bool:
        return self._enabled and self._provider is not None and self._provider.configured

    def in_flight(self, session_id: str) -> bool:
        return session_id in self._in_flight

    async def get_summary(self, session_id: str) -> Optional[CallSummary]:
        """The persisted summary, without triggering generation."""
        return await self._store.get(session_id)

    async def ensure_summary(self, session_id: str) -> Optional[CallSummary]:
        """
        Return the session's summary, generating it if needed.

        Returns None when the session does not exist or generation failed
        unexpectedly; every caller joined to that generation sees the same
        outcome.
        """
        existing = await self._store.get(session_id)
        if existing is not None:
            return existing

        # No await between the lookup and the insert: start-or-join is atomic
        task = self._in_flight.get(session_id)
        if task is None:
            task = asyncio.create_task(self._generate_and_persist(session_id), name=f"summary-{session_id}")
            self._in_flight[session_id] = task

            def _settled(t: asyncio.Task, *, _session_id: str = session_id) -> None:
                if self._in_flight.get(_session_id) is t:
                    self._in_flight.pop(_session_id, None)

            task.add_done_callback(_settled)
        else:
            logger.debug("Joining in-flight summary generation", session_id=session_id)

        return await asyncio.shield(task)

    async def close(self) -> None:
        """Cancel in-flight generations and wait for them to settle."""
        tasks = list(self._in_flight.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info("Cancelled in-flight summary generations", count=len(tasks))

    async def _generate_and_persist(self, session_id: str) -> Optional[CallSummary]:
        try:
            summary = await self._generate(session_id)
            if summary is None:
                return None
            stored, inserted = await self._store.put_if_absent(session_id, summary)
            if inserted:
                logger.info("Call summary stored", session_id=session_id, source=stored.source)
            else:
                logger.info("Call summary already stored; keeping the first one", session_id=session_id)
            return stored
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("Failed to generate summary", session_id=session_id, error=str(e), exc_info=True)
            return None

    async def _generate(self, session_id: str) -> Optional[CallSummary]:
        session = await self._registry.get(session_id)
        if session is None:
            logger.warning("Cannot summarize unknown call session", session_id=session_id)
            return None

        segments: List[TranscriptSegment] = await self._ledger.read(session_id)

        if self.provider_active:
            summary = await self._try_provider(session, segments)
            if summary is not None:
                return summary

        return build_fallback_summary(session, segments)

    async def _try_provider(self, session: CallSession, segments: List[TranscriptSegment]) -> Optional[CallSummary]:
        try:
            draft = await self._provider.summarize(segments, list(session.participants), session)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(
                "Summary provider failed; using fallback",
                session_id=session.id,
                error=str(e),
            )
            return None

        if draft is None or draft.is_empty:
            logger.warning("Summary provider returned an empty draft; using fallback", session_id=session.id)
            return None

        return CallSummary(
            session_id=session.id,
            summary=draft.summary.strip(),
            key_points=tuple(draft.key_points),
            action_items=tuple(draft.action_items),
            source=SOURCE_PROVIDER,
        )
