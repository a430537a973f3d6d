"""Stale call cleanup: forces abandoned Active/Connecting sessions to Completed."""

import asyncio
from datetime import datetime, timedelta
from typing import List, Optional

from ..logging_config import get_logger
from .models import utcnow
from .session_registry import CallSessionRegistry
from .side_effects import CallSideEffects
from .state_machine import CallStatus

logger = get_logger(__name__)

DEFAULT_STALE_CALL_MINUTES = 120
DEFAULT_MIN_STALE_MINUTES = 5
DEFAULT_INTERVAL_MINUTES = 15


class StaleSessionReaper:
    def __init__(
        self,
        registry: CallSessionRegistry,
        side_effects: CallSideEffects,
        stale_call_minutes: int = DEFAULT_STALE_CALL_MINUTES,
        min_stale_minutes: int = DEFAULT_MIN_STALE_MINUTES,
        interval_minutes: int = DEFAULT_INTERVAL_MINUTES,
    ):
        self._registry = registry
        self._side_effects = side_effects
        self.stale_call_minutes = stale_call_minutes
        self.min_stale_minutes = min_stale_minutes
        self.interval_minutes = interval_minutes

    @classmethod
    def from_config(cls, registry: CallSessionRegistry, side_effects: CallSideEffects, reaper_config) -> "StaleSessionReaper":
        return cls(
            registry,
            side_effects,
            stale_call_minutes=reaper_config.stale_call_minutes,
            min_stale_minutes=reaper_config.min_stale_minutes,
            interval_minutes=reaper_config.interval_minutes,
        )

    def cutoff_for(self, now: Optional[datetime] = None) -> datetime:
        now = now or utcnow()
        return now - timedelta(minutes=max(self.min_stale_minutes, self.stale_call_minutes))

    async def sweep(self, cutoff: Optional[datetime] = None) -> List[str]:
        """Complete every stale session; returns the ids that were reaped."""
        cutoff = cutoff or self.cutoff_for()
        stale = await self._registry.find_stale(cutoff)
        if not stale:
            return []

        reaped = []
        for session in stale:
            try:
                change = await self._registry.transition_status(session.id, CallStatus.COMPLETED)
                if change is None or not change.changed:
                    continue
                self._side_effects.call_finished(change.session)
                reaped.append(session.id)
                logger.info(
                    "Marked stale call as Completed",
                    session_id=session.id,
                    started_at=session.started_at.isoformat(),
                    previous_status=change.previous.value,
                )
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning("Failed to clean up stale call session", session_id=session.id, error=str(e), exc_info=True)

        return reaped

    async def run(self, interval_minutes: Optional[int] = None) -> None:
        """Sweep on a fixed interval until cancelled."""
        interval = (interval_minutes or self.interval_minutes) * 60
        logger.info(
            "Stale call reaper started",
            interval_minutes=interval / 60,
            stale_call_minutes=max(self.min_stale_minutes, self.stale_call_minutes),
        )
        while True:
            try:
                reaped = await self.sweep()
                if reaped:
                    logger.info("Stale call sweep finished", reaped=len(reaped))
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("Stale call sweep failed", error=str(e), exc_info=True)
            await asyncio.sleep(interval)
