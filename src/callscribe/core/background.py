"""Detached side-effect tasks that must not block webhook acknowledgement."""

import asyncio
from typing import Awaitable, Optional, Set

from ..logging_config import get_logger

logger = get_logger(__name__)


class BackgroundTasks:
    """
    Owns fire-and-forget tasks.

    Strong references keep tasks alive until they finish; failures are logged
    in a done-callback and never reach the caller that spawned them.
    """

    def __init__(self) -> None:
        self._tasks: Set[asyncio.Task] = set()

    def __len__(self) -> int:
        return len(self._tasks)

    def spawn(self, coro: Awaitable, *, name: Optional[str] = None) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        if name:
            task.set_name(name)
        self._tasks.add(task)

        def _done(t: asyncio.Task) -> None:
            self._tasks.discard(t)
            if t.cancelled():
                return
            exc = t.exception()
            if exc is not None:
                logger.error(
                    "Background task failed",
                    task=t.get_name(),
                    error=str(exc),
                    exc_info=(type(exc), exc, exc.__traceback__),
                )

        task.add_done_callback(_done)
        return task

    async def drain(self) -> None:
        """Wait until every spawned task (including ones spawned meanwhile) has settled."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def cancel_all(self) -> None:
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
