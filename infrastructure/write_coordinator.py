# infrastructure/write_coordinator.py
"""
Serializes every mutating storage operation.

Tasks run one at a time in submission order. Each new task is chained after
the previous one settles, whatever its outcome, so a failed write never
blocks the ones queued behind it.
"""

import asyncio
from typing import Awaitable, Callable, Optional, TypeVar

from infrastructure.logging_service import get_module_logger

logger = get_module_logger("WriteCoordinator", "write_coordinator.log")

T = TypeVar("T")


def _mark_retrieved(task: asyncio.Task):
    """Read the exception of a settled task so an unawaited failure is not reported by asyncio."""
    if not task.cancelled():
        task.exception()


class WriteCoordinator:
    """Global FIFO mutex over the persisted state."""

    def __init__(self):
        self._tail: Optional[asyncio.Task] = None
        self._submitted = 0
        self._completed = 0

    @property
    def pending(self) -> int:
        """Number of tasks submitted and not yet settled."""
        return self._submitted - self._completed

    def enqueue(self, task: Callable[[], Awaitable[T]], name: str = "write") -> "asyncio.Task[T]":
        """
        Schedule task after every previously enqueued one.

        Returns immediately. Awaiting the returned task yields the result of
        task() or raises its exception. Must be called from a running loop.
        """
        previous = self._tail
        self._submitted += 1
        sequence = self._submitted
        # Le tail est mis à jour avant que la tâche ne démarre
        self._tail = asyncio.ensure_future(self._run_after(previous, task, name, sequence))
        return self._tail

    async def _run_after(self, previous: Optional[asyncio.Task], task: Callable[[], Awaitable[T]],
                         name: str, sequence: int) -> T:
        if previous is not None:
            if not previous.done():
                # asyncio.wait never raises the previous task's exception
                await asyncio.wait({previous})
            _mark_retrieved(previous)

        logger.debug(f"[#{sequence}] {name} started")
        try:
            result = await task()
        except Exception as e:
            logger.debug(f"[#{sequence}] {name} failed: {e}")
            raise
        finally:
            self._completed += 1
        logger.debug(f"[#{sequence}] {name} done")
        return result

    async def drain(self):
        """Wait until every task enqueued so far has settled."""
        while self._tail is not None and not self._tail.done():
            await asyncio.wait({self._tail})
        if self._tail is not None:
            _mark_retrieved(self._tail)
