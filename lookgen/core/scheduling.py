"""
Timer Scheduling

Single-threaded timer primitive used by the poller and the
pre-compositor. Every scheduled callback is bound to a CancelToken;
a cancelled token guarantees the callback never runs.
"""

import asyncio
import inspect
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional, Set

from lookgen.core.logging import get_logger

logger = get_logger(__name__)


class CancelToken:
    """Cooperative cancellation flag shared by a scheduled callback and its owner."""

    __slots__ = ("_cancelled",)

    def __init__(self):
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self):
        self._cancelled = True


class IScheduler(ABC):
    """Interface for timer scheduling."""

    @abstractmethod
    def now(self) -> float:
        """Current time in seconds."""
        pass

    @abstractmethod
    def call_later(
        self,
        delay: float,
        callback: Callable[[], Any],
        token: CancelToken
    ) -> None:
        """
        Run callback after delay seconds unless token is cancelled first.

        Coroutine functions are run as tasks on the event loop.
        """
        pass


class AsyncioScheduler(IScheduler):
    """Scheduler backed by the running asyncio event loop."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop
        self._tasks: Set[asyncio.Task] = set()

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        return self._loop or asyncio.get_running_loop()

    def now(self) -> float:
        return self.loop.time()

    def call_later(
        self,
        delay: float,
        callback: Callable[[], Any],
        token: CancelToken
    ) -> None:
        loop = self.loop

        def _fire():
            if token.cancelled:
                return
            result = callback()
            if inspect.isawaitable(result):
                task = loop.create_task(result)
                # Keep a strong reference until the task finishes
                self._tasks.add(task)
                task.add_done_callback(self._on_task_done)

        loop.call_later(max(delay, 0.0), _fire)

    def _on_task_done(self, task: asyncio.Task):
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(
                "scheduled_callback_failed",
                error=str(error),
                error_type=type(error).__name__,
                exc_info=error
            )


_default_scheduler: Optional[AsyncioScheduler] = None


def get_scheduler() -> IScheduler:
    """Get the process-wide asyncio scheduler."""
    global _default_scheduler
    if _default_scheduler is None:
        _default_scheduler = AsyncioScheduler()
    return _default_scheduler
