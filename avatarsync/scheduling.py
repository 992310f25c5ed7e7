"""Event-loop scheduling helpers: timers and background tasks."""

import asyncio
import logging
import time
from typing import Any, Callable, Coroutine, Optional, Set

logger = logging.getLogger(__name__)


class Scheduler:
    """Thin wrapper over the asyncio event loop used by every component.

    Components never touch the loop directly so tests can substitute a
    scheduler with a manually advanced clock.
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        """Initialize scheduler.

        Args:
            loop: Event loop to schedule on. If None, the running loop is used
                  at call time.
        """
        self._loop = loop
        self._tasks: Set[asyncio.Task] = set()

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def now(self) -> float:
        """Current wall-clock time in seconds."""
        return time.time()

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any):
        """Schedule ``callback(*args)`` after ``delay`` seconds.

        Returns:
            A handle with a ``cancel()`` method
        """
        return self.loop.call_later(delay, callback, *args)

    def call_soon_threadsafe(self, callback: Callable[..., Any], *args: Any) -> None:
        """Hand ``callback(*args)`` to the loop from another thread."""
        self.loop.call_soon_threadsafe(callback, *args)

    def spawn(self, coro: Coroutine) -> Optional[asyncio.Task]:
        """Run ``coro`` in the background; unhandled exceptions are logged."""
        task = self.loop.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Background task {task.get_name()} failed: {error}",
                         exc_info=error)

    async def drain(self, timeout: float = 5.0) -> None:
        """Wait up to ``timeout`` seconds for outstanding background tasks."""
        if not self._tasks:
            return
        done, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
        if pending:
            logger.warning(f"{len(pending)} background tasks still running after {timeout}s")


class TimerSlot:
    """A single named timer that is replaced, never layered, on re-arm."""

    def __init__(self, scheduler: Scheduler, name: str):
        self.scheduler = scheduler
        self.name = name
        self._handle = None

    @property
    def active(self) -> bool:
        return self._handle is not None

    def arm(self, delay: float, callback: Callable[..., Any], *args: Any) -> None:
        """Cancel any pending firing and schedule ``callback`` after ``delay``."""
        self.cancel()
        self._handle = self.scheduler.call_later(delay, self._fire, callback, args)
        logger.debug(f"Timer '{self.name}' armed for {delay:.3f}s")

    def cancel(self) -> bool:
        """Cancel the pending firing.

        Returns:
            True if a firing was pending
        """
        if self._handle is None:
            return False
        self._handle.cancel()
        self._handle = None
        logger.debug(f"Timer '{self.name}' cancelled")
        return True

    def _fire(self, callback: Callable[..., Any], args: tuple) -> None:
        self._handle = None
        callback(*args)
