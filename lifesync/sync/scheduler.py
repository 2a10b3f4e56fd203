"""Background timers for the sync core.

Each concern (periodic sync, auto-backup, debounced push, retry) gets its
own asyncio task so one can be cancelled without touching the others.
Exceptions raised by a task body are logged and contained in that task.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

AsyncCallback = Callable[[], Awaitable[None]]


class ScheduledTask:
    """Runs func every interval seconds until cancelled.

    Args:
        name: Label used in logs.
        interval: Seconds between runs.
        func: Coroutine function to call.
        run_immediately: Call func once right away before the first wait.
    """

    def __init__(
        self,
        name: str,
        interval: float,
        func: AsyncCallback,
        run_immediately: bool = False,
    ):
        self.name = name
        self.interval = interval
        self._func = func
        self._run_immediately = run_immediately
        self._task: Optional[asyncio.Task] = None
        self.runs = 0
        self.failures = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name=f"lifesync-{self.name}")
        logger.debug(f"Scheduled task {self.name} started (every {self.interval}s)")

    async def _loop(self) -> None:
        if self._run_immediately:
            await self._run_once()
        while True:
            await asyncio.sleep(self.interval)
            await self._run_once()

    async def _run_once(self) -> None:
        self.runs += 1
        try:
            await self._func()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.failures += 1
            logger.error(f"Scheduled task {self.name} failed: {e}", exc_info=True)

    def cancel(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None
            logger.debug(f"Scheduled task {self.name} cancelled")


class Debouncer:
    """Trailing-edge timer: func runs once, delay seconds after the last call()."""

    def __init__(self, name: str, delay: float, func: AsyncCallback):
        self.name = name
        self.delay = delay
        self._func = func
        self._task: Optional[asyncio.Task] = None

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    def call(self, delay: Optional[float] = None) -> None:
        """(Re)arm the timer. An already armed timer is restarted."""
        self.cancel()
        wait = self.delay if delay is None else delay
        self._task = asyncio.create_task(self._fire(wait), name=f"lifesync-{self.name}")

    async def _fire(self, wait: float) -> None:
        await asyncio.sleep(wait)
        # Detach first so func can re-arm this debouncer
        self._task = None
        try:
            await self._func()
        except Exception as e:
            logger.error(f"Timer {self.name} failed: {e}", exc_info=True)

    def cancel(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None
