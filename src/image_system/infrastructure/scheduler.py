"""
Scheduler - Periodic background tasks with clean cancellation

Part of the AgroLink Image Integration System.
Infrastructure Layer

License: MIT
"""

from typing import Any, Awaitable, Callable, Optional, Union
import asyncio
import inspect
import logging

logger = logging.getLogger(__name__)

TaskFunc = Callable[[], Union[Any, Awaitable[Any]]]


class PeriodicTask:
    """
    Runs ``func`` every ``interval`` seconds on the running event loop.

    ``func`` may be a plain function or a coroutine function. Failures are
    logged and the schedule continues.
    """

    def __init__(
        self,
        name: str,
        interval: float,
        func: TaskFunc,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        if interval <= 0:
            raise ValueError("interval must be positive")

        self.name = name
        self.interval = interval
        self.func = func
        self.run_count = 0
        self.failure_count = 0

        self._sleep = sleep
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the loop (must be called from a running event loop)."""
        if self.running:
            return
        self._task = asyncio.create_task(self._run_loop(), name=f"periodic-{self.name}")
        logger.info(f"Periodic task '{self.name}' started (every {self.interval}s)")

    async def stop(self) -> None:
        """Cancel the loop and wait for it to finish."""
        if self._task is None:
            return

        task, self._task = self._task, None
        if not task.done():
            task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info(f"Periodic task '{self.name}' stopped after {self.run_count} run(s)")

    async def run_once(self) -> None:
        """Invoke ``func`` once, logging rather than raising failures."""
        self.run_count += 1
        try:
            result = self.func()
            if inspect.isawaitable(result):
                await result
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.failure_count += 1
            logger.error(f"Periodic task '{self.name}' failed: {e}", exc_info=True)

    async def _run_loop(self) -> None:
        try:
            while True:
                await self._sleep(self.interval)
                await self.run_once()
        except asyncio.CancelledError:
            logger.debug(f"Periodic task '{self.name}' cancelled")
            raise
