"""
Quota Tracker - In-memory sliding window quota tracking for provider APIs

Part of the AgroLink Image Integration System.
Infrastructure Layer

License: MIT
"""

from collections import deque
from datetime import datetime
from typing import Any, Awaitable, Callable, Deque, Dict, NamedTuple
import asyncio
import logging
import time

from ..core.models import QuotaInfo

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_SECONDS = 3600
MAX_QUOTA_WAIT_SECONDS = 60.0


class QuotaWindowRecord(NamedTuple):
    timestamp: float
    count: int


class QuotaTracker:
    """
    Sliding window quota tracker for a single provider.

    Usage is recorded as timestamped counts and summed over the trailing
    window. Records that fall outside the window are discarded on every check.
    """

    def __init__(
        self,
        max_requests: int = 50,
        window_seconds: float = DEFAULT_WINDOW_SECONDS,
        max_wait: float = MAX_QUOTA_WAIT_SECONDS,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """
        Initialize the quota tracker.

        Args:
            max_requests: Maximum requests allowed in the time window
            window_seconds: Time window in seconds
            max_wait: Upper bound for a single quota wait
            clock: Wall clock returning epoch seconds
            sleep: Coroutine used to wait for quota
        """
        if max_requests <= 0 or window_seconds <= 0:
            raise ValueError("Quota parameters must be positive")

        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.max_wait = max_wait
        self._clock = clock
        self._sleep = sleep
        self._records: Deque[QuotaWindowRecord] = deque()

    def _prune(self, now: float) -> None:
        window_start = now - self.window_seconds
        while self._records and self._records[0].timestamp <= window_start:
            self._records.popleft()

    def current_usage(self) -> int:
        """Requests counted in the trailing window."""
        self._prune(self._clock())
        return sum(record.count for record in self._records)

    def can_proceed(self) -> bool:
        """
        Check whether another request fits in the current window.

        Returns:
            True if usage is below the configured limit
        """
        return self.current_usage() < self.max_requests

    def record_usage(self, count: int = 1) -> None:
        """Record ``count`` requests at the current time."""
        if count <= 0:
            return
        self._records.append(QuotaWindowRecord(self._clock(), count))

    def time_until_reset(self) -> float:
        """
        Seconds until the oldest record leaves the window.

        Returns:
            0 when no usage is recorded
        """
        now = self._clock()
        self._prune(now)
        if not self._records:
            return 0.0
        return max(0.0, self._records[0].timestamp + self.window_seconds - now)

    async def await_quota(self) -> float:
        """
        Wait until quota is likely available, capped at ``max_wait``.

        Control returns to the caller after one wait; the caller re-checks
        before its next attempt.

        Returns:
            Seconds waited
        """
        if self.can_proceed():
            return 0.0

        wait_time = min(self.time_until_reset(), self.max_wait)
        if wait_time > 0:
            logger.warning(
                f"Quota exhausted ({self.current_usage()}/{self.max_requests}), waiting {wait_time:.1f}s"
            )
            await self._sleep(wait_time)
        return wait_time

    def quota_info(self) -> QuotaInfo:
        """Locally tracked remaining quota."""
        usage = self.current_usage()
        reset_in = self.time_until_reset() or self.window_seconds
        return QuotaInfo(
            remaining=max(0, self.max_requests - usage),
            total=self.max_requests,
            reset_time=datetime.fromtimestamp(self._clock() + reset_in),
        )

    def clear(self) -> None:
        """Forget all recorded usage."""
        self._records.clear()
        logger.info("Quota history cleared")

    def update_limits(self, max_requests: int, window_seconds: float) -> None:
        """
        Update quota parameters.

        Args:
            max_requests: New maximum requests limit
            window_seconds: New time window in seconds
        """
        if max_requests <= 0 or window_seconds <= 0:
            raise ValueError("Quota parameters must be positive")

        old_max = self.max_requests
        old_window = self.window_seconds

        self.max_requests = max_requests
        self.window_seconds = window_seconds

        logger.info(f"Quota updated: {old_max}/{old_window}s -> {max_requests}/{window_seconds}s")

    def get_stats(self) -> Dict[str, Any]:
        current_count = self.current_usage()
        return {
            "current_requests": current_count,
            "max_requests": self.max_requests,
            "window_seconds": self.window_seconds,
            "time_until_reset": self.time_until_reset(),
            "requests_remaining": max(0, self.max_requests - current_count),
            "percentage_used": min(100.0, (current_count / self.max_requests) * 100),
        }
