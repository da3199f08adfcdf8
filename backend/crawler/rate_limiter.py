"""
Global request rate limiter.

Every stage that navigates a page calls admit() first. One instance is
shared by all workers of a run, so it is the single source of truth for
outbound request pacing regardless of how many workers are active.
"""

import asyncio
from typing import Optional

from .retry import sleep_or_abort


class RateLimiter:
    """
    Fixed-rate admission gate.

    Slots are spaced 1/max_requests_per_second apart. The slot clock is
    read and advanced under a single lock, so concurrent callers queue up
    and are admitted one slot each. A rate of 0 disables limiting.
    """

    def __init__(self, max_requests_per_second: float, abort: Optional[asyncio.Event] = None):
        """
        Args:
            max_requests_per_second: Admission rate; 0 or less means unlimited
            abort: Run-level abort signal; interrupts waiting callers
        """
        self.interval = 1.0 / max_requests_per_second if max_requests_per_second > 0 else 0.0
        self.abort = abort
        self._lock = asyncio.Lock()
        self._next_slot: Optional[float] = None
        self.admitted = 0

    @property
    def enabled(self) -> bool:
        return self.interval > 0

    async def admit(self):
        """
        Wait until the next slot is available, then claim it.

        Raises:
            CrawlCancelledError: If the abort signal fires while waiting
        """
        if not self.enabled:
            self.admitted += 1
            return

        async with self._lock:
            loop = asyncio.get_running_loop()
            now = loop.time()
            if self._next_slot is not None and self._next_slot > now:
                await sleep_or_abort(self._next_slot - now, self.abort)
                now = loop.time()
            # After an idle gap the schedule restarts from now
            self._next_slot = max(now, self._next_slot or now) + self.interval
            self.admitted += 1
