"""
Retry executor with exponential backoff.

One policy-parameterized executor is used at every retried call site
(browser interaction sequences and the final bulk save). Each call site
gets its own RetryPolicy, so a failure at one never consumes the other's
budget.

The backoff delay for attempt i is min(initial_backoff * 2**i, max_backoff).
No jitter is added.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from .base import CrawlCancelledError, RetryExhaustedError

logger = logging.getLogger(__name__)

T = TypeVar('T')


@dataclass(frozen=True)
class RetryPolicy:
    """Retry budget and backoff bounds (seconds)."""
    max_retries: int = 3          # Extra attempts beyond the first
    initial_backoff: float = 2.0
    max_backoff: float = 10.0

    def __post_init__(self):
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.initial_backoff < 0 or self.max_backoff < 0:
            raise ValueError("backoff durations must be >= 0")

    @property
    def total_attempts(self) -> int:
        return self.max_retries + 1


@dataclass
class RetryState:
    """Counters for a single execute() call."""
    attempt: int = 0
    attempts: int = 0             # Attempts started so far
    last_error: Optional[BaseException] = None
    total_backoff: float = 0.0


def backoff_delay(policy: RetryPolicy, attempt: int) -> float:
    """Delay to sleep after the failed attempt with the given index."""
    return min(policy.initial_backoff * (2 ** attempt), policy.max_backoff)


async def sleep_or_abort(delay: float, abort: Optional[asyncio.Event] = None):
    """
    Sleep for delay seconds unless the abort event fires first.

    Raises:
        CrawlCancelledError: If abort is set before or during the sleep
    """
    if abort is None:
        if delay > 0:
            await asyncio.sleep(delay)
        return

    if abort.is_set():
        raise CrawlCancelledError("run aborted")
    if delay <= 0:
        return
    try:
        await asyncio.wait_for(abort.wait(), timeout=delay)
    except asyncio.TimeoutError:
        return
    raise CrawlCancelledError("run aborted during wait")


class RetryExecutor:
    """
    Runs a fallible coroutine with exponential backoff.

    Usage:
        executor = RetryExecutor(RetryPolicy(3, 2.0, 10.0), abort=event)
        html = await executor.execute(lambda: session.content(), label=url)
    """

    def __init__(
        self,
        policy: RetryPolicy,
        abort: Optional[asyncio.Event] = None,
        name: str = "retry",
    ):
        """
        Args:
            policy: Retry budget and backoff bounds
            abort: Run-level abort signal; interrupts backoff sleeps
            name: Prefix for log lines (e.g. 'scrape', 'save')
        """
        self.policy = policy
        self.abort = abort
        self.name = name

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        label: str = "",
        state: Optional[RetryState] = None,
    ) -> T:
        """
        Attempt operation until it succeeds or the budget is exhausted.

        Args:
            operation: Zero-argument callable returning a fresh awaitable
            label: Context for log lines (usually a URL)
            state: Counters to update in place, readable by the caller even
                if the call is cancelled part way

        Returns:
            The operation's result

        Raises:
            CrawlCancelledError: The abort signal fired (never retried)
            RetryExhaustedError: Every attempt failed
        """
        state = state if state is not None else RetryState()
        total = self.policy.total_attempts
        suffix = f" {label}" if label else ""

        for attempt in range(total):
            state.attempt = attempt
            if self.abort is not None and self.abort.is_set():
                raise CrawlCancelledError("run aborted")
            if attempt > 0:
                logger.info(f"[{self.name}-retry] attempt #{attempt + 1} of {total}{suffix}")

            state.attempts += 1
            try:
                result = await operation()
            except CrawlCancelledError:
                raise
            except Exception as e:
                state.last_error = e
            else:
                if attempt > 0:
                    logger.info(f"[{self.name}-retry] attempt #{attempt + 1} succeeded{suffix}")
                return result

            if attempt < self.policy.max_retries:
                delay = backoff_delay(self.policy, attempt)
                logger.warning(
                    f"[{self.name}-retry] attempt #{attempt + 1} failed{suffix}: "
                    f"{state.last_error}; waiting {delay:.1f}s before retry"
                )
                await sleep_or_abort(delay, self.abort)
                state.total_backoff += delay

        logger.error(f"[{self.name}-retry] all {total} attempts failed{suffix}")
        raise RetryExhaustedError(total, state.last_error, state) from state.last_error
