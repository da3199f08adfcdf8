"""
Stealth policy: randomized pre-navigation delays and user agents.

These are best-effort timing and identity randomization hooks. They do not
look at page content.
"""

import asyncio
import logging
import random
from typing import List, Optional

from .config import StealthConfig
from .retry import sleep_or_abort

logger = logging.getLogger(__name__)


class StealthPolicy:
    """
    Supplies a random delay and a random identity before each navigation.

    The policy owns its random source. Workers share one policy on a single
    event loop, so draws never interleave mid-call.
    """

    def __init__(
        self,
        config: StealthConfig,
        default_user_agent: str,
        abort: Optional[asyncio.Event] = None,
        rng: Optional[random.Random] = None,
    ):
        self.config = config
        self.default_user_agent = default_user_agent
        self.abort = abort
        self._rng = rng or random.Random()
        self._user_agents: List[str] = list(config.user_agents)

    def log_settings(self, log: logging.Logger = logger):
        cfg = self.config
        if cfg.random_delay_enabled:
            log.info(f"stealth: random delays enabled ({cfg.random_delay_min:.1f}s-{cfg.random_delay_max:.1f}s)")
        if cfg.random_user_agent_enabled:
            log.info(f"stealth: random user agent enabled ({len(self._user_agents)} identities)")
        if cfg.max_requests_per_second > 0:
            log.info(f"stealth: rate limit enabled ({cfg.max_requests_per_second:.1f} req/sec)")

    def next_delay(self) -> float:
        """Draw the next delay in seconds (0 when disabled)."""
        cfg = self.config
        if not cfg.random_delay_enabled or cfg.random_delay_min >= cfg.random_delay_max:
            return 0.0
        return cfg.random_delay_min + self._rng.random() * (cfg.random_delay_max - cfg.random_delay_min)

    async def delay(self) -> float:
        """
        Sleep a random duration drawn from [min, max).

        Returns:
            The slept duration in seconds

        Raises:
            CrawlCancelledError: If the abort signal fires during the sleep
        """
        seconds = self.next_delay()
        if seconds > 0:
            await sleep_or_abort(seconds, self.abort)
        return seconds

    def pick_identity(self) -> str:
        """Return a user agent from the pool, or the static default."""
        if not self.config.random_user_agent_enabled or not self._user_agents:
            return self.default_user_agent
        return self._rng.choice(self._user_agents)
