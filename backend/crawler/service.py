"""
Crawl service - runs one crawl end to end.

Launches the browser, runs the pipeline, saves the batch through the
result sink under the save retry policy, then logs an insights report.
"""

import asyncio
import logging
from typing import Callable, List, Optional

from .base import Colors, CrawlCancelledError, CrawlStats, ListingRecord, RetryExhaustedError, SaveError
from .browser import BrowserManager
from .config import CrawlConfig, SiteProfile, get_site_profile
from .insights import Insights, compute_insights, format_report
from .pipeline import CrawlPipeline
from .retry import RetryExecutor
from .storage import ResultSink

logger = logging.getLogger(__name__)


class CrawlService:
    """
    Usage:
        service = CrawlService(dev_config(), get_site_profile('airbnb'), sink)
        records = await service.run()
        print(service.stats.to_dict())
    """

    def __init__(
        self,
        config: CrawlConfig,
        site: SiteProfile,
        sink: Optional[ResultSink] = None,
        browser_factory: Optional[Callable[[], BrowserManager]] = None,
    ):
        """
        Args:
            config: Run configuration
            site: Target platform
            sink: Where to persist the batch (None = don't persist)
            browser_factory: Builds the browser manager for a run
        """
        self.config = config
        self.site = site
        self.sink = sink
        self.browser_factory = browser_factory or (
            lambda: BrowserManager(config.browser, config.timing.navigation_timeout)
        )
        self.abort_event = asyncio.Event()
        self.stats: Optional[CrawlStats] = None
        self.insights: Optional[Insights] = None
        self.deadline_expired = False

    def abort(self):
        self.abort_event.set()

    def _expire(self, run_timeout: float):
        self.deadline_expired = True
        logger.warning(f"{Colors.yellow('[TIMEOUT]')} run deadline of {run_timeout:g}s reached, aborting")
        self.abort()

    async def run(self, url: Optional[str] = None) -> List[ListingRecord]:
        """
        Crawl, save, report.

        Raises:
            FatalCrawlError: Browser unavailable or no seeds found
            CrawlCancelledError: The run was aborted
            SaveError: The save retry budget was exhausted; the batch is discarded
        """
        run_timeout = self.config.timing.run_timeout
        deadline = None
        if run_timeout:
            deadline = asyncio.get_running_loop().call_later(run_timeout, self._expire, run_timeout)
        try:
            async with self.browser_factory() as browser:
                pipeline = CrawlPipeline(browser, self.site, self.config, abort_event=self.abort_event)
                records, self.stats = await pipeline.run(url)
        except CrawlCancelledError as e:
            if self.deadline_expired:
                raise CrawlCancelledError(f"run deadline of {run_timeout:g}s expired") from e
            raise
        finally:
            if deadline is not None:
                deadline.cancel()

        if self.sink is not None and records:
            await self.save(records)

        self.insights = compute_insights(records)
        for line in format_report(self.insights).splitlines():
            logger.info(line)
        return records

    async def save(self, records: List[ListingRecord]):
        executor = RetryExecutor(self.config.save_retry, abort=self.abort_event, name="save")
        try:
            await executor.execute(lambda: self.sink.save(records), label=f"{len(records)} listings")
        except RetryExhaustedError as e:
            logger.error(f"{Colors.red('[ERR]')} save failed after {e.attempts} attempts: {e.last_error}")
            raise SaveError(f"save failed after {e.attempts} attempts: {e.last_error}") from e
        logger.info(f"{Colors.green('[OK]')} saved {len(records)} listings")


async def run(
    seed_url: str,
    config: CrawlConfig,
    sink: Optional[ResultSink] = None,
    site: str = 'airbnb',
) -> List[ListingRecord]:
    """Run one crawl from seed_url with the given configuration."""
    service = CrawlService(config, get_site_profile(site), sink)
    return await service.run(seed_url)
