"""
Three-stage crawl pipeline.

Stage A  discover_seeds        landing page -> seed links (one session)
Stage B  discover_item_links   seed links -> listing links (fan-out, width K)
Stage C  extract_listings      listing links -> ListingRecords (W workers)

The rate limiter and stealth policy are consulted before every navigation
in stages B and C. Every browser interaction sequence runs inside the
scrape retry executor. Stage A failures are fatal; seed and item failures
are logged and dropped at their stage boundary.
"""

import asyncio
import logging
from contextlib import AsyncExitStack, asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, List, Optional, Tuple

from .base import (
    AttemptState,
    Colors,
    CrawlCancelledError,
    CrawlStats,
    FatalCrawlError,
    ListingRecord,
    RetryExhaustedError,
)
from .browser import BrowserSession, with_deadline
from .config import CrawlConfig, SiteProfile
from .pool import bounded_gather, run_worker_pool
from .rate_limiter import RateLimiter
from .reader import PageReader
from .retry import RetryExecutor, RetryState
from .stealth import StealthPolicy
from .utils.normalizers import normalize_text, parse_price, parse_rating


class CrawlPipeline:
    """
    Orchestrates one crawl run over a shared browser.

    Usage:
        async with BrowserManager(config.browser) as browser:
            pipeline = CrawlPipeline(browser, get_site_profile('airbnb'), config)
            records, stats = await pipeline.run()
            print(stats.to_dict())
    """

    def __init__(
        self,
        browser,
        site: SiteProfile,
        config: CrawlConfig,
        reader: Optional[PageReader] = None,
        rate_limiter: Optional[RateLimiter] = None,
        stealth: Optional[StealthPolicy] = None,
        abort_event: Optional[asyncio.Event] = None,
    ):
        """
        Args:
            browser: Started BrowserManager (or anything with .session())
            site: Selectors and landing page of the target platform
            config: Run configuration
            reader: Page reader (defaults to the BeautifulSoup reader)
            rate_limiter: Shared admission gate (built from config if omitted)
            stealth: Stealth policy (built from config if omitted)
            abort_event: Run-level abort signal
        """
        self.browser = browser
        self.site = site
        self.config = config
        self.abort_event = abort_event or asyncio.Event()
        self.reader = reader or PageReader()
        self.rate_limiter = rate_limiter or RateLimiter(
            config.stealth.max_requests_per_second, abort=self.abort_event
        )
        self.stealth = stealth or StealthPolicy(
            config.stealth, config.browser.user_agent, abort=self.abort_event
        )
        self.retry = RetryExecutor(config.scrape_retry, abort=self.abort_event, name="scrape")
        self.stats = CrawlStats(platform=site.platform)
        self.logger = logging.getLogger(f"crawler.{site.platform.lower()}")

    def abort(self):
        """Abort the run. Waiting and in-flight operations unwind promptly."""
        self.abort_event.set()

    # ============================================================
    # RUN
    # ============================================================

    async def run(self, landing_url: Optional[str] = None) -> Tuple[List[ListingRecord], CrawlStats]:
        """
        Run all three stages.

        Returns:
            (records, stats): every successfully extracted record, in no
            particular order, and the run counters

        Raises:
            FatalCrawlError: No seed links could be discovered
            CrawlCancelledError: The run was aborted
        """
        url = landing_url or self.site.landing_url
        self.stats = CrawlStats(platform=self.site.platform)
        self.logger.info(f"scrape: start {url}")
        self.stealth.log_settings(self.logger)

        try:
            records = await self._until_aborted(self._run_stages(url))
        finally:
            self.stats.completed_at = datetime.now(timezone.utc)

        duration = self.stats.duration_seconds or 0
        self.logger.info(
            f"scrape: finished in {duration:.1f}s: seeds={self.stats.seeds} "
            f"urls={self.stats.item_links} {Colors.green(f'fetched={self.stats.fetched}')} "
            f"{Colors.red(f'failed={self.stats.failed}')}"
        )
        return records, self.stats

    async def _run_stages(self, url: str) -> List[ListingRecord]:
        seeds = await self.discover_seeds(url)
        max_seeds = self.config.extraction.max_seeds
        if max_seeds is not None:
            seeds = seeds[:max_seeds]
        self.stats.seeds = len(seeds)

        item_links = await self.discover_item_links(seeds)
        self.stats.item_links = len(item_links)

        return await self.extract_listings(item_links)

    async def _until_aborted(self, coro):
        """Run coro, cancelling it if the abort signal fires first."""
        work = asyncio.ensure_future(coro)
        aborted = asyncio.ensure_future(self.abort_event.wait())
        try:
            await asyncio.wait({work, aborted}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            if not work.done():
                work.cancel()
            aborted.cancel()
            await asyncio.gather(work, aborted, return_exceptions=True)

        if work.cancelled():
            raise CrawlCancelledError("run aborted")
        return work.result()

    @asynccontextmanager
    async def open_session(self, user_agent: Optional[str] = None) -> AsyncIterator[BrowserSession]:
        """Open a session, retrying creation with the scrape policy."""
        async with AsyncExitStack() as stack:
            session = await self.retry.execute(
                lambda: stack.enter_async_context(self.browser.session(user_agent=user_agent)),
                label="open session",
            )
            yield session

    # ============================================================
    # STAGE A: SEED DISCOVERY
    # ============================================================

    async def discover_seeds(self, url: str) -> List[str]:
        """
        Collect every seed link on the landing page.

        Raises:
            FatalCrawlError: Navigation failed or no seeds were found
        """
        timing = self.config.timing

        async def load(session: BrowserSession) -> List[str]:
            await session.goto(url)
            await session.wait_visible(self.site.seed_marker, timing.marker_timeout)
            await session.scroll_to_bottom(
                self.config.extraction.scroll_step, timing.scroll_step_delay, timing.scroll_bottom_wait
            )
            await asyncio.sleep(timing.after_scroll_wait)
            return await self.reader.extract_links(session, self.site.seed_link_selectors)

        try:
            async with self.open_session(self.stealth.pick_identity()) as session:
                seeds = await self.retry.execute(lambda: load(session), label=url)
        except RetryExhaustedError as e:
            raise FatalCrawlError(f"seed discovery failed for {url}: {e.last_error}") from e

        if not seeds:
            raise FatalCrawlError(f"no seed links found on {url}")
        self.logger.info(f"scrape: found {len(seeds)} seed links")
        return seeds

    # ============================================================
    # STAGE B: PAGINATED ITEM-LINK DISCOVERY
    # ============================================================

    async def discover_item_links(self, seeds: List[str]) -> List[str]:
        """
        Collect listing links for every seed, at most K seeds at a time.

        Links are not de-duplicated across seeds; the sink upserts by URL.
        """
        width = self.config.concurrency.location_workers
        per_seed = await bounded_gather(seeds, width, self.collect_card_links)
        links = [link for seed_links in per_seed for link in seed_links]
        self.logger.info(f"scrape: collected {len(links)} listing URLs from {len(seeds)} seeds")
        return links

    async def collect_card_links(self, seed_url: str) -> List[str]:
        """
        Collect listing links from up to pages_per_seed result pages.

        One session is reused for every page of the seed. Failures are
        logged and never raised: a failed first page yields [], a failed
        later page keeps the links gathered so far.
        """
        max_pages = self.config.extraction.pages_per_seed
        links: List[str] = []
        try:
            async with self.open_session(self.stealth.pick_identity()) as session:
                url = seed_url
                for page_number in range(1, max_pages + 1):
                    try:
                        page_links = await self.scrape_card_page(session, url)
                    except CrawlCancelledError:
                        raise
                    except Exception as e:
                        self.logger.warning(f"[cards] page {page_number} failed for {url}: {e}")
                        break
                    links.extend(page_links)
                    self.logger.info(f"[cards] {seed_url} page {page_number}: {len(page_links)} links")

                    if page_number == max_pages:
                        break
                    url = await self.find_next_page(session)
                    if not url:
                        break
        except CrawlCancelledError:
            raise
        except Exception as e:
            self.logger.warning(f"[cards] seed failed {seed_url}: {e}")
            return []
        return links

    async def scrape_card_page(self, session: BrowserSession, url: str) -> List[str]:
        """Navigate to a result page, scroll, and read up to N card links."""
        await self.rate_limiter.admit()
        await self.stealth.delay()
        timing = self.config.timing
        extraction = self.config.extraction

        async def load() -> List[str]:
            await session.goto(url)
            await asyncio.sleep(timing.page_load_wait)
            await session.scroll_to_bottom(
                extraction.scroll_step, timing.scroll_step_delay, timing.scroll_bottom_wait
            )
            await asyncio.sleep(timing.after_scroll_wait)
            return await self.reader.extract_links(
                session, self.site.card_link_selectors, limit=extraction.links_per_page
            )

        return await self.retry.execute(load, label=url)

    async def find_next_page(self, session: BrowserSession) -> str:
        """Next-page URL from the session's current page, or "" if none."""
        try:
            return await self.reader.find_pagination_link(session, self.site.pagination_rules)
        except Exception as e:
            self.logger.debug(f"[cards] pagination lookup failed: {e}")
            return ""

    # ============================================================
    # STAGE C: DETAIL EXTRACTION
    # ============================================================

    async def extract_listings(self, urls: List[str]) -> List[ListingRecord]:
        """Extract every listing with a pool of W workers."""
        workers = self.config.concurrency.product_workers
        return await run_worker_pool(urls, workers, self._extract_one)

    async def _extract_one(self, worker_id: int, url: str) -> Optional[ListingRecord]:
        attempts = RetryState()
        try:
            record = await self.fetch_listing(url, attempts)
        except CrawlCancelledError:
            raise
        except Exception as e:
            self.stats.record_failure(url, e)
            self.logger.error(
                f"   {Colors.red('[ERR]')} worker {worker_id}: {AttemptState.ABANDONED.value} {url} "
                f"(attempts={attempts.attempts}): {e}"
            )
            return None

        self.stats.fetched += 1
        self.logger.info(f"[listing] #{self.stats.fetched} fetched: {record.title or record.url}")
        return record

    async def fetch_listing(self, url: str, attempts: Optional[RetryState] = None) -> ListingRecord:
        """
        Extract one listing under the per-item deadline.

        attempts, when given, counts the extraction attempts started, also
        when the deadline cuts the retries short.

        Raises:
            SessionDeadlineError: The deadline expired
            RetryExhaustedError: Every attempt failed
        """
        await self.rate_limiter.admit()
        await self.stealth.delay()
        return await with_deadline(self._fetch_in_session(url, attempts), self.config.timing.item_timeout)

    async def _fetch_in_session(self, url: str, attempts: Optional[RetryState]) -> ListingRecord:
        async with self.open_session(self.stealth.pick_identity()) as session:
            return await self.retry.execute(
                lambda: self.read_listing(session, url), label=url, state=attempts,
            )

    async def read_listing(self, session: BrowserSession, url: str) -> ListingRecord:
        """
        One extraction attempt on a detail page.

        Missing fields are not errors; they come back empty or zero.
        """
        site = self.site
        marker_timeout = self.config.timing.marker_timeout
        state = AttemptState.NAVIGATING
        self.logger.debug(f"[listing] {url}: {AttemptState.IDLE.value} -> {state.value}")
        try:
            await session.goto(url)

            state = AttemptState.WAITING_FOR_MARKER
            await session.wait_visible(site.title_marker, marker_timeout)
            state = AttemptState.EXTRACTING
            title = await self.reader.extract_field(session, site.title_selectors)
            price_text = await self.reader.extract_field(session, site.price_selectors)
            rating_text = await self.reader.extract_field(session, site.rating_selectors)

            state = AttemptState.WAITING_FOR_MARKER
            await session.wait_visible(site.location_marker, marker_timeout)
            state = AttemptState.EXTRACTING
            location = await self.reader.extract_field(session, site.location_selectors)

            if site.show_more_selector:
                await session.click_if_present(site.show_more_selector)
            description = await self.reader.extract_field(session, site.description_selectors)
        except Exception as e:
            self.logger.debug(f"[listing] {url}: {state.value} -> {AttemptState.FAILED.value}: {e}")
            raise

        self.logger.debug(f"[listing] {url}: {AttemptState.DONE.value}")
        return ListingRecord(
            platform=site.platform,
            title=normalize_text(title),
            price=parse_price(price_text),
            location=normalize_text(location),
            url=url,
            rating=parse_rating(rating_text),
            description=normalize_text(description),
        )
