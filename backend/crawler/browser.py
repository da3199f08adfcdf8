"""
Browser resource management.

One BrowserManager owns the shared Chromium process for a run (the
allocator). Every unit of browser work opens its own BrowserSession (a
browser context plus one page) through BrowserManager.session(), an async
context manager that tears the session down on every exit path.

Teardown steps are pushed onto an AsyncExitStack as each resource is
acquired, so they unwind in reverse order whether the block finished,
raised, hit its deadline or was cancelled.
"""

import asyncio
import logging
from contextlib import AsyncExitStack, asynccontextmanager
from typing import AsyncIterator, Awaitable, Optional, TypeVar

from playwright.async_api import async_playwright, Browser, Page, Playwright
from playwright.async_api import Error as PlaywrightError

from .base import BrowserUnavailableError, CrawlError, SessionDeadlineError
from .config import BrowserOptions

logger = logging.getLogger(__name__)

T = TypeVar('T')

# Cleanup timeout per close operation, in seconds
CLEANUP_TIMEOUT = 2.0

# Hides the most common automation indicators
STEALTH_INIT_SCRIPT = """
    Object.defineProperty(navigator, 'webdriver', {
        get: () => undefined
    });

    Object.defineProperty(navigator, 'plugins', {
        get: () => [1, 2, 3, 4, 5]
    });

    Object.defineProperty(navigator, 'languages', {
        get: () => ['en-US', 'en']
    });
"""

EXTRA_HTTP_HEADERS = {
    'Accept': 'text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,image/apng,*/*;q=0.8',
    'Accept-Language': 'en-US,en;q=0.9',
    'DNT': '1',
    'Upgrade-Insecure-Requests': '1',
}


async def _close_quietly(close, what: str):
    """Run a close coroutine with a timeout, logging instead of raising."""
    try:
        await asyncio.wait_for(close(), timeout=CLEANUP_TIMEOUT)
    except asyncio.TimeoutError:
        logger.warning(f"{what} close timed out, forcing cleanup")
    except Exception as e:
        logger.debug(f"Error closing {what}: {e}")


async def with_deadline(awaitable: Awaitable[T], timeout: Optional[float]) -> T:
    """
    Bound an operation with a hard deadline.

    On expiry the in-flight operation is cancelled and SessionDeadlineError
    is raised. A timeout of None or 0 means no deadline.
    """
    if not timeout:
        return await awaitable
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError as e:
        raise SessionDeadlineError(timeout) from e


class BrowserSession:
    """
    One browser tab bound to the shared browser process.

    Owned by exactly one worker at a time. Actions on a session run in
    order: navigate happens-before extract happens-before next navigate.
    """

    def __init__(self, page: Page, session_id: int, navigation_timeout: float = 30.0):
        self.page = page
        self.session_id = session_id
        self.navigation_timeout = navigation_timeout
        self._closed = False

    @property
    def url(self) -> str:
        return self.page.url

    @property
    def closed(self) -> bool:
        return self._closed

    async def goto(self, url: str):
        """
        Navigate to url and wait for DOMContentLoaded.

        Raises:
            CrawlError: On HTTP error status
            playwright Error: On navigation failure or timeout
        """
        response = await self.page.goto(
            url,
            wait_until='domcontentloaded',
            timeout=int(self.navigation_timeout * 1000),
        )
        if response and response.status >= 400:
            raise CrawlError(f"HTTP {response.status} for {url}")

    async def wait_visible(self, selector: str, timeout: float):
        """Wait until selector is visible; raises on timeout."""
        await self.page.wait_for_selector(selector, state='visible', timeout=int(timeout * 1000))

    async def scroll_to_bottom(self, step: int, step_delay: float, settle_wait: float):
        """
        Scroll down in fixed steps so lazy-loaded content renders.

        Stays at the bottom when done, then waits settle_wait seconds for
        the last items to render.
        """
        height = await self.page.evaluate("document.body.scrollHeight")
        for y in range(0, int(height or 0) + 1, step):
            await self.page.evaluate("y => window.scrollTo(0, y)", y)
            await asyncio.sleep(step_delay)
        await asyncio.sleep(settle_wait)

    async def content(self) -> str:
        return await self.page.content()

    async def click_if_present(self, selector: str) -> bool:
        """Best-effort click. Returns True if something was clicked."""
        try:
            element = await self.page.query_selector(selector)
            if element is None:
                return False
            await element.click(timeout=2000)
            return True
        except PlaywrightError as e:
            logger.debug(f"Optional click on {selector} failed: {e}")
            return False

    async def close(self):
        """Close the tab. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        await _close_quietly(self.page.close, "page")


class BrowserManager:
    """
    Owns the shared browser process and hands out sessions.

    Usage:
        async with BrowserManager(options) as browser:
            async with browser.session(user_agent=ua) as session:
                await session.goto(url)
    """

    def __init__(self, options: BrowserOptions, navigation_timeout: float = 30.0):
        """
        Args:
            options: Chromium launch flags and context defaults
            navigation_timeout: Timeout for page.goto, in seconds
        """
        self.options = options
        self.navigation_timeout = navigation_timeout
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._session_counter = 0
        self.open_sessions = 0
        self.peak_sessions = 0

    @property
    def started(self) -> bool:
        return self._browser is not None

    async def start(self):
        """
        Launch the shared browser process.

        Raises:
            BrowserUnavailableError: If Chromium cannot be launched
        """
        if self._browser is not None:
            return
        try:
            self._playwright = await async_playwright().start()
            logger.debug("Launching Chromium browser...")
            self._browser = await self._playwright.chromium.launch(
                headless=self.options.headless,
                args=self.options.launch_args(),
                handle_sigint=False,
                handle_sigterm=False,
                handle_sighup=False,
            )
            if not self._browser.is_connected():
                raise CrawlError("Browser launched but not connected")
        except Exception as e:
            logger.error(f"Failed to initialize browser: {e}")
            await self.close()
            raise BrowserUnavailableError(f"Chromium browser not available: {e}") from e
        logger.info(f"browser: started (headless={self.options.headless})")

    async def close(self):
        """Close the browser and stop Playwright."""
        if self._browser is not None:
            await _close_quietly(self._browser.close, "browser")
            self._browser = None
        if self._playwright is not None:
            await _close_quietly(self._playwright.stop, "playwright")
            self._playwright = None

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    def _release_slot(self):
        self.open_sessions -= 1

    @asynccontextmanager
    async def session(self, user_agent: Optional[str] = None) -> AsyncIterator[BrowserSession]:
        """
        Open a tab scoped to the shared browser.

        Args:
            user_agent: Identity for this tab (defaults to the browser option)

        Yields:
            BrowserSession, closed when the block exits
        """
        if self._browser is None:
            raise BrowserUnavailableError("browser is not started")

        async with AsyncExitStack() as stack:
            context = await self._browser.new_context(
                viewport={'width': self.options.viewport_width, 'height': self.options.viewport_height},
                user_agent=user_agent or self.options.user_agent,
                locale=self.options.locale,
                ignore_https_errors=True,
                extra_http_headers=EXTRA_HTTP_HEADERS,
            )
            stack.push_async_callback(_close_quietly, context.close, "context")
            await context.add_init_script(STEALTH_INIT_SCRIPT)

            page = await context.new_page()
            self._session_counter += 1
            session = BrowserSession(page, self._session_counter, self.navigation_timeout)
            stack.push_async_callback(session.close)

            self.open_sessions += 1
            self.peak_sessions = max(self.peak_sessions, self.open_sessions)
            stack.callback(self._release_slot)

            yield session
