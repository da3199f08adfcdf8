"""
Crawl run configuration and site profiles.

A run is configured by a CrawlConfig, which groups:
- Browser launch flags
- Timing durations (page-load waits, scroll pacing, per-item deadline)
- Concurrency bounds (seed fan-out width, detail worker count)
- Extraction caps (links per page, pages per seed)
- Retry policies for the scrape path and the save path
- Stealth parameters (random delays, identity pool, rate cap)

A SiteProfile holds the DOM selectors for one platform. Selector
fallback chains are plain tuples, tried in order.
"""

from dataclasses import dataclass, field, replace
from typing import List, Optional, Tuple

from .reader import PaginationRule
from .retry import RetryPolicy


DEFAULT_USER_AGENT = (
    'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 '
    '(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36'
)


def default_user_agents() -> List[str]:
    """Pool of realistic desktop browser user agents."""
    return [
        'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36',
        'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/119.0.0.0 Safari/537.36',
        'Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36',
        'Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.1 Safari/605.1.15',
        'Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:121.0) Gecko/20100101 Firefox/121.0',
        'Mozilla/5.0 (Macintosh; Intel Mac OS X 10.15; rv:121.0) Gecko/20100101 Firefox/121.0',
        'Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36',
        'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36 Edg/120.0.0.0',
    ]


@dataclass
class BrowserOptions:
    """Headless Chromium launch flags."""
    headless: bool = True
    disable_gpu: bool = True
    no_sandbox: bool = True
    disable_shm: bool = True
    user_agent: str = DEFAULT_USER_AGENT
    viewport_width: int = 1920
    viewport_height: int = 1080
    locale: str = 'en-US'

    def launch_args(self) -> List[str]:
        args = ['--disable-blink-features=AutomationControlled']
        if self.no_sandbox:
            args += ['--no-sandbox', '--disable-setuid-sandbox']
        if self.disable_gpu:
            args.append('--disable-gpu')
        if self.disable_shm:
            args.append('--disable-dev-shm-usage')
        return args


@dataclass
class TimingConfig:
    """All wait/sleep durations, in seconds."""
    page_load_wait: float = 5.0       # After navigating a search page
    scroll_step_delay: float = 0.4    # Between scroll steps
    scroll_bottom_wait: float = 4.0   # At the bottom, for lazy content
    after_scroll_wait: float = 4.0    # Before extracting links
    navigation_timeout: float = 30.0  # page.goto timeout
    marker_timeout: float = 15.0      # Content-marker visibility wait
    item_timeout: float = 70.0        # Hard deadline for one detail page
    run_timeout: Optional[float] = None  # Overall run deadline (None = unbounded)


@dataclass
class ConcurrencyConfig:
    """Upper bounds on simultaneously open sessions per stage."""
    location_workers: int = 3  # Stage B fan-out width
    product_workers: int = 3   # Stage C worker pool size

    def __post_init__(self):
        if self.location_workers < 1 or self.product_workers < 1:
            raise ValueError("worker counts must be at least 1")


@dataclass
class ExtractionConfig:
    """Extraction caps."""
    links_per_page: int = 5
    pages_per_seed: int = 2
    scroll_step: int = 400          # Pixels per scroll step
    max_seeds: Optional[int] = None  # None = every discovered seed

    def __post_init__(self):
        if self.links_per_page < 1:
            raise ValueError("links_per_page must be at least 1")
        if not 1 <= self.pages_per_seed <= 2:
            raise ValueError("pages_per_seed must be 1 or 2")
        if self.scroll_step < 1:
            raise ValueError("scroll_step must be positive")


@dataclass
class StealthConfig:
    """Timing/identity randomization and the global request rate cap."""
    random_delay_enabled: bool = True
    random_delay_min: float = 4.0
    random_delay_max: float = 6.0
    random_user_agent_enabled: bool = True
    max_requests_per_second: float = 4.0  # 0 = unlimited
    user_agents: List[str] = field(default_factory=default_user_agents)


@dataclass
class CrawlConfig:
    """Root configuration passed into the pipeline and service."""
    browser: BrowserOptions = field(default_factory=BrowserOptions)
    timing: TimingConfig = field(default_factory=TimingConfig)
    concurrency: ConcurrencyConfig = field(default_factory=ConcurrencyConfig)
    extraction: ExtractionConfig = field(default_factory=ExtractionConfig)
    scrape_retry: RetryPolicy = field(default_factory=lambda: RetryPolicy(3, 2.0, 10.0))
    save_retry: RetryPolicy = field(default_factory=lambda: RetryPolicy(3, 2.0, 10.0))
    stealth: StealthConfig = field(default_factory=StealthConfig)


def default_config() -> CrawlConfig:
    """Conservative production configuration."""
    return CrawlConfig()


def dev_config() -> CrawlConfig:
    """Faster configuration for local development."""
    cfg = CrawlConfig()
    cfg.timing.scroll_bottom_wait = 2.0
    cfg.timing.page_load_wait = 4.0
    cfg.concurrency = ConcurrencyConfig(location_workers=1, product_workers=2)
    cfg.stealth.random_delay_min = 2.0
    cfg.stealth.random_delay_max = 4.0
    cfg.stealth.max_requests_per_second = 10.0
    return cfg


PROFILES = {
    'default': default_config,
    'dev': dev_config,
}


def config_from_settings(settings) -> CrawlConfig:
    """
    Build a CrawlConfig from application settings.

    The named preset is loaded first; settings left unset (None) keep the
    preset value.

    Args:
        settings: api.config.Settings instance

    Raises:
        ValueError: If the profile name is unknown
    """
    if settings.crawl_profile not in PROFILES:
        valid = ', '.join(sorted(PROFILES))
        raise ValueError(f"Unknown crawl profile: '{settings.crawl_profile}'. Valid profiles: {valid}")
    cfg = PROFILES[settings.crawl_profile]()

    cfg.browser.headless = settings.headless
    if settings.seed_workers is not None:
        cfg.concurrency = replace(cfg.concurrency, location_workers=settings.seed_workers)
    if settings.product_workers is not None:
        cfg.concurrency = replace(cfg.concurrency, product_workers=settings.product_workers)
    if settings.max_requests_per_second is not None:
        cfg.stealth.max_requests_per_second = settings.max_requests_per_second
    if settings.scrape_max_retries is not None:
        cfg.scrape_retry = replace(cfg.scrape_retry, max_retries=settings.scrape_max_retries)
    if settings.save_max_retries is not None:
        cfg.save_retry = replace(cfg.save_retry, max_retries=settings.save_max_retries)
    if settings.run_timeout is not None:
        cfg.timing.run_timeout = settings.run_timeout
    return cfg


# ============================================================
# SITE PROFILES
# ============================================================

@dataclass(frozen=True)
class SiteProfile:
    """DOM selectors and landing page for one platform."""
    platform: str
    landing_url: str
    seed_marker: str
    seed_link_selectors: Tuple[str, ...]
    card_link_selectors: Tuple[str, ...]
    pagination_rules: Tuple[PaginationRule, ...]
    title_marker: str
    location_marker: str
    title_selectors: Tuple[str, ...]
    price_selectors: Tuple[str, ...]
    rating_selectors: Tuple[str, ...]
    location_selectors: Tuple[str, ...]
    description_selectors: Tuple[str, ...]
    show_more_selector: Optional[str] = None


SITES = {
    'airbnb': SiteProfile(
        platform='Airbnb',
        landing_url='https://www.airbnb.com/',
        seed_marker='h2',
        seed_link_selectors=('h2.skp76t2 > a',),
        card_link_selectors=('.cy5jw6o > a',),
        pagination_rules=(
            # Aria labels survive class name churn
            PaginationRule('a[aria-label="Next"]'),
            PaginationRule('a[aria-label="Next page"]'),
            PaginationRule('.p1uqa2vx > a[aria-label="Next page"]'),
            PaginationRule('.p1j2gy66 > a[aria-label="Next"]'),
            # Cursor-based pagination links
            PaginationRule('a[href]', href_contains=('cursor=', 'pagination_search=true')),
        ),
        title_marker='div[data-plugin-in-point-id="TITLE_DEFAULT"]',
        location_marker='div[data-section-id="LOCATION_DEFAULT"]',
        title_selectors=('h1',),
        price_selectors=('.u1opajno', '.u174bpcy'),
        rating_selectors=(
            '[data-testid="pdp-reviews-highlight-banner-host-rating"] div[aria-hidden="true"]',
            '.rmtgcc3',
        ),
        location_selectors=('._1t2xqmi > h3', '.s1qk96pm'),
        description_selectors=(
            'div[data-section-id="DESCRIPTION_DEFAULT"] span',
            'div[data-section-id="DESCRIPTION_DEFAULT"]',
        ),
        show_more_selector='button[aria-label="Show more about this place"]',
    ),
}


def get_site_profile(site_key: str) -> SiteProfile:
    """
    Get the profile for a site by its key.

    Raises:
        ValueError: If site_key is not found
    """
    if site_key not in SITES:
        valid_keys = ', '.join(sorted(SITES.keys()))
        raise ValueError(f"Unknown site: '{site_key}'. Valid sites: {valid_keys}")
    return SITES[site_key]


def list_sites() -> list:
    """List all site keys."""
    return list(SITES.keys())
