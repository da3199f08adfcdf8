"""
Pytest configuration and fixtures for the crawler tests.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Dict, List, Optional

import pytest
from bs4 import BeautifulSoup
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from api.database import Base, get_db
from api.main import app
from crawler.base import CrawlError, ListingRecord
from crawler.config import (
    ConcurrencyConfig,
    CrawlConfig,
    ExtractionConfig,
    SiteProfile,
    StealthConfig,
    TimingConfig,
)
from crawler.reader import PaginationRule
from crawler.retry import RetryPolicy
from crawler.storage import ResultSink


# Create an in-memory SQLite database for testing
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def override_get_db():
    """Override the get_db dependency for testing."""
    try:
        db = TestingSessionLocal()
        yield db
    finally:
        db.close()


@pytest.fixture(scope="function")
def db_session():
    """Create a fresh database session for each test."""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def client(db_session):
    """Create a test client with database override."""
    app.dependency_overrides[get_db] = override_get_db
    Base.metadata.create_all(bind=engine)

    # Use TestClient directly without context manager so lifespan doesn't touch the real DB
    test_client = TestClient(app)
    yield test_client

    app.dependency_overrides.clear()
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def session_factory(db_session):
    """sessionmaker bound to the in-memory test engine."""
    return TestingSessionLocal


def make_record(url: str, **overrides) -> ListingRecord:
    fields = dict(
        platform="Airbnb",
        title="Cozy loft",
        price=120.0,
        location="Le Marais, Paris, France",
        url=url,
        rating=4.8,
        description="Sunny loft near the river",
    )
    fields.update(overrides)
    return ListingRecord(**fields)


@pytest.fixture
def sample_records() -> List[ListingRecord]:
    return [
        make_record("https://example.test/rooms/1"),
        make_record(
            "https://example.test/rooms/2",
            title="Roman terrace",
            price=240.0,
            location="Trastevere, Rome, Italy",
            rating=4.95,
        ),
        make_record(
            "https://example.test/rooms/3",
            title="Budget room",
            price=45.0,
            location="Montmartre, Paris, France",
            rating=4.1,
        ),
    ]


@pytest.fixture
def sample_listing(db_session, sample_records):
    """Persist the sample records as Listing rows."""
    from api.database import Listing

    rows = [Listing(**record.to_dict()) for record in sample_records]
    db_session.add_all(rows)
    db_session.commit()
    for row in rows:
        db_session.refresh(row)
    return rows


# ============================================================
# FAKE BROWSER
# ============================================================

BASE_URL = "https://example.test"


class FakeSession:
    """
    In-memory stand-in for BrowserSession.

    Serves HTML from the owning FakeBrowser's page map so the real
    BeautifulSoup reader runs against it.
    """

    def __init__(self, browser: "FakeBrowser", session_id: int, user_agent: Optional[str]):
        self.browser = browser
        self.session_id = session_id
        self.user_agent = user_agent
        self.url = "about:blank"
        self.closed = False
        self.clicks: List[str] = []

    def _html(self) -> str:
        return self.browser.pages.get(self.url, "")

    async def goto(self, url: str):
        self.browser.navigations.append(url)
        if self.browser.latency:
            await asyncio.sleep(self.browser.latency)
        if url in self.browser.hanging:
            await asyncio.sleep(3600)
        remaining = self.browser.failures.get(url, 0)
        if remaining:
            self.browser.failures[url] = remaining - 1
            raise CrawlError(f"navigation failed for {url}")
        if url not in self.browser.pages:
            raise CrawlError(f"HTTP 404 for {url}")
        self.url = url

    async def wait_visible(self, selector: str, timeout: float):
        soup = BeautifulSoup(self._html(), "html.parser")
        if soup.select_one(selector) is None:
            raise CrawlError(f"timeout waiting for {selector}")

    async def scroll_to_bottom(self, step: int, step_delay: float, settle_wait: float):
        await asyncio.sleep(0)

    async def content(self) -> str:
        return self._html()

    async def click_if_present(self, selector: str) -> bool:
        soup = BeautifulSoup(self._html(), "html.parser")
        if soup.select_one(selector) is None:
            return False
        self.clicks.append(selector)
        return True

    async def close(self):
        self.closed = True


class FakeBrowser:
    """
    Stand-in for BrowserManager that tracks open sessions.

    Args:
        pages: URL -> HTML served by sessions
        latency: Seconds each navigation takes
        failures: URL -> number of navigations that fail before succeeding
        hanging: URLs whose navigation never completes
        session_failures: Number of session creations that fail first
    """

    def __init__(
        self,
        pages: Dict[str, str],
        latency: float = 0.0,
        failures: Optional[Dict[str, int]] = None,
        hanging: Optional[set] = None,
        session_failures: int = 0,
    ):
        self.pages = pages
        self.latency = latency
        self.failures = dict(failures or {})
        self.hanging = set(hanging or ())
        self.session_failures = session_failures
        self.navigations: List[str] = []
        self.sessions: List[FakeSession] = []
        self.user_agents: List[Optional[str]] = []
        self.open_sessions = 0
        self.peak_sessions = 0

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return None

    def reset_peak(self):
        self.peak_sessions = self.open_sessions

    @asynccontextmanager
    async def session(self, user_agent: Optional[str] = None):
        if self.session_failures:
            self.session_failures -= 1
            raise CrawlError("could not open tab")
        session = FakeSession(self, len(self.sessions) + 1, user_agent)
        self.sessions.append(session)
        self.user_agents.append(user_agent)
        self.open_sessions += 1
        self.peak_sessions = max(self.peak_sessions, self.open_sessions)
        try:
            yield session
        finally:
            self.open_sessions -= 1
            await session.close()


class MemorySink(ResultSink):
    """Sink that keeps every saved batch; optionally fails first."""

    def __init__(self, failures: int = 0):
        self.failures = failures
        self.calls = 0
        self.rows: Dict[str, ListingRecord] = {}

    async def save(self, records):
        self.calls += 1
        if self.failures:
            self.failures -= 1
            raise CrawlError("database unavailable")
        for record in records:
            self.rows[record.url] = record


# ============================================================
# SITE PAGES
# ============================================================

TEST_SITE = SiteProfile(
    platform="Airbnb",
    landing_url=f"{BASE_URL}/",
    seed_marker="h2",
    seed_link_selectors=("h2.city > a",),
    card_link_selectors=(".card > a",),
    pagination_rules=(
        PaginationRule('a[aria-label="Next"]'),
        PaginationRule("a[href]", href_contains=("cursor=",)),
    ),
    title_marker="div.title-section",
    location_marker="div.location-section",
    title_selectors=("h1",),
    price_selectors=(".price", ".price-alt"),
    rating_selectors=(".rating",),
    location_selectors=(".location-section h3",),
    description_selectors=(".description",),
    show_more_selector="button.show-more",
)


def landing_page(seed_paths: List[str]) -> str:
    links = "".join(f'<h2 class="city"><a href="{path}">{path}</a></h2>' for path in seed_paths)
    return f"<html><body>{links}</body></html>"


def results_page(card_paths: List[str], next_href: Optional[str] = None) -> str:
    cards = "".join(f'<div class="card"><a href="{path}">listing</a></div>' for path in card_paths)
    pager = f'<a aria-label="Next" href="{next_href}">Next</a>' if next_href else ""
    return f"<html><body>{cards}{pager}</body></html>"


def detail_page(
    title: str = "Cozy loft",
    price: Optional[str] = "$120",
    rating: Optional[str] = "4.85",
    location: Optional[str] = "Le Marais, Paris, France",
    description: Optional[str] = "Sunny loft near the river",
) -> str:
    parts = [f'<div class="title-section"><h1>{title}</h1></div>']
    if price is not None:
        parts.append(f'<span class="price">{price}</span>')
    if rating is not None:
        parts.append(f'<span class="rating">{rating}</span>')
    loc = f"<h3>{location}</h3>" if location is not None else ""
    parts.append(f'<div class="location-section">{loc}</div>')
    if description is not None:
        parts.append(f'<div class="description">{description}</div>')
    parts.append('<button class="show-more">Show more</button>')
    return "<html><body>" + "".join(parts) + "</body></html>"


def build_site(seeds: Dict[str, int], paginate: bool = False) -> Dict[str, str]:
    """
    Landing page, one results page per seed (two when paginate) and detail
    pages for every card.

    Args:
        seeds: Seed path -> number of cards per results page
        paginate: Add a second results page linked with aria-label="Next"
    """
    pages = {f"{BASE_URL}/": landing_page(list(seeds))}
    for seed, count in seeds.items():
        slug = seed.strip("/").replace("/", "-")
        first = [f"/rooms/{slug}-{i}" for i in range(count)]
        next_href = f"{seed}?cursor=2" if paginate else None
        pages[f"{BASE_URL}{seed}"] = results_page(first, next_href)
        detail_paths = list(first)
        if paginate:
            second = [f"/rooms/{slug}-p2-{i}" for i in range(count)]
            pages[f"{BASE_URL}{seed}?cursor=2"] = results_page(second, f"{seed}?cursor=3")
            detail_paths += second
        for path in detail_paths:
            pages[f"{BASE_URL}{path}"] = detail_page(title=f"Listing {path.rsplit('/', 1)[-1]}")
    return pages


def fast_config(
    seed_workers: int = 2,
    product_workers: int = 2,
    links_per_page: int = 5,
    pages_per_seed: int = 2,
    max_retries: int = 1,
    item_timeout: float = 5.0,
    run_timeout: Optional[float] = None,
) -> CrawlConfig:
    """Config with every wait zeroed and stealth off."""
    return CrawlConfig(
        timing=TimingConfig(
            page_load_wait=0.0,
            scroll_step_delay=0.0,
            scroll_bottom_wait=0.0,
            after_scroll_wait=0.0,
            navigation_timeout=5.0,
            marker_timeout=1.0,
            item_timeout=item_timeout,
            run_timeout=run_timeout,
        ),
        concurrency=ConcurrencyConfig(location_workers=seed_workers, product_workers=product_workers),
        extraction=ExtractionConfig(links_per_page=links_per_page, pages_per_seed=pages_per_seed),
        scrape_retry=RetryPolicy(max_retries, 0.0, 0.0),
        save_retry=RetryPolicy(max_retries, 0.0, 0.0),
        stealth=StealthConfig(
            random_delay_enabled=False,
            random_user_agent_enabled=False,
            max_requests_per_second=0.0,
        ),
    )


@pytest.fixture
def site():
    return TEST_SITE
