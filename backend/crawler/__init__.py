"""
Concurrent browser crawler for listing platforms.

A run discovers seed links on a landing page, fans out over paginated
result pages to collect listing links, extracts each listing with a
bounded worker pool and upserts the batch through a result sink:
- BrowserManager: one shared Chromium process, scoped sessions
- CrawlPipeline: the three crawl stages
- CrawlService: crawl, save with retry, report
"""

from .base import (
    CrawlError,
    FatalCrawlError,
    BrowserUnavailableError,
    CrawlCancelledError,
    SessionDeadlineError,
    SaveError,
    RetryExhaustedError,
    AttemptState,
    ListingRecord,
    CrawlStats,
)
from .browser import BrowserManager, BrowserSession
from .config import CrawlConfig, SiteProfile, default_config, dev_config, get_site_profile, list_sites
from .insights import Insights, compute_insights, format_report
from .pipeline import CrawlPipeline
from .rate_limiter import RateLimiter
from .reader import PageReader, PaginationRule
from .retry import RetryExecutor, RetryPolicy
from .service import CrawlService, run
from .stealth import StealthPolicy
from .storage import ResultSink, SQLAlchemySink, CsvSink, MultiSink

__all__ = [
    'CrawlError',
    'FatalCrawlError',
    'BrowserUnavailableError',
    'CrawlCancelledError',
    'SessionDeadlineError',
    'SaveError',
    'RetryExhaustedError',
    'AttemptState',
    'ListingRecord',
    'CrawlStats',
    'BrowserManager',
    'BrowserSession',
    'CrawlConfig',
    'SiteProfile',
    'default_config',
    'dev_config',
    'get_site_profile',
    'list_sites',
    'Insights',
    'compute_insights',
    'format_report',
    'CrawlPipeline',
    'RateLimiter',
    'PageReader',
    'PaginationRule',
    'RetryExecutor',
    'RetryPolicy',
    'CrawlService',
    'run',
    'StealthPolicy',
    'ResultSink',
    'SQLAlchemySink',
    'CsvSink',
    'MultiSink',
]
