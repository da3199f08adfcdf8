"""
Base data structures for the listing crawler.

This module defines the record type handed to the result sink, the
per-run statistics object and the error taxonomy shared by every
pipeline stage.
"""

from typing import List, Dict, Optional, Any
from dataclasses import dataclass, field, asdict
from enum import Enum
from datetime import datetime, timezone


# ANSI color codes for terminal output
class Colors:
    """ANSI color codes for colorized logging."""
    RESET = '\033[0m'
    GREEN = '\033[92m'
    YELLOW = '\033[93m'
    RED = '\033[91m'

    @staticmethod
    def green(text):
        return f"{Colors.GREEN}{text}{Colors.RESET}"

    @staticmethod
    def yellow(text):
        return f"{Colors.YELLOW}{text}{Colors.RESET}"

    @staticmethod
    def red(text):
        return f"{Colors.RED}{text}{Colors.RESET}"


# ============================================================
# ERRORS
# ============================================================

class CrawlError(Exception):
    """Base class for all crawler errors."""


class FatalCrawlError(CrawlError):
    """The run cannot continue (no browser, no seed links)."""


class BrowserUnavailableError(FatalCrawlError):
    """The shared browser process could not be started."""


class CrawlCancelledError(CrawlError):
    """The run was aborted while an operation was waiting or in flight."""


class SessionDeadlineError(CrawlError):
    """A session-bound operation exceeded its hard deadline."""

    def __init__(self, timeout: float):
        self.timeout = timeout
        super().__init__(f"session deadline of {timeout:.1f}s exceeded")


class SaveError(CrawlError):
    """The result sink failed to persist a batch."""


class RetryExhaustedError(CrawlError):
    """
    Raised when every attempt of a retried operation failed.

    Attributes:
        attempts: Total number of attempts made (initial + retries)
        last_error: Exception raised by the final attempt
        state: The RetryState of the call, for diagnostics
    """

    def __init__(self, attempts: int, last_error: BaseException, state: Any = None):
        self.attempts = attempts
        self.last_error = last_error
        self.state = state
        super().__init__(f"failed after {attempts} attempts: {last_error}")


# ============================================================
# DATA
# ============================================================

class AttemptState(Enum):
    """Lifecycle of a single detail-extraction attempt."""
    IDLE = "idle"
    NAVIGATING = "navigating"
    WAITING_FOR_MARKER = "waiting_for_marker"
    EXTRACTING = "extracting"
    DONE = "done"
    FAILED = "failed"
    ABANDONED = "abandoned"


@dataclass(frozen=True)
class ListingRecord:
    """A single listing extracted from a detail page. Keyed by url."""
    platform: str
    title: str
    price: float
    location: str
    url: str
    rating: float = 0.0
    description: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class CrawlStats:
    """Statistics for one pipeline run."""
    platform: str
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None
    seeds: int = 0
    item_links: int = 0
    fetched: int = 0
    failed: int = 0
    error_details: List[Dict] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.failed == 0

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.completed_at and self.started_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    def record_failure(self, url: str, error: BaseException):
        self.failed += 1
        self.error_details.append({'url': url, 'error': str(error)})

    def to_dict(self) -> Dict:
        return {
            'platform': self.platform,
            'started_at': self.started_at.isoformat(),
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
            'duration_seconds': self.duration_seconds,
            'seeds': self.seeds,
            'item_links': self.item_links,
            'fetched': self.fetched,
            'failed': self.failed,
            'error_details': self.error_details[:10],  # Limit error details
            'success': self.success,
        }
