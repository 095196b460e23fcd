"""Error taxonomy, classification and retry backoff.

Classification is a pure function of a few stable fields (``status_code``,
``error_code``, ``retry_after``, ``message``). The HTTP layer translates
transport exceptions into :class:`FetchError` so nothing here depends on which
exception class the client happened to raise.
"""

import random
from dataclasses import dataclass
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from enum import StrEnum
from typing import Any

from doc_fetcher.models import FailedPage


class ErrorCategory(StrEnum):
    RATE_LIMIT = "RateLimit"
    RETRYABLE = "Retryable"
    PERMANENT = "Permanent"
    UNKNOWN = "Unknown"
    # Page-level failures that happen after a successful download
    EXTRACTION = "Extraction"
    SAVE_ERROR = "SaveError"


# errno-style codes of transient network failures
TRANSIENT_NETWORK_CODES = frozenset(
    {
        "ECONNREFUSED",
        "ECONNRESET",
        "ETIMEDOUT",
        "ENOTFOUND",
        "EHOSTUNREACH",
        "ENETUNREACH",
        "EAI_AGAIN",
    }
)

_PERMANENT_STATUSES = frozenset({401, 403, 404, 410})


class DocFetcherError(Exception):
    """Base class for doc-fetcher errors."""


class FetchError(DocFetcherError):
    """A single failed HTTP attempt."""

    def __init__(
        self,
        message: str,
        *,
        url: str | None = None,
        status_code: int | None = None,
        error_code: str | None = None,
        retry_after: str | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.url = url
        self.status_code = status_code
        self.error_code = error_code
        self.retry_after = retry_after


class PageFetchError(DocFetcherError):
    """Raised when a page could not be fetched within the retry budget."""

    def __init__(self, url: str, error: "CategorizedError", attempts: int):
        super().__init__(f"{url}: {error.message}")
        self.url = url
        self.error = error
        self.attempts = attempts


class RobotsPolicyError(DocFetcherError):
    """robots.txt could not be loaded or parsed in strict mode."""


class RobotsDisallowedError(RobotsPolicyError):
    """Raised in strict robots mode when a URL is disallowed."""


class DiscoveryError(DocFetcherError):
    """Raised when every discovery strategy came back empty."""


class CrawlFailedError(DocFetcherError):
    """Raised when a crawl fetched none of its pages."""


@dataclass(frozen=True)
class CategorizedError:
    category: ErrorCategory
    retryable: bool
    message: str
    suggested_action: str
    status_code: int | None = None
    error_code: str | None = None
    retry_after_ms: float | None = None


def parse_retry_after(value: str | int | None, now: datetime | None = None) -> float | None:
    """Parse a Retry-After header into milliseconds.

    Accepts delay-seconds (``"120"``) or an HTTP-date. Dates in the past clamp
    to 0. Anything else returns None.
    """
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None

    if text.isdigit():
        return int(text) * 1000.0

    try:
        when = parsedate_to_datetime(text)
    except (TypeError, ValueError, IndexError):
        return None
    if when is None:
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=UTC)
    now = now or datetime.now(UTC)
    return max(0.0, (when - now).total_seconds() * 1000)


def classify(failure: Any) -> CategorizedError:
    """Map a failed attempt to a :class:`CategorizedError`.

    *failure* is anything exposing ``status_code``, ``error_code``,
    ``retry_after`` and ``message`` (missing attributes read as None).
    """
    status = getattr(failure, "status_code", None)
    code = getattr(failure, "error_code", None)
    message = getattr(failure, "message", None) or str(failure)

    if status == 429:
        return CategorizedError(
            category=ErrorCategory.RATE_LIMIT,
            retryable=True,
            status_code=status,
            message="Rate limit exceeded",
            retry_after_ms=parse_retry_after(getattr(failure, "retry_after", None)),
            suggested_action="Wait for retry-after period and retry",
        )

    if status is not None and 500 <= status < 600:
        return CategorizedError(
            category=ErrorCategory.RETRYABLE,
            retryable=True,
            status_code=status,
            message=f"Server error: {status}",
            suggested_action="Retry with exponential backoff",
        )

    if status in _PERMANENT_STATUSES:
        return CategorizedError(
            category=ErrorCategory.PERMANENT,
            retryable=False,
            status_code=status,
            message=f"Permanent error: {status}",
            suggested_action="Skip this URL and continue",
        )

    if status == 408:
        return CategorizedError(
            category=ErrorCategory.RETRYABLE,
            retryable=True,
            status_code=status,
            message="Request timeout",
            suggested_action="Retry with exponential backoff",
        )

    if status is not None and 400 <= status < 500:
        return CategorizedError(
            category=ErrorCategory.PERMANENT,
            retryable=False,
            status_code=status,
            message=f"Client error: {status}",
            suggested_action="Skip this URL and continue",
        )

    if code in TRANSIENT_NETWORK_CODES:
        return CategorizedError(
            category=ErrorCategory.RETRYABLE,
            retryable=True,
            error_code=code,
            message=f"Network error: {code}",
            suggested_action="Retry with exponential backoff",
        )

    if "timeout" in message.lower():
        return CategorizedError(
            category=ErrorCategory.RETRYABLE,
            retryable=True,
            status_code=status,
            message="Request timeout",
            suggested_action="Retry with increased timeout",
        )

    # Unmatched failures stay retryable
    return CategorizedError(
        category=ErrorCategory.UNKNOWN,
        retryable=True,
        status_code=status,
        error_code=code,
        message=message,
        suggested_action="Retry with caution",
    )


def backoff(
    attempt: int,
    error: CategorizedError | None = None,
    *,
    base_delay_ms: float = 1000,
    max_delay_ms: float = 30000,
    jitter_max_ms: float = 1000,
    rng: random.Random | None = None,
) -> float:
    """Delay in milliseconds before retry number *attempt* (0-indexed).

    Rate-limit errors with a known Retry-After wait that long plus a small
    jitter. Everything else uses ``base * 2**attempt`` capped at
    *max_delay_ms*, plus uniform jitter in ``[0, jitter_max_ms]``.
    """
    rand = rng or random

    if (
        error is not None
        and error.category is ErrorCategory.RATE_LIMIT
        and error.retry_after_ms is not None
    ):
        return error.retry_after_ms + rand.uniform(0, min(jitter_max_ms, 2000))

    delay = min(base_delay_ms * (2 ** max(attempt, 0)), max_delay_ms)
    return delay + rand.uniform(0, jitter_max_ms)


def should_retry(error: CategorizedError, attempt: int, max_attempts: int) -> bool:
    """Whether another attempt is allowed after *attempt* retries."""
    if attempt >= max_attempts:
        return False
    return error.retryable


def to_failed_page(url: str, error: CategorizedError, attempts: int = 1) -> FailedPage:
    return FailedPage(
        url=url,
        category=str(error.category),
        message=error.message,
        status_code=error.status_code,
        retry_after_ms=error.retry_after_ms,
        suggested_action=error.suggested_action,
        attempts=attempts,
    )


def format_error_message(error: CategorizedError, url: str) -> str:
    """One-line-per-field description of a failed URL for logs."""
    prefix = {
        ErrorCategory.RATE_LIMIT: "Rate limit",
        ErrorCategory.RETRYABLE: "Temporary error",
        ErrorCategory.PERMANENT: "Permanent error",
    }.get(error.category, "Unknown error")
    status = f" (HTTP {error.status_code})" if error.status_code else ""
    short_url = url if len(url) <= 60 else url[:57] + "..."
    return (
        f"{prefix}{status}: {error.message}\n"
        f"   URL: {short_url}\n"
        f"   Action: {error.suggested_action}"
    )


def summarize_errors(failed: list[FailedPage], sample_size: int = 5) -> dict:
    """Per-category counts plus the first few failing URLs."""
    by_category = {str(c): 0 for c in ErrorCategory}
    for page in failed:
        by_category[page.category] = by_category.get(page.category, 0) + 1
    return {
        "total": len(failed),
        "by_category": by_category,
        "sample": [
            {"url": p.url, "category": p.category, "message": p.message}
            for p in failed[:sample_size]
        ],
    }
