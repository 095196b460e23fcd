"""Tests for src/doc_fetcher/errors.py: classification, Retry-After and backoff."""

import random
from datetime import UTC, datetime

import pytest

from doc_fetcher.errors import (
    CategorizedError,
    ErrorCategory,
    FetchError,
    backoff,
    classify,
    format_error_message,
    parse_retry_after,
    should_retry,
    summarize_errors,
    to_failed_page,
)

# -----------------------------------------------------------------------
# classify
# -----------------------------------------------------------------------


class TestClassify:
    def test_rate_limit_with_retry_after(self):
        err = classify(FetchError("HTTP 429", status_code=429, retry_after="120"))
        assert err.category is ErrorCategory.RATE_LIMIT
        assert err.retryable is True
        assert err.retry_after_ms == 120000

    def test_rate_limit_without_retry_after(self):
        err = classify(FetchError("HTTP 429", status_code=429))
        assert err.category is ErrorCategory.RATE_LIMIT
        assert err.retry_after_ms is None

    @pytest.mark.parametrize("status", [500, 502, 503, 504, 599])
    def test_server_errors_are_retryable(self, status):
        err = classify(FetchError("boom", status_code=status))
        assert err.category is ErrorCategory.RETRYABLE
        assert err.retryable is True
        assert err.message == f"Server error: {status}"

    @pytest.mark.parametrize("status", [401, 403, 404, 410])
    def test_permanent_statuses(self, status):
        err = classify(FetchError("nope", status_code=status))
        assert err.category is ErrorCategory.PERMANENT
        assert err.retryable is False

    def test_request_timeout_status_is_retryable(self):
        err = classify(FetchError("HTTP 408", status_code=408))
        assert err.category is ErrorCategory.RETRYABLE
        assert err.message == "Request timeout"

    def test_other_client_errors_are_permanent(self):
        err = classify(FetchError("teapot", status_code=418))
        assert err.category is ErrorCategory.PERMANENT
        assert err.message == "Client error: 418"

    def test_transient_network_code(self):
        err = classify(FetchError("reset", error_code="ECONNRESET"))
        assert err.category is ErrorCategory.RETRYABLE
        assert err.error_code == "ECONNRESET"

    def test_timeout_in_message(self):
        err = classify(FetchError("ReadTimeout: read Timeout exceeded"))
        assert err.category is ErrorCategory.RETRYABLE
        assert err.suggested_action == "Retry with increased timeout"

    def test_unmatched_is_unknown_but_retryable(self):
        err = classify(FetchError("something odd", error_code="EWEIRD"))
        assert err.category is ErrorCategory.UNKNOWN
        assert err.retryable is True
        assert err.message == "something odd"

    def test_plain_exception(self):
        err = classify(ValueError("bad"))
        assert err.category is ErrorCategory.UNKNOWN
        assert err.message == "bad"


# -----------------------------------------------------------------------
# Retry-After
# -----------------------------------------------------------------------


class TestParseRetryAfter:
    def test_seconds(self):
        assert parse_retry_after("120") == 120000

    def test_int(self):
        assert parse_retry_after(5) == 5000

    def test_http_date(self):
        now = datetime(2024, 1, 1, 0, 0, 0, tzinfo=UTC)
        assert parse_retry_after("Mon, 01 Jan 2024 00:01:00 GMT", now=now) == 60000

    def test_past_date_clamps_to_zero(self):
        now = datetime(2024, 1, 1, 0, 0, 0, tzinfo=UTC)
        assert parse_retry_after("Sun, 31 Dec 2023 23:00:00 GMT", now=now) == 0

    @pytest.mark.parametrize("value", [None, "", "soon", "-5"])
    def test_unparseable(self, value):
        assert parse_retry_after(value) is None


# -----------------------------------------------------------------------
# Backoff
# -----------------------------------------------------------------------


class TestBackoff:
    def test_exponential_without_jitter(self):
        delays = [backoff(a, base_delay_ms=1000, jitter_max_ms=0) for a in range(4)]
        assert delays == [1000, 2000, 4000, 8000]

    def test_capped(self):
        assert backoff(10, base_delay_ms=1000, max_delay_ms=30000, jitter_max_ms=0) == 30000

    def test_jitter_bounds(self):
        rng = random.Random(42)
        for _ in range(50):
            delay = backoff(1, base_delay_ms=1000, jitter_max_ms=1000, rng=rng)
            assert 2000 <= delay <= 3000

    def test_rate_limit_uses_retry_after(self):
        err = classify(FetchError("HTTP 429", status_code=429, retry_after="5"))
        assert backoff(0, err, jitter_max_ms=0) == 5000

    def test_rate_limit_without_retry_after_falls_back(self):
        err = classify(FetchError("HTTP 429", status_code=429))
        assert backoff(2, err, base_delay_ms=100, jitter_max_ms=0) == 400


class TestShouldRetry:
    def test_budget_exhausted(self):
        err = classify(FetchError("x", status_code=503))
        assert should_retry(err, 2, 3) is True
        assert should_retry(err, 3, 3) is False

    def test_permanent_never_retried(self):
        err = classify(FetchError("x", status_code=404))
        assert should_retry(err, 0, 3) is False


# -----------------------------------------------------------------------
# Reporting
# -----------------------------------------------------------------------


class TestReporting:
    def test_to_failed_page(self):
        err = classify(FetchError("x", status_code=500))
        failed = to_failed_page("https://a.test/p", err, attempts=4)
        assert failed.category == "Retryable"
        assert failed.status_code == 500
        assert failed.attempts == 4

    def test_summarize_errors(self):
        pages = [
            to_failed_page(f"https://a.test/{i}", classify(FetchError("x", status_code=s)))
            for i, s in enumerate([500, 404, 404, 429])
        ]
        summary = summarize_errors(pages, sample_size=2)
        assert summary["total"] == 4
        assert summary["by_category"]["Permanent"] == 2
        assert summary["by_category"]["RateLimit"] == 1
        assert summary["by_category"]["Retryable"] == 1
        assert len(summary["sample"]) == 2

    def test_format_error_message_truncates_url(self):
        err = CategorizedError(
            category=ErrorCategory.PERMANENT,
            retryable=False,
            message="Permanent error: 404",
            suggested_action="Skip this URL and continue",
            status_code=404,
        )
        url = "https://docs.example.com/" + "a" * 100
        text = format_error_message(err, url)
        assert text.startswith("Permanent error (HTTP 404)")
        assert "..." in text
        assert "Skip this URL" in text
