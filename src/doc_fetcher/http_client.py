"""Shared async HTTP client with retry, backoff and error translation.

One :class:`HttpClient` wraps one ``httpx.AsyncClient`` for the duration of an
operation. Transport exceptions and non-success statuses leave this module as
:class:`~doc_fetcher.errors.FetchError`; the retry loop classifies them and
either sleeps and tries again or gives up with
:class:`~doc_fetcher.errors.PageFetchError`.
"""

import asyncio
import errno
import socket

import httpx
from loguru import logger

from doc_fetcher.config import CrawlOptions
from doc_fetcher.errors import (
    ErrorCategory,
    FetchError,
    PageFetchError,
    backoff,
    classify,
    should_retry,
)
from doc_fetcher.models import RateLimitState
from doc_fetcher.security import is_safe_url

_DEFAULT_ACCEPT = "text/html,application/xhtml+xml,text/plain,application/xml;q=0.9,*/*;q=0.8"


def _transport_error_code(exc: httpx.TransportError) -> str | None:
    """Best-effort errno-style code for a transport failure."""
    if isinstance(exc, httpx.TimeoutException):
        return "ETIMEDOUT"

    cause = exc.__cause__ or exc.__context__
    for _ in range(8):
        if cause is None:
            break
        if isinstance(cause, socket.gaierror):
            return "EAI_AGAIN" if cause.errno == socket.EAI_AGAIN else "ENOTFOUND"
        if isinstance(cause, OSError) and cause.errno in errno.errorcode:
            return errno.errorcode[cause.errno]
        cause = cause.__cause__ or cause.__context__

    if isinstance(exc, httpx.ConnectError):
        return "ECONNREFUSED"
    if isinstance(exc, (httpx.ReadError, httpx.WriteError, httpx.RemoteProtocolError)):
        return "ECONNRESET"
    return None


class HttpClient:
    """Async HTTP access for discovery and crawling."""

    def __init__(
        self,
        options: CrawlOptions,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.options = options
        self._client = httpx.AsyncClient(
            timeout=options.timeout_seconds,
            follow_redirects=True,
            transport=transport,
            headers={"User-Agent": options.user_agent, "Accept": _DEFAULT_ACCEPT},
        )

    async def __aenter__(self) -> "HttpClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def get(
        self,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        ok_statuses: tuple[int, ...] = (200,),
    ) -> httpx.Response:
        """GET *url*; raise FetchError unless the status is in *ok_statuses*."""
        if self.options.block_private_hosts and not is_safe_url(url):
            raise FetchError(
                "Security Alert: Unsafe URL blocked", url=url, status_code=403
            )

        try:
            response = await self._client.get(url, headers=headers)
        except httpx.TransportError as exc:
            raise FetchError(
                f"{type(exc).__name__}: {exc}" if str(exc) else type(exc).__name__,
                url=url,
                error_code=_transport_error_code(exc),
            ) from exc

        if response.status_code not in ok_statuses:
            raise FetchError(
                f"HTTP {response.status_code} for {url}",
                url=url,
                status_code=response.status_code,
                retry_after=response.headers.get("retry-after"),
            )
        return response

    async def try_get(
        self, url: str, *, headers: dict[str, str] | None = None
    ) -> httpx.Response | None:
        """GET for probing: any failure returns None."""
        try:
            return await self.get(url, headers=headers)
        except FetchError as e:
            logger.debug(f"Probe failed for {url}: {e.message}")
            return None

    async def fetch_with_retry(
        self, url: str, *, rate_limit: RateLimitState | None = None
    ) -> tuple[httpx.Response, int]:
        """GET *url* with categorized retries.

        Returns the response and the number of attempts made. Raises
        PageFetchError once the error is not retryable or the budget of
        ``max_retries`` retries is spent.
        """
        attempt = 0
        while True:
            try:
                response = await self.get(url)
                return response, attempt + 1
            except FetchError as exc:
                error = classify(exc)
                if error.category is ErrorCategory.RATE_LIMIT and rate_limit is not None:
                    rate_limit.record(error.retry_after_ms)

                if not should_retry(error, attempt, self.options.max_retries):
                    raise PageFetchError(url, error, attempt + 1) from exc

                delay_ms = backoff(
                    attempt,
                    error,
                    base_delay_ms=self.options.retry_base_delay_ms,
                    max_delay_ms=self.options.retry_max_delay_ms,
                    jitter_max_ms=self.options.retry_jitter_ms,
                )
                logger.warning(
                    f"Retry {attempt + 1}/{self.options.max_retries} for {url} "
                    f"in {delay_ms / 1000:.1f}s ({error.message})"
                )
                await asyncio.sleep(delay_ms / 1000)
                attempt += 1
