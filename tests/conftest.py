"""Pytest configuration and fixtures."""

import re
from collections.abc import Callable

import httpx
import pytest

from doc_fetcher.config import CrawlOptions
from doc_fetcher.sources.extractor import ExtractionResult

BASE = "https://docs.example.com"

_TITLE_RE = re.compile(r"<title>(.*?)</title>", re.IGNORECASE | re.DOTALL)


class Site:
    """In-memory website served through ``httpx.MockTransport``.

    Route values:
    - ``str``: 200 response; HTML, XML or plain text by its first characters
    - ``(status, body)`` or ``(status, body, headers)``
    - a callable taking the ``httpx.Request``

    Unknown URLs answer 404. Every requested URL is recorded in ``requests``.
    """

    def __init__(self, routes: dict | None = None):
        self.routes: dict[str, object] = dict(routes or {})
        self.requests: list[str] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.requests.append(url)
        route = self.routes.get(url)
        if route is None:
            route = self.routes.get(url.rstrip("/"))
        if route is None:
            return httpx.Response(404, text="Not Found")
        if callable(route):
            return route(request)
        if isinstance(route, tuple):
            status, body, *rest = route
            headers = rest[0] if rest else {}
            return httpx.Response(status, text=body, headers=headers)

        text = str(route)
        stripped = text.lstrip()
        if stripped.startswith("<?xml"):
            content_type = "application/xml"
        elif stripped.startswith("<"):
            content_type = "text/html; charset=utf-8"
        else:
            content_type = "text/plain; charset=utf-8"
        return httpx.Response(200, text=text, headers={"content-type": content_type})

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def hits(self, url: str) -> int:
        return self.requests.count(url)


class FakeExtractor:
    """Extractor that turns any HTML into a small markdown document."""

    def __init__(self, fail_urls: tuple[str, ...] = ()):
        self.calls: list[str] = []
        self.fail_urls = set(fail_urls)

    async def extract(self, html: str, url: str) -> ExtractionResult:
        self.calls.append(url)
        if url in self.fail_urls:
            return ExtractionResult(success=False, error="no main content")
        match = _TITLE_RE.search(html)
        title = match.group(1).strip() if match else None
        return ExtractionResult(success=True, markdown=f"# {title}\n\nFrom {url}", title=title)


def html_page(title: str, links: tuple[str, ...] = (), body: str = "") -> str:
    anchors = "".join(f'<li><a href="{href}">{href}</a></li>' for href in links)
    return (
        f"<html><head><title>{title}</title></head>"
        f"<body><nav><ul>{anchors}</ul></nav><main>{body or title}</main></body></html>"
    )


def sitemap_xml(entries: list[tuple[str, str | None]]) -> str:
    urls = []
    for loc, lastmod in entries:
        lastmod_tag = f"<lastmod>{lastmod}</lastmod>" if lastmod else ""
        urls.append(f"<url><loc>{loc}</loc>{lastmod_tag}</url>")
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        '<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">'
        + "".join(urls)
        + "</urlset>"
    )


@pytest.fixture
def options() -> CrawlOptions:
    """Fast options: no delays, no jitter, loopback-safe."""
    return CrawlOptions(
        crawl_delay_ms=0,
        retry_base_delay_ms=0,
        retry_max_delay_ms=0,
        retry_jitter_ms=0,
        max_retries=2,
        block_private_hosts=False,
    )


@pytest.fixture
def site() -> Site:
    return Site()


@pytest.fixture
def extractor() -> FakeExtractor:
    return FakeExtractor()


@pytest.fixture
def page() -> Callable[..., str]:
    return html_page


@pytest.fixture
def sitemap() -> Callable[[list[tuple[str, str | None]]], str]:
    return sitemap_xml


@pytest.fixture(autouse=True)
def _reset_extractor_singleton():
    """Reset the shared browser state before and after each test."""
    import doc_fetcher.sources.extractor as extractor_mod

    extractor_mod._crawler_instance = None
    extractor_mod._browser_semaphore = None

    yield

    extractor_mod._crawler_instance = None
    extractor_mod._browser_semaphore = None


@pytest.fixture
def make_extractor() -> type[FakeExtractor]:
    return FakeExtractor
