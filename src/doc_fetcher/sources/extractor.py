"""HTML to markdown extraction behind a small protocol.

The crawl only needs ``extract(html, url)``. The default implementation hands
already-downloaded HTML to Crawl4AI through its ``raw:`` URL form, so the
browser never re-fetches the page.

Uses a singleton browser pool to reuse a single browser instance across
pages. Concurrency is bounded by a semaphore so parallel workers do not
overwhelm the browser.
"""

import asyncio
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from bs4 import BeautifulSoup
from crawl4ai import AsyncWebCrawler, BrowserConfig, CrawlerRunConfig
from loguru import logger

from doc_fetcher.sources.link_crawl import detect_framework


@dataclass
class ExtractionResult:
    success: bool
    markdown: str = ""
    title: str | None = None
    metadata: dict = field(default_factory=dict)
    error: str | None = None


class ContentExtractor(Protocol):
    async def extract(self, html: str, url: str) -> ExtractionResult: ...


# ---------------------------------------------------------------------------
# Browser pool (singleton)
# ---------------------------------------------------------------------------

# Per-process browser data directory to prevent Playwright lock deadlock
# when several fetches run at once.
_BROWSER_DATA_DIR = str(Path(tempfile.gettempdir()) / f"doc-fetcher-browser-{os.getpid()}")

_MAX_CONCURRENT_OPS = 6

_pool_lock = asyncio.Lock()
_crawler_instance: AsyncWebCrawler | None = None
_browser_semaphore: asyncio.Semaphore | None = None


def _get_semaphore() -> asyncio.Semaphore:
    """Created lazily so it binds to the running event loop."""
    global _browser_semaphore
    if _browser_semaphore is None:
        _browser_semaphore = asyncio.Semaphore(_MAX_CONCURRENT_OPS)
    return _browser_semaphore


async def _get_crawler() -> AsyncWebCrawler:
    """Return the shared AsyncWebCrawler, starting the browser on first use."""
    global _crawler_instance

    async with _pool_lock:
        if _crawler_instance is not None:
            return _crawler_instance

        logger.info("Starting shared browser...")
        crawler = AsyncWebCrawler(
            verbose=False,
            config=BrowserConfig(
                headless=True,
                verbose=False,
                user_data_dir=_BROWSER_DATA_DIR,
            ),
        )
        try:
            await crawler.__aenter__()
        except Exception:
            logger.error("Failed to start shared browser")
            raise

        _crawler_instance = crawler
        logger.info("Shared browser started")
        return _crawler_instance


async def shutdown_extractor() -> None:
    """Shut down the shared browser."""
    global _crawler_instance, _browser_semaphore

    async with _pool_lock:
        if _crawler_instance is not None:
            logger.info("Shutting down shared browser...")
            try:
                await _crawler_instance.__aexit__(None, None, None)
            except Exception as exc:
                logger.debug(f"Error during browser shutdown: {exc}")
            _crawler_instance = None
        _browser_semaphore = None


def _html_metadata(html: str) -> dict:
    soup = BeautifulSoup(html, "html.parser")
    title = soup.title.get_text(strip=True) if soup.title else None
    meta = soup.find("meta", attrs={"name": "description"})
    return {
        "title": title or None,
        "description": (meta.get("content") or None) if meta else None,
        "framework": detect_framework(soup),
    }


class Crawl4AIExtractor:
    """Markdown extraction with a shared headless browser."""

    async def extract(self, html: str, url: str) -> ExtractionResult:
        metadata = _html_metadata(html)
        crawler = await _get_crawler()

        async with _get_semaphore():
            try:
                result = await crawler.arun(
                    f"raw:{html}",
                    config=CrawlerRunConfig(verbose=False),
                )
            except Exception as e:
                logger.error(f"Error extracting {url}: {e}")
                return ExtractionResult(success=False, error=str(e), metadata=metadata)

        if not result.success:
            return ExtractionResult(
                success=False,
                error=result.error_message or "Failed to extract",
                metadata=metadata,
            )

        markdown = str(result.markdown or "").strip()
        if not markdown:
            return ExtractionResult(
                success=False, error="No content extracted", metadata=metadata
            )

        title = (result.metadata or {}).get("title") or metadata["title"]
        return ExtractionResult(
            success=True,
            markdown=markdown,
            title=title,
            metadata=metadata,
        )
