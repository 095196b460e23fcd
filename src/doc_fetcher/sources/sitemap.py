"""Sitemap discovery: robots-declared and well-known sitemap.xml locations."""

import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from urllib.parse import urlparse

from loguru import logger

from doc_fetcher.config import CrawlOptions
from doc_fetcher.errors import FetchError
from doc_fetcher.http_client import HttpClient
from doc_fetcher.models import DiscoveryResult, PageDescriptor
from doc_fetcher.robots import Politeness
from doc_fetcher.urls import (
    extract_domain,
    is_doc_url,
    is_excluded_link,
    normalize_url,
    origin_of,
)

SITEMAP_LOCATIONS = (
    "/sitemap.xml",
    "/sitemap_index.xml",
    "/docs/sitemap.xml",
    "/documentation/sitemap.xml",
)

# Sitemap index nesting and fan-out limits
MAX_SITEMAP_DEPTH = 3
MAX_SITEMAPS = 50


class SitemapParseError(ValueError):
    """The document is not a sitemap."""


@dataclass
class ParsedSitemap:
    pages: list[PageDescriptor] = field(default_factory=list)
    sitemaps: list[str] = field(default_factory=list)


def _local(tag: str) -> str:
    """Tag name without its ``{namespace}`` prefix."""
    return tag.rsplit("}", 1)[-1]


def _child_text(elem: ET.Element, name: str) -> str | None:
    for child in elem:
        if _local(child.tag) == name:
            text = (child.text or "").strip()
            return text or None
    return None


def _parse_priority(value: str | None) -> float | None:
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def parse_sitemap(content: bytes | str) -> ParsedSitemap:
    """Parse a ``<urlset>`` or ``<sitemapindex>`` document.

    Raises SitemapParseError when the content is not XML or has another root.
    """
    if isinstance(content, str):
        content = content.encode("utf-8")
    try:
        root = ET.fromstring(content)
    except ET.ParseError as e:
        raise SitemapParseError(f"Invalid sitemap XML: {e}") from e

    kind = _local(root.tag)
    result = ParsedSitemap()

    if kind == "urlset":
        for entry in root:
            if _local(entry.tag) != "url":
                continue
            loc = _child_text(entry, "loc")
            if not loc:
                continue
            result.pages.append(
                PageDescriptor(
                    url=loc,
                    last_modified=_child_text(entry, "lastmod"),
                    change_frequency=_child_text(entry, "changefreq"),
                    priority=_parse_priority(_child_text(entry, "priority")),
                )
            )
    elif kind == "sitemapindex":
        for entry in root:
            if _local(entry.tag) != "sitemap":
                continue
            loc = _child_text(entry, "loc")
            if loc:
                result.sitemaps.append(loc)
    else:
        raise SitemapParseError(f"Unexpected sitemap root element: {kind}")

    return result


def filter_doc_pages(pages: list[PageDescriptor], base_url: str) -> list[PageDescriptor]:
    """Keep same-host documentation pages, deduplicated by normalized URL.

    On a ``docs.`` host or below a non-root base path every page of that scope
    counts as documentation; otherwise the path heuristics decide.
    """
    host = extract_domain(base_url)
    base_path = urlparse(base_url).path.rstrip("/")
    docs_host = bool(host and host.startswith("docs."))

    seen: set[str] = set()
    kept: list[PageDescriptor] = []
    for page in pages:
        if extract_domain(page.url) != host:
            continue
        if is_excluded_link(page.url):
            continue
        path = urlparse(page.url).path
        if base_path and (path == base_path or path.startswith(base_path + "/")):
            in_scope = True
        else:
            in_scope = docs_host or is_doc_url(page.url)
        if not in_scope:
            continue
        key = normalize_url(page.url)
        if key in seen:
            continue
        seen.add(key)
        kept.append(page)
    return kept


async def _fetch_sitemap(
    url: str, client: HttpClient, politeness: Politeness
) -> ParsedSitemap | None:
    if not politeness.allowed(url):
        logger.warning(f"Sitemap URL disallowed by robots.txt: {url}")
        return None
    try:
        resp = await client.get(url)
        return parse_sitemap(resp.content)
    except (FetchError, SitemapParseError) as e:
        logger.debug(f"No usable sitemap at {url}: {e}")
        return None


async def collect_sitemap_pages(
    root_url: str,
    client: HttpClient,
    politeness: Politeness,
    first: ParsedSitemap | None = None,
) -> list[PageDescriptor]:
    """All page entries reachable from *root_url*, following sitemap indexes.

    Iterative with a visited set, so cyclic indexes terminate.
    """
    visited = {normalize_url(root_url)}
    pages: list[PageDescriptor] = []
    stack: list[tuple[str, int, ParsedSitemap | None]] = [(root_url, 0, first)]

    while stack:
        url, depth, parsed = stack.pop(0)
        if parsed is None:
            parsed = await _fetch_sitemap(url, client, politeness)
            if parsed is None:
                continue

        pages.extend(parsed.pages)

        if depth >= MAX_SITEMAP_DEPTH:
            if parsed.sitemaps:
                logger.warning(f"Sitemap nesting too deep at {url}, not following")
            continue
        for child in parsed.sitemaps:
            key = normalize_url(child)
            if key in visited:
                continue
            if len(visited) >= MAX_SITEMAPS:
                logger.warning(f"Sitemap limit ({MAX_SITEMAPS}) reached")
                break
            visited.add(key)
            logger.debug(f"Fetching nested sitemap: {child}")
            stack.append((child, depth + 1, None))

    return pages


async def discover_sitemap(
    base_url: str,
    options: CrawlOptions,
    client: HttpClient,
    politeness: Politeness,
) -> DiscoveryResult | None:
    origin = origin_of(base_url)
    candidates = politeness.sitemap_urls() + [f"{origin}{loc}" for loc in SITEMAP_LOCATIONS]

    tried: set[str] = set()
    for sitemap_url in candidates:
        key = normalize_url(sitemap_url)
        if key in tried:
            continue
        tried.add(key)

        logger.debug(f"Checking {sitemap_url}")
        parsed = await _fetch_sitemap(sitemap_url, client, politeness)
        if parsed is None:
            continue
        logger.info(f"Found sitemap at {sitemap_url}")

        all_pages = await collect_sitemap_pages(sitemap_url, client, politeness, parsed)
        doc_pages = filter_doc_pages(all_pages, base_url)
        logger.info(
            f"Found {len(all_pages)} total URLs, {len(doc_pages)} documentation URLs"
        )
        if doc_pages:
            return DiscoveryResult(
                source_type="sitemap",
                source_url=sitemap_url,
                pages=doc_pages,
            )

    return None
