"""Link crawl discovery: navigation extraction plus breadth-first traversal.

Used when a site publishes neither llms.txt nor a sitemap. The base page's
navigation (framework-aware CSS selectors) seeds a BFS that follows every
same-host link below the base path.
"""

import asyncio
from collections import deque
from dataclasses import dataclass, field
from urllib.parse import urlparse

from bs4 import BeautifulSoup
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
    resolve_url,
)

# Ordered most specific first; "generic" is always appended
NAV_SELECTORS: dict[str, list[str]] = {
    "docusaurus": [
        ".menu__list a[href]",
        ".navbar__items a[href]",
        "nav.menu a[href]",
        ".theme-doc-sidebar-menu a[href]",
    ],
    "vitepress": [
        ".VPSidebar a[href]",
        ".vp-sidebar a[href]",
        "#VPSidebarNav a[href]",
        ".VPNavBar a[href]",
        "aside a[href]",
    ],
    "nextra": [
        ".nextra-sidebar a[href]",
        ".nextra-nav a[href]",
        "aside a[href]",
    ],
    "gitbook": [
        ".book-summary a[href]",
        ".summary a[href]",
        "nav.book-nav a[href]",
        ".page-toc a[href]",
    ],
    "readthedocs": [
        ".wy-menu a[href]",
        ".toctree-l1 a[href]",
        ".wy-nav-side a[href]",
        "#sphinxsidebar a[href]",
    ],
    "mintlify": [
        ".docs-sidebar a[href]",
        "nav.docs-nav a[href]",
        '[class*="sidebar"] a[href]',
    ],
    "generic": [
        "nav a[href]",
        '[role="navigation"] a[href]',
        ".sidebar a[href]",
        ".side-nav a[href]",
        ".sidenav a[href]",
        ".menu a[href]",
        ".toc a[href]",
        "aside a[href]",
        '[class*="sidebar"] a[href]',
        '[class*="nav"] a[href]',
    ],
}

# Tried when the base page has almost no navigation
DOC_ENTRY_PATHS = (
    "/docs",
    "/docs/intro",
    "/docs/getting-started",
    "/documentation",
    "/guide",
    "/api",
    "/reference",
)

MIN_NAV_LINKS = 5

_GENERATOR_HINTS = (
    ("docusaurus", "docusaurus"),
    ("vitepress", "vitepress"),
    ("gitbook", "gitbook"),
    ("sphinx", "readthedocs"),
    ("mkdocs", "generic"),
)

_MARKUP_HINTS = (
    (".docusaurus, #__docusaurus", "docusaurus"),
    (".vp-doc, .vitepress", "vitepress"),
    (".nextra-content, #__next", "nextra"),
    (".page-inner, .gitbook", "gitbook"),
    (".mintlify, .docs-content", "mintlify"),
    ('.rst-content, [data-theme="sphinx"]', "readthedocs"),
)


@dataclass
class NavigationLinks:
    framework: str
    links: list[str] = field(default_factory=list)
    doc_links: int = 0


def _soup(html: str) -> BeautifulSoup:
    return BeautifulSoup(html, "html.parser")


def detect_framework(html: str | BeautifulSoup) -> str:
    """Documentation framework behind a page, from generator meta and markup."""
    soup = _soup(html) if isinstance(html, str) else html

    meta = soup.find("meta", attrs={"name": "generator"})
    generator = (meta.get("content") or "").lower() if meta else ""
    for needle, framework in _GENERATOR_HINTS:
        if needle in generator:
            return framework

    for selector, framework in _MARKUP_HINTS:
        if soup.select_one(selector) is not None:
            return framework
    return "generic"


def _same_host_link(href: str, page_url: str, host: str | None) -> str | None:
    if not href or is_excluded_link(href):
        return None
    absolute = resolve_url(page_url, href)
    if absolute is None or extract_domain(absolute) != host:
        return None
    return normalize_url(absolute)


def extract_navigation_links(
    html: str, base_url: str, framework: str | None = None
) -> NavigationLinks:
    """Same-host navigation links of a page, documentation paths first."""
    soup = _soup(html)
    framework = framework or detect_framework(soup)
    host = extract_domain(base_url)

    selectors = list(dict.fromkeys(NAV_SELECTORS.get(framework, []) + NAV_SELECTORS["generic"]))

    found: dict[str, None] = {}
    for selector in selectors:
        for anchor in soup.select(selector):
            link = _same_host_link(anchor.get("href", ""), base_url, host)
            if link:
                found.setdefault(link)

    if len(found) < MIN_NAV_LINKS:
        for anchor in soup.find_all("a", href=True):
            link = _same_host_link(anchor["href"], base_url, host)
            if link and is_doc_url(link):
                found.setdefault(link)

    links = list(found)
    # Stable sort keeps selector order within each group
    links.sort(key=lambda u: not is_doc_url(u))
    return NavigationLinks(
        framework=framework,
        links=links,
        doc_links=sum(1 for u in links if is_doc_url(u)),
    )


def extract_all_links(html: str, page_url: str, host: str | None, path_prefix: str) -> list[str]:
    """Every same-host link on a page at or below the *path_prefix* directory."""
    soup = _soup(html)
    links: dict[str, None] = {}
    for anchor in soup.find_all("a", href=True):
        link = _same_host_link(anchor["href"], page_url, host)
        if not link:
            continue
        path = urlparse(link).path
        if path_prefix and not (path == path_prefix or path.startswith(path_prefix + "/")):
            continue
        links.setdefault(link)
    return list(links)


async def _fetch_html(url: str, client: HttpClient) -> str | None:
    try:
        resp = await client.get(url)
    except FetchError as e:
        logger.debug(f"Link crawl fetch failed for {url}: {e.message}")
        return None
    content_type = resp.headers.get("content-type", "")
    if content_type and "html" not in content_type:
        return None
    return resp.text


async def crawl_breadth_first(
    seeds: list[str],
    base_url: str,
    options: CrawlOptions,
    client: HttpClient,
    politeness: Politeness,
) -> list[str]:
    """Breadth-first discovery from *seeds*; returns discovered URLs in order."""
    host = extract_domain(base_url)
    path_prefix = urlparse(base_url).path.rstrip("/")
    max_links = options.link_crawl_max_links
    max_depth = options.link_crawl_max_depth
    delay_s = politeness.effective_delay_ms() / 1000

    discovered: dict[str, None] = {}
    frontier: deque[tuple[str, int]] = deque()
    for seed in seeds:
        key = normalize_url(seed)
        if key not in discovered and len(discovered) < max_links:
            discovered[key] = None
            frontier.append((key, 0))

    visited: set[str] = set()
    logger.info(
        f"Starting link crawl from {len(frontier)} seed URLs "
        f"(prefix {path_prefix or '/'}, max links {max_links}, max depth {max_depth})"
    )

    while frontier and len(discovered) < max_links:
        url, depth = frontier.popleft()
        if url in visited:
            continue
        visited.add(url)

        if depth >= max_depth or not politeness.allowed(url):
            continue

        if len(visited) > 1 and delay_s > 0:
            await asyncio.sleep(delay_s)

        html = await _fetch_html(url, client)
        if html is None:
            continue

        for link in extract_all_links(html, url, host, path_prefix):
            if link in discovered:
                continue
            if len(discovered) >= max_links:
                break
            discovered[link] = None
            frontier.append((link, depth + 1))

        if len(visited) % 10 == 0:
            logger.info(f"Crawled {len(visited)} pages, discovered {len(discovered)} URLs")

    logger.info(f"Link crawl complete: {len(discovered)} URLs from {len(visited)} pages")
    return list(discovered)


async def discover_link_crawl(
    base_url: str,
    options: CrawlOptions,
    client: HttpClient,
    politeness: Politeness,
) -> DiscoveryResult | None:
    if not politeness.allowed(base_url):
        return None

    html = await _fetch_html(base_url, client)
    if html is None:
        logger.warning(f"Link crawl could not load {base_url}")
        return None

    nav = extract_navigation_links(html, base_url)
    logger.info(
        f"Found {len(nav.links)} navigation links ({nav.doc_links} doc paths), "
        f"framework: {nav.framework}"
    )

    if len(nav.links) < MIN_NAV_LINKS:
        base_clean = base_url.rstrip("/")
        for entry_path in DOC_ENTRY_PATHS:
            entry_url = f"{base_clean}{entry_path}"
            if not politeness.allowed(entry_url):
                continue
            entry_html = await _fetch_html(entry_url, client)
            if entry_html is None:
                continue
            entry_nav = extract_navigation_links(entry_html, entry_url)
            if len(entry_nav.links) > len(nav.links):
                logger.info(f"Found {len(entry_nav.links)} links at {entry_path}")
                nav = entry_nav
                break

    seeds = [base_url] + [u for u in nav.links if politeness.allowed(u)]
    urls = await crawl_breadth_first(seeds, base_url, options, client, politeness)
    if not urls:
        return None

    return DiscoveryResult(
        source_type="link-crawl",
        source_url=base_url,
        pages=[PageDescriptor(url=u) for u in urls],
        framework=nav.framework,
    )
