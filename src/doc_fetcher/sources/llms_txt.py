"""llms.txt discovery: AI-friendly documentation files at well-known paths."""

import re
from dataclasses import dataclass

from loguru import logger

from doc_fetcher.config import CrawlOptions
from doc_fetcher.http_client import HttpClient
from doc_fetcher.models import DiscoveryResult, PageDescriptor
from doc_fetcher.robots import Politeness
from doc_fetcher.urls import normalize_url, origin_of, resolve_url, same_host

# Probed in order; the full-content variant first
LLMS_TXT_LOCATIONS = (
    "/llms-full.txt",
    "/llms.txt",
    "/claude.txt",
    "/.well-known/llms.txt",
    "/docs/llms.txt",
    "/documentation/llms.txt",
)

MIN_CONTENT_BYTES = 500
MAX_CONTENT_BYTES = 50 * 1024 * 1024

_HTML_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (r"<!DOCTYPE\s+html", r"<html[\s>]", r"<head[\s>]", r"<body[\s>]", r"<meta[\s>]")
]

_NOT_FOUND_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"404.*not found",
        r"page not found",
        r"not found.*404",
        r"the page you.*looking for.*doesn't exist",
        r"the page you.*looking for.*could not be found",
        r"this page could not be found",
        r"error 404",
        r"http.*404",
    )
]

_SECTION_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"installation",
        r"getting started",
        r"quick start",
        r"introduction",
        r"overview",
        r"api",
        r"usage",
        r"examples",
    )
]

_VERSION_PATTERNS = [
    re.compile(r"Version:\s*([0-9]+\.[0-9]+\.[0-9]+)", re.IGNORECASE),
    re.compile(r"v([0-9]+\.[0-9]+\.[0-9]+)"),
    re.compile(r"@version\s*([0-9]+\.[0-9]+\.[0-9]+)", re.IGNORECASE),
]

_MD_LINK_RE = re.compile(r"\[[^\]]*\]\(\s*<?([^)\s>]+)>?(?:\s+\"[^\"]*\")?\s*\)")
_BARE_URL_RE = re.compile(r"(?<![(<\[])\bhttps?://[^\s)\]>\"'`]+")


@dataclass(frozen=True)
class Validation:
    valid: bool
    reason: str
    warning: bool = False


def validate_content(content: str) -> Validation:
    """Decide whether *content* looks like real llms.txt documentation."""
    if any(p.search(content) for p in _HTML_PATTERNS):
        return Validation(False, "Content is HTML, not plain text documentation")

    if any(p.search(content) for p in _NOT_FOUND_PATTERNS):
        return Validation(False, "Content appears to be a 404 error page")

    size = len(content.encode("utf-8"))
    if size < MIN_CONTENT_BYTES:
        return Validation(False, f"Content too small (< {MIN_CONTENT_BYTES} bytes)")
    if size > MAX_CONTENT_BYTES:
        return Validation(False, "Content too large (> 50MB)")

    if "#" not in content and "```" not in content:
        return Validation(False, "Content does not appear to be markdown documentation")

    if not any(p.search(content) for p in _SECTION_PATTERNS):
        return Validation(True, "Content appears valid but missing common sections", warning=True)

    return Validation(True, "Content appears to be valid documentation")


def extract_version(content: str) -> str | None:
    for pattern in _VERSION_PATTERNS:
        match = pattern.search(content)
        if match:
            return match.group(1)
    return None


def extract_title(content: str) -> str | None:
    """First markdown H1 of the file."""
    for line in content.splitlines():
        stripped = line.strip()
        if stripped.startswith("# "):
            return stripped[2:].strip() or None
    return None


def extract_urls(content: str, base_url: str) -> list[str]:
    """Page URLs referenced by an llms.txt file, in order of appearance.

    Markdown link targets and bare URLs are resolved against *base_url*;
    only http(s) targets are kept, deduplicated by normalized URL.
    """
    candidates: list[tuple[int, str]] = []
    for match in _MD_LINK_RE.finditer(content):
        candidates.append((match.start(), match.group(1)))
    for match in _BARE_URL_RE.finditer(content):
        candidates.append((match.start(), match.group(0).rstrip(".,;:")))
    candidates.sort(key=lambda c: c[0])

    seen: set[str] = set()
    urls: list[str] = []
    for _, href in candidates:
        if href.startswith("#"):
            continue
        absolute = resolve_url(base_url, href)
        if not absolute:
            continue
        key = normalize_url(absolute)
        if key in seen:
            continue
        seen.add(key)
        urls.append(absolute.split("#", 1)[0])
    return urls


async def find_llms_txt(
    base_url: str, client: HttpClient, politeness: Politeness
) -> tuple[str, str] | None:
    """Probe the well-known locations; return ``(url, content)`` of the first valid file."""
    origin = origin_of(base_url)
    logger.debug(f"Checking for llms.txt at {origin}")

    for location in LLMS_TXT_LOCATIONS:
        url = f"{origin}{location}"
        if not politeness.allowed(url):
            continue

        resp = await client.try_get(url)
        if resp is None:
            continue
        if "text/html" in resp.headers.get("content-type", ""):
            logger.debug(f"Skipping {url}: server returned HTML")
            continue

        content = resp.text
        validation = validate_content(content)
        if not validation.valid:
            logger.debug(f"Rejected {url}: {validation.reason}")
            continue
        if validation.warning:
            logger.warning(f"{url}: {validation.reason}")

        logger.info(f"Found {location.rsplit('/', 1)[-1]} at {url} ({len(content)} chars)")
        return url, content

    return None


async def discover_llms_txt(
    base_url: str,
    options: CrawlOptions,
    client: HttpClient,
    politeness: Politeness,
) -> DiscoveryResult | None:
    found = await find_llms_txt(base_url, client, politeness)
    if found is None:
        return None
    url, content = found

    version = extract_version(content)
    title = extract_title(content)

    # llms-full.txt already carries the content itself
    if options.fetch_llms_urls and not url.endswith("/llms-full.txt"):
        page_urls = [u for u in extract_urls(content, url) if same_host(u, url)]
        if page_urls:
            logger.info(f"llms.txt references {len(page_urls)} pages")
            return DiscoveryResult(
                source_type="llms.txt",
                source_url=url,
                pages=[PageDescriptor(url=u) for u in page_urls],
                title=title,
                framework="llms.txt",
                version=version,
            )

    return DiscoveryResult(
        source_type="llms.txt",
        source_url=url,
        pages=[PageDescriptor(url=url)],
        content=content,
        title=title or "llms.txt",
        framework="llms.txt",
        version=version,
    )
