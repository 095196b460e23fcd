"""URL helpers: normalization, filenames and documentation-path heuristics."""

import hashlib
import re
from urllib.parse import parse_qsl, urlencode, urljoin, urlparse, urlunparse

# Paths that usually hold documentation
DOC_PATH_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"/docs?/",
        r"/documentation/",
        r"/guides?/",
        r"/api/",
        r"/reference/",
        r"/tutorials?/",
        r"/learn/",
        r"/getting-started",
        r"/quickstart",
        r"/intro",
        r"/overview",
        r"/concepts?/",
        r"/examples?/",
        r"/usage",
        r"/manual/",
        r"/handbook/",
    )
]

# Links that are never documentation pages
EXCLUDE_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"^mailto:",
        r"^javascript:",
        r"^tel:",
        r"^#",
        r"\.(png|jpe?g|gif|svg|ico|webp|pdf|zip|tar|gz|mp4|webm)$",
        r"/blog/",
        r"/changelog",
        r"/releases",
        r"/download",
        r"/pricing",
        r"/login",
        r"/signup",
        r"/auth",
        r"github\.com",
        r"twitter\.com",
        r"discord\.(com|gg)",
        r"linkedin\.com",
    )
]

_UNSAFE_FILENAME_RE = re.compile(r'[<>:"|?*/\\]')
_WHITESPACE_RE = re.compile(r"\s+")


def normalize_url(url: str) -> str:
    """Canonical key for a page URL.

    Lowercases scheme and host, drops the fragment and any trailing slash
    (the site root becomes the bare origin) and sorts query parameters.
    Strings that are not absolute URLs only lose their trailing slash.
    """
    if not url:
        return ""
    parsed = urlparse(url.strip())
    if not parsed.scheme or not parsed.netloc:
        return url.rstrip("/")

    path = parsed.path.rstrip("/")
    query = ""
    if parsed.query:
        query = urlencode(sorted(parse_qsl(parsed.query, keep_blank_values=True)))
    return urlunparse(
        (parsed.scheme.lower(), parsed.netloc.lower(), path, "", query, "")
    )


def extract_domain(url: str) -> str | None:
    """Return the lowercase hostname of *url*, or None if it has none."""
    try:
        host = urlparse(url).hostname
    except ValueError:
        return None
    return host.lower() if host else None


def origin_of(url: str) -> str:
    parsed = urlparse(url)
    return f"{parsed.scheme}://{parsed.netloc}"


def same_host(url: str, other: str) -> bool:
    host = extract_domain(url)
    return host is not None and host == extract_domain(other)


def resolve_url(base: str, href: str) -> str | None:
    """Resolve *href* against *base*; None for anything that is not http(s)."""
    try:
        absolute = urljoin(base, href.strip())
    except ValueError:
        return None
    if urlparse(absolute).scheme not in ("http", "https"):
        return None
    return absolute


def is_doc_url(url: str) -> bool:
    return any(p.search(url) for p in DOC_PATH_PATTERNS)


def is_excluded_link(href: str) -> bool:
    return any(p.search(href) for p in EXCLUDE_PATTERNS)


def _safe_component(name: str) -> str:
    name = _UNSAFE_FILENAME_RE.sub("-", name)
    return _WHITESPACE_RE.sub("-", name)


def sanitize_filename(name: str) -> str:
    """Make *name* safe to use as a single, lowercase filesystem path component."""
    return _safe_component(name).lower()


def url_digest(url: str, length: int = 8) -> str:
    """Short stable hash of a URL's normalized form."""
    return hashlib.sha1(normalize_url(url).encode("utf-8")).hexdigest()[:length]


def page_filename(url: str, *, unique: bool = False) -> str:
    """Filename under ``pages/`` for a page URL (``index.md`` for the root).

    The readable form keeps the path's case. URLs with a query string, or any
    URL when *unique* is set, get a short hash of the normalized URL appended.
    """
    parsed = urlparse(url)
    stem = _safe_component(parsed.path.strip("/") or "index")
    if unique or parsed.query:
        stem = f"{stem}-{url_digest(url)}"
    return f"{stem}.md"
