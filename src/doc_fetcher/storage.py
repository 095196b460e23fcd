"""On-disk layout of one (library, version) cache entry.

::

    <cache_dir>/<library>/<version>/
        index.json          library metadata
        sitemap.json        page manifest
        .checkpoint.json    in-flight crawl progress
        pages/<name>.md     one file per page, with a small front matter header
"""

import os
import tempfile
from datetime import datetime
from pathlib import Path

from loguru import logger
from pydantic import ValidationError

from doc_fetcher.models import LibraryIndex, Manifest, PageRecord, utcnow
from doc_fetcher.urls import normalize_url, page_filename, sanitize_filename

INDEX_FILENAME = "index.json"
MANIFEST_FILENAME = "sitemap.json"
PAGES_DIRNAME = "pages"
INLINE_FILENAME = "index.md"
DEFAULT_VERSION = "latest"


def atomic_write_text(path: Path, text: str) -> None:
    """Write via a temp file in the same directory, then rename over *path*."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
        os.replace(tmp, path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise


def format_page(url: str, title: str | None, markdown: str, extracted_at: datetime) -> str:
    title = " ".join((title or "").split())
    return (
        "---\n"
        f"url: {url}\n"
        f"title: {title}\n"
        f"extractedAt: {extracted_at.isoformat(timespec='seconds')}\n"
        "---\n\n"
        f"{markdown}"
    )


def parse_page_header(text: str) -> dict[str, str] | None:
    """Front matter of a page file as a dict, or None without one."""
    if not text.startswith("---\n"):
        return None
    end = text.find("\n---", 4)
    if end == -1:
        return None
    header: dict[str, str] = {}
    for line in text[4:end].splitlines():
        key, sep, value = line.partition(":")
        if sep:
            header[key.strip()] = value.strip()
    return header


class LibraryStore:
    """File access for one cache entry."""

    def __init__(self, cache_dir: Path, library: str, version: str | None = None):
        self.cache_dir = Path(cache_dir)
        self.library = library
        self.version = version or DEFAULT_VERSION
        self.path = self.cache_dir / sanitize_filename(library) / sanitize_filename(self.version)
        # casefolded page filename -> normalized URL stored in it
        self._claims: dict[str, str] | None = None

    def __repr__(self) -> str:
        return f"LibraryStore({self.library!r}, {self.version!r}, path={str(self.path)!r})"

    @property
    def pages_dir(self) -> Path:
        return self.path / PAGES_DIRNAME

    @property
    def index_path(self) -> Path:
        return self.path / INDEX_FILENAME

    @property
    def manifest_path(self) -> Path:
        return self.path / MANIFEST_FILENAME

    def exists(self) -> bool:
        return self.path.is_dir()

    def ensure(self) -> None:
        self.pages_dir.mkdir(parents=True, exist_ok=True)

    # -- index / manifest ---------------------------------------------------

    def load_index(self) -> LibraryIndex | None:
        try:
            return LibraryIndex.model_validate_json(self.index_path.read_text("utf-8"))
        except FileNotFoundError:
            return None
        except (ValidationError, ValueError, OSError) as e:
            logger.warning(f"Unreadable {self.index_path}: {e}")
            return None

    def save_index(self, index: LibraryIndex) -> None:
        atomic_write_text(self.index_path, index.model_dump_json(indent=2))

    def has_manifest(self) -> bool:
        return self.manifest_path.is_file()

    def load_manifest(self) -> Manifest | None:
        try:
            return Manifest.model_validate_json(self.manifest_path.read_text("utf-8"))
        except FileNotFoundError:
            return None
        except (ValidationError, ValueError, OSError) as e:
            logger.warning(f"Unreadable {self.manifest_path}: {e}")
            return None

    def save_manifest(self, manifest: Manifest) -> None:
        atomic_write_text(self.manifest_path, manifest.to_json())

    # -- pages --------------------------------------------------------------

    def _load_claims(self) -> dict[str, str]:
        if self._claims is None:
            self._claims = {}
            for path in self.page_files():
                header = self.read_page_header(path)
                if header and header.get("url"):
                    self._claims[path.name.casefold()] = normalize_url(header["url"])
        return self._claims

    def claim_filename(self, url: str, filename: str | None = None) -> str:
        """Reserve a page filename for *url* that no other page URL uses.

        An explicit *filename* is taken as given. Otherwise a URL keeps the
        file it already has, and when the readable name belongs to another URL
        (names differing only in case count as equal, for case-insensitive
        filesystems) the URL hash is appended instead.
        """
        claims = self._load_claims()
        key = normalize_url(url)
        if filename is not None:
            claims[filename.casefold()] = key
            return filename

        filename = page_filename(url)
        owner = claims.get(filename.casefold())
        if owner is not None and owner != key:
            unique = page_filename(url, unique=True)
            logger.debug(f"{filename} already holds {owner}, using {unique} for {url}")
            filename = unique
        claims[filename.casefold()] = key
        return filename

    def save_page(
        self,
        url: str,
        markdown: str,
        title: str | None,
        *,
        filename: str | None = None,
        extracted_at: datetime | None = None,
    ) -> PageRecord:
        """Write one page file and return its record (without sitemap hints)."""
        filename = self.claim_filename(url, filename)
        content = format_page(url, title, markdown, extracted_at or utcnow())
        self.pages_dir.mkdir(parents=True, exist_ok=True)
        atomic_write_text(self.pages_dir / filename, content)
        return PageRecord(
            url=url,
            title=title,
            filename=filename,
            size_bytes=len(content.encode("utf-8")),
        )

    def save_inline(self, url: str, content: str, title: str | None) -> PageRecord:
        """Store a single-file source (llms.txt, README) as ``pages/index.md``."""
        return self.save_page(url, content, title, filename=INLINE_FILENAME)

    def remove_page(self, filename: str) -> bool:
        if self._claims is not None:
            self._claims.pop(filename.casefold(), None)
        target = self.pages_dir / filename
        try:
            target.unlink()
        except FileNotFoundError:
            return False
        return True

    def page_files(self) -> list[Path]:
        if not self.pages_dir.is_dir():
            return []
        return sorted(p for p in self.pages_dir.glob("*.md") if p.is_file())

    def read_page_header(self, path: Path) -> dict[str, str] | None:
        try:
            with path.open(encoding="utf-8") as f:
                head = f.read(4096)
        except OSError as e:
            logger.debug(f"Cannot read {path}: {e}")
            return None
        return parse_page_header(head)

    def directory_size(self) -> int:
        if not self.path.is_dir():
            return 0
        return sum(p.stat().st_size for p in self.path.rglob("*") if p.is_file())

    # -- listing ------------------------------------------------------------

    @staticmethod
    def list_libraries(cache_dir: Path) -> list[LibraryIndex]:
        """Index of every cached (library, version), sorted by name then version."""
        cache_dir = Path(cache_dir)
        if not cache_dir.is_dir():
            return []

        found: list[LibraryIndex] = []
        for index_path in sorted(cache_dir.glob(f"*/*/{INDEX_FILENAME}")):
            try:
                found.append(LibraryIndex.model_validate_json(index_path.read_text("utf-8")))
            except (ValidationError, ValueError, OSError) as e:
                logger.warning(f"Skipping unreadable {index_path}: {e}")
        return sorted(found, key=lambda i: (i.library, i.version))
