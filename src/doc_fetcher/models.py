"""Data model shared by discovery, crawling, checkpoints and diffing.

Persisted shapes (manifest, checkpoint) serialize with camelCase keys through
pydantic aliases; Python code always uses the snake_case field names.
"""

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from doc_fetcher.urls import normalize_url


def utcnow() -> datetime:
    return datetime.now(UTC)


class PageDescriptor(BaseModel):
    """A discovered page that has not been fetched yet."""

    model_config = ConfigDict(frozen=True)

    url: str
    last_modified: str | None = None
    change_frequency: str | None = None
    priority: float | None = None


class PageRecord(BaseModel):
    """A page that was fetched, extracted and written to ``pages/``.

    Stored in ``sitemap.json`` with the short keys the cache has always used
    (``size``, ``lastmod``, ``changefreq``).
    """

    model_config = ConfigDict(populate_by_name=True)

    url: str
    title: str | None = None
    filename: str | None = None
    size_bytes: int | None = Field(default=None, alias="size")
    last_modified: str | None = Field(default=None, alias="lastmod")
    change_frequency: str | None = Field(default=None, alias="changefreq")
    priority: float | None = None


class Manifest(BaseModel):
    """Ordered page inventory of one (library, version) cache entry."""

    pages: list[PageRecord] = Field(default_factory=list)

    def urls(self) -> list[str]:
        return [p.url for p in self.pages]

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, indent=2)


class LibraryIndex(BaseModel):
    """Contents of ``index.json``: what a cache entry holds and where it came from."""

    library: str
    version: str
    source_url: str | None = None
    source_file_url: str | None = None
    source_type: str | None = None
    repository: str | None = None
    framework: str | None = None
    fetched_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime | None = None
    page_count: int = 0
    total_size_bytes: int = 0
    failed_count: int = 0
    skill_generated: bool = False
    skill_path: str | None = None


class FailedPage(BaseModel):
    """A descriptor that could not be turned into a PageRecord."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    url: str
    category: str
    message: str
    status_code: int | None = None
    retry_after_ms: float | None = None
    suggested_action: str | None = None
    attempts: int = 1


class RateLimitState(BaseModel):
    """Crawl-wide rate limit bookkeeping."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    rate_limited: bool = False
    hits: int = 0
    last_retry_after_ms: float | None = None

    def record(self, retry_after_ms: float | None) -> None:
        self.rate_limited = True
        self.hits += 1
        if retry_after_ms is not None:
            self.last_retry_after_ms = retry_after_ms


class Checkpoint(BaseModel):
    """Durable progress snapshot of an in-flight crawl.

    ``completed_pages`` always equals ``len(completed)`` and ``pending`` never
    contains a URL that is also in ``completed`` or ``failed``.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    schema_version: str
    operation: str = "fetch"
    target_id: str
    total_pages: int
    completed_pages: int = 0
    completed: list[PageRecord] = Field(default_factory=list)
    failed: list[FailedPage] = Field(default_factory=list)
    pending: list[str] = Field(default_factory=list)
    rate_limit_state: RateLimitState | None = None
    started_at: datetime = Field(default_factory=utcnow)
    last_saved_at: datetime = Field(default_factory=utcnow)
    metadata: dict[str, Any] = Field(default_factory=dict)

    def completed_urls(self) -> set[str]:
        return {normalize_url(p.url) for p in self.completed}

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, indent=2)


class CrawlResult(BaseModel):
    """Outcome of one orchestrator run."""

    successful: int = 0
    failed: int = 0
    skipped: int = 0
    total_size: int = 0
    pages: list[PageRecord] = Field(default_factory=list)
    failed_pages: list[FailedPage] = Field(default_factory=list)
    rate_limited: bool = False
    resumed: bool = False
    truncated: bool = False
    error_summary: dict[str, Any] = Field(default_factory=dict)

    @property
    def attempted(self) -> int:
        return self.successful + self.failed + self.skipped


class DiffStats(BaseModel):
    total: int = 0
    unchanged: int = 0
    modified: int = 0
    added: int = 0
    removed: int = 0
    needs_fetch: int = 0
    percent_unchanged: int = 0


class DiffEntry(BaseModel):
    """One page in a diff, keyed by its normalized URL."""

    key: str
    url: str
    title: str | None = None
    filename: str | None = None
    size_bytes: int | None = None
    last_modified: str | None = None
    old_last_modified: str | None = None
    old_title: str | None = None


class DiffResult(BaseModel):
    unchanged: list[DiffEntry] = Field(default_factory=list)
    modified: list[DiffEntry] = Field(default_factory=list)
    added: list[DiffEntry] = Field(default_factory=list)
    removed: list[DiffEntry] = Field(default_factory=list)
    stats: DiffStats = Field(default_factory=DiffStats)

    @property
    def has_changes(self) -> bool:
        return bool(self.modified or self.added or self.removed)

    def fetch_urls(self) -> set[str]:
        """Normalized URLs the next crawl has to fetch (modified + added)."""
        return {e.key for e in self.modified} | {e.key for e in self.added}


class DiscoveryResult(BaseModel):
    """What a discovery strategy found.

    ``content`` is set for single-file sources (llms.txt without links, README)
    whose text is stored directly instead of being crawled.
    """

    source_type: str
    source_url: str | None = None
    pages: list[PageDescriptor] = Field(default_factory=list)
    content: str | None = None
    title: str | None = None
    framework: str | None = None
    version: str | None = None

    @property
    def is_inline(self) -> bool:
        return self.content is not None
