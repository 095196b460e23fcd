"""Top-level operations: fetch, update and inspect a cached library.

These wire the pieces together for one (library, version) cache entry:
politeness, discovery, resume detection, the crawl itself and the final
manifest/index writes. Everything they need comes in through arguments.
"""

from dataclasses import dataclass, field
from pathlib import Path

import httpx
from loguru import logger

from doc_fetcher.cache import RobotsCache
from doc_fetcher.checkpoint import (
    CheckpointManager,
    InterruptionStatus,
    format_checkpoint_info,
)
from doc_fetcher.config import CrawlOptions
from doc_fetcher.diff import diff, format_diff_summary
from doc_fetcher.discovery import discover
from doc_fetcher.errors import CrawlFailedError, DiscoveryError
from doc_fetcher.http_client import HttpClient
from doc_fetcher.models import (
    Checkpoint,
    CrawlResult,
    DiffResult,
    DiscoveryResult,
    LibraryIndex,
    Manifest,
    PageRecord,
    utcnow,
)
from doc_fetcher.orchestrator import crawl_pages
from doc_fetcher.robots import Politeness
from doc_fetcher.sources.extractor import ContentExtractor, Crawl4AIExtractor
from doc_fetcher.storage import INLINE_FILENAME, LibraryStore, format_page
from doc_fetcher.urls import normalize_url


@dataclass
class FetchOutcome:
    index: LibraryIndex
    path: Path
    crawl: CrawlResult
    discovery: DiscoveryResult


@dataclass
class UpdateOutcome:
    index: LibraryIndex
    path: Path
    diff: DiffResult
    crawl: CrawlResult | None = None


@dataclass
class LibraryStatus:
    library: str
    version: str
    path: Path
    index: LibraryIndex | None
    page_files: int
    interruption: InterruptionStatus
    notes: list[str] = field(default_factory=list)

    def describe(self) -> str:
        lines = [f"{self.library} {self.version}", f"  Location: {self.path}"]
        if self.index is None:
            lines.append("  Not fetched yet")
        else:
            lines.append(f"  Source: {self.index.source_type} ({self.index.source_url})")
            lines.append(f"  Pages: {self.index.page_count} ({self.page_files} files)")
            lines.append(f"  Size: {self.index.total_size_bytes} bytes")
            lines.append(f"  Fetched: {self.index.fetched_at.isoformat(timespec='seconds')}")
            if self.index.updated_at:
                lines.append(
                    f"  Updated: {self.index.updated_at.isoformat(timespec='seconds')}"
                )
        if self.interruption.interrupted:
            lines.append(f"  Interrupted: {self.interruption.reason}")
            if self.interruption.checkpoint is not None:
                lines.append(format_checkpoint_info(self.interruption.checkpoint))
        lines.extend(f"  {note}" for note in self.notes)
        return "\n".join(lines)


def _target_id(store: LibraryStore) -> str:
    return f"{store.library}@{store.version}"


def _prune_orphans(store: LibraryStore, manifest: Manifest) -> int:
    """Delete page files the manifest no longer references."""
    keep = {p.filename for p in manifest.pages if p.filename}
    removed = 0
    for path in store.page_files():
        if path.name not in keep:
            path.unlink(missing_ok=True)
            removed += 1
    if removed:
        logger.debug(f"Removed {removed} unreferenced page files")
    return removed


def _inline_record(discovery: DiscoveryResult) -> PageRecord:
    """What an inline source would look like once stored, for diffing."""
    url = discovery.pages[0].url
    content = format_page(url, discovery.title, discovery.content or "", utcnow())
    return PageRecord(
        url=url,
        title=discovery.title,
        filename=INLINE_FILENAME,
        size_bytes=len(content.encode("utf-8")),
    )


def _write_index(
    store: LibraryStore,
    manifest: Manifest,
    discovery: DiscoveryResult,
    *,
    source_url: str | None,
    repository: str | None,
    failed_count: int,
    previous: LibraryIndex | None = None,
) -> LibraryIndex:
    now = utcnow()
    index = LibraryIndex(
        library=store.library,
        version=store.version,
        source_url=source_url,
        source_file_url=discovery.source_url,
        source_type=discovery.source_type,
        repository=repository,
        framework=discovery.framework,
        fetched_at=previous.fetched_at if previous else now,
        updated_at=now if previous else None,
        page_count=len(manifest.pages),
        total_size_bytes=store.directory_size(),
        failed_count=failed_count,
    )
    store.save_index(index)
    return index


async def fetch_documentation(
    library: str,
    version: str | None = None,
    source_url: str | None = None,
    options: CrawlOptions | None = None,
    *,
    cache_dir: Path,
    repository: str | None = None,
    extractor: ContentExtractor | None = None,
    robots_cache: RobotsCache | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> FetchOutcome:
    """Discover and crawl a library's documentation into the cache.

    Resumes an interrupted previous run of the same entry when a checkpoint
    (or, failing that, page files on disk) shows one. Raises DiscoveryError
    when nothing could be discovered and CrawlFailedError when no page at all
    could be fetched.
    """
    options = options or CrawlOptions()
    extractor = extractor or Crawl4AIExtractor()
    store = LibraryStore(cache_dir, library, version)
    checkpoints = CheckpointManager(store, options)
    target_id = _target_id(store)

    if not source_url and not repository:
        raise DiscoveryError(f"No documentation URL or repository given for {library}")

    logger.info(f"Fetching documentation for {library} {store.version}")

    status = InterruptionStatus(interrupted=False)
    if options.checkpoints_enabled:
        status = checkpoints.detect_interrupted()
        if status.interrupted:
            logger.info(f"Previous fetch was interrupted: {status.reason}")
            if status.checkpoint is not None:
                logger.info(format_checkpoint_info(status.checkpoint))

    async with HttpClient(options, transport=transport) as client:
        politeness = Politeness(options, client, robots_cache)
        if source_url:
            await politeness.init(source_url)

        discovery = await discover(
            source_url, options, politeness, client, repository=repository
        )
        if discovery.version:
            logger.info(f"Documentation declares version {discovery.version}")

        store.ensure()
        if discovery.is_inline:
            record = store.save_inline(
                discovery.pages[0].url, discovery.content or "", discovery.title
            )
            result = CrawlResult(
                successful=1, total_size=record.size_bytes or 0, pages=[record]
            )
            checkpoints.delete()
        else:
            resume_state: Checkpoint | None = None
            if status.checkpoint is not None and status.checkpoint.operation == "fetch":
                resume_state = status.checkpoint
            elif status.interrupted and status.checkpoint is None:
                resume_state = checkpoints.build_recovery_state(discovery.pages, target_id)

            result = await crawl_pages(
                discovery.pages,
                store,
                options,
                politeness=politeness,
                client=client,
                extractor=extractor,
                resume_state=resume_state,
                checkpoints=checkpoints,
                target_id=target_id,
                operation="fetch",
                metadata={"sourceUrl": source_url, "sourceType": discovery.source_type},
            )

    if result.successful == 0:
        raise CrawlFailedError(
            f"Fetched 0 of {result.attempted} pages for {library} "
            f"({result.failed} failed, {result.skipped} skipped)"
        )

    manifest = Manifest(pages=result.pages)
    store.save_manifest(manifest)
    _prune_orphans(store, manifest)
    index = _write_index(
        store,
        manifest,
        discovery,
        source_url=source_url,
        repository=repository,
        failed_count=result.failed,
    )

    logger.info(
        f"Documentation cached: {index.page_count} pages, "
        f"{index.total_size_bytes} bytes at {store.path}"
    )
    return FetchOutcome(index=index, path=store.path, crawl=result, discovery=discovery)


def _merge_manifest(
    order: list[str],
    old_manifest: Manifest,
    result: CrawlResult,
    changes: DiffResult,
) -> Manifest:
    """New manifest in discovery order.

    Refetched pages take their new record; unchanged pages and modified pages
    whose refetch failed keep the cached one; removed pages drop out.
    """
    fetched = {normalize_url(p.url): p for p in result.pages}
    old = {normalize_url(p.url): p for p in old_manifest.pages}
    removed = {e.key for e in changes.removed}

    pages: list[PageRecord] = []
    for key in order:
        if key in removed:
            continue
        if key in fetched:
            pages.append(fetched[key])
        elif key in old:
            pages.append(old[key])
    return Manifest(pages=pages)


async def update_documentation(
    library: str,
    version: str | None = None,
    options: CrawlOptions | None = None,
    *,
    cache_dir: Path,
    source_url: str | None = None,
    repository: str | None = None,
    extractor: ContentExtractor | None = None,
    robots_cache: RobotsCache | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> FetchOutcome | UpdateOutcome:
    """Refetch only the pages that changed since the last fetch.

    Falls back to a full fetch when the entry has no manifest yet.
    """
    options = options or CrawlOptions()
    store = LibraryStore(cache_dir, library, version)
    previous = store.load_index()
    old_manifest = store.load_manifest()

    source_url = source_url or (previous.source_url if previous else None)
    repository = repository or (previous.repository if previous else None)

    if previous is None or old_manifest is None:
        logger.info(f"No cached manifest for {library} {store.version}, doing a full fetch")
        return await fetch_documentation(
            library,
            version,
            source_url,
            options,
            cache_dir=cache_dir,
            repository=repository,
            extractor=extractor,
            robots_cache=robots_cache,
            transport=transport,
        )

    extractor = extractor or Crawl4AIExtractor()
    checkpoints = CheckpointManager(store, options)
    target_id = _target_id(store)
    logger.info(f"Checking {library} {store.version} for updates")

    async with HttpClient(options, transport=transport) as client:
        politeness = Politeness(options, client, robots_cache)
        if source_url:
            await politeness.init(source_url)

        discovery = await discover(
            source_url, options, politeness, client, repository=repository
        )

        if discovery.is_inline:
            record = _inline_record(discovery)
            changes = diff(old_manifest, [record])
            logger.info(format_diff_summary(changes))
            if not changes.has_changes:
                index = _touch_index(store, previous)
                return UpdateOutcome(index=index, path=store.path, diff=changes)

            for entry in changes.removed:
                if entry.filename and entry.filename != INLINE_FILENAME:
                    store.remove_page(entry.filename)
            stored = store.save_inline(record.url, discovery.content or "", discovery.title)
            result = CrawlResult(successful=1, total_size=stored.size_bytes or 0, pages=[stored])
            manifest = Manifest(pages=[stored])
        else:
            changes = diff(old_manifest, discovery.pages)
            logger.info(format_diff_summary(changes))
            if not changes.has_changes:
                index = _touch_index(store, previous)
                return UpdateOutcome(index=index, path=store.path, diff=changes)

            resume_state = None
            if options.checkpoints_enabled:
                existing = checkpoints.load()
                if existing is not None and existing.operation == "update":
                    logger.info(format_checkpoint_info(existing))
                    resume_state = existing

            result = CrawlResult()
            if changes.stats.needs_fetch:
                result = await crawl_pages(
                    discovery.pages,
                    store,
                    options,
                    politeness=politeness,
                    client=client,
                    extractor=extractor,
                    resume_state=resume_state,
                    allow_urls=changes.fetch_urls(),
                    checkpoints=checkpoints,
                    target_id=target_id,
                    operation="update",
                    metadata={"sourceUrl": source_url},
                )
                if result.successful == 0:
                    raise CrawlFailedError(
                        f"Fetched 0 of {result.attempted} changed pages for {library}"
                    )

            order = [normalize_url(d.url) for d in discovery.pages]
            manifest = _merge_manifest(order, old_manifest, result, changes)

    store.save_manifest(manifest)
    _prune_orphans(store, manifest)
    index = _write_index(
        store,
        manifest,
        discovery,
        source_url=source_url,
        repository=repository,
        failed_count=result.failed,
        previous=previous,
    )
    logger.info(
        f"Update complete: {changes.stats.needs_fetch} pages refetched, "
        f"{changes.stats.removed} removed, {index.page_count} pages cached"
    )
    return UpdateOutcome(index=index, path=store.path, diff=changes, crawl=result)


def _touch_index(store: LibraryStore, index: LibraryIndex) -> LibraryIndex:
    index = index.model_copy(update={"updated_at": utcnow()})
    store.save_index(index)
    return index


def library_status(
    library: str,
    version: str | None = None,
    options: CrawlOptions | None = None,
    *,
    cache_dir: Path,
) -> LibraryStatus:
    """Index metadata plus checkpoint/interruption state of one cache entry."""
    options = options or CrawlOptions()
    store = LibraryStore(cache_dir, library, version)
    status = CheckpointManager(store, options).detect_interrupted()

    notes: list[str] = []
    index = store.load_index()
    if index is not None and index.failed_count:
        notes.append(f"{index.failed_count} pages failed during the last run")

    return LibraryStatus(
        library=library,
        version=store.version,
        path=store.path,
        index=index,
        page_files=len(store.page_files()),
        interruption=status,
        notes=notes,
    )
