"""Crawl orchestrator: fetch, extract and store a list of page descriptors.

Descriptors are processed with bounded concurrency (``options.concurrency``).
For each one: robots check, crawl delay, fetch with categorized retries,
extraction, page write. Progress is checkpointed every
``checkpoint_interval`` successful pages, on cancellation and on errors, and
the checkpoint is deleted once every descriptor has been processed.
"""

import asyncio
from collections.abc import Iterable
from typing import Any

from loguru import logger

from doc_fetcher.checkpoint import CheckpointManager
from doc_fetcher.config import CrawlOptions
from doc_fetcher.errors import (
    CategorizedError,
    ErrorCategory,
    PageFetchError,
    format_error_message,
    summarize_errors,
    to_failed_page,
)
from doc_fetcher.http_client import HttpClient
from doc_fetcher.models import (
    Checkpoint,
    CrawlResult,
    FailedPage,
    PageDescriptor,
    PageRecord,
    RateLimitState,
)
from doc_fetcher.robots import Politeness
from doc_fetcher.sources.extractor import ContentExtractor
from doc_fetcher.storage import LibraryStore
from doc_fetcher.urls import normalize_url


def select_targets(
    descriptors: Iterable[PageDescriptor],
    max_pages: int,
    allow_urls: set[str] | None = None,
) -> tuple[list[PageDescriptor], bool]:
    """Deduplicate, apply the allow-filter, then truncate to *max_pages*.

    Returns the target list and whether truncation happened. Completed pages
    are removed afterwards, so resuming never shifts the truncation window.
    """
    allowed = {normalize_url(u) for u in allow_urls} if allow_urls is not None else None
    seen: set[str] = set()
    targets: list[PageDescriptor] = []
    for descriptor in descriptors:
        key = normalize_url(descriptor.url)
        if key in seen:
            continue
        seen.add(key)
        if allowed is not None and key not in allowed:
            continue
        targets.append(descriptor)

    truncated = len(targets) > max_pages
    if truncated:
        logger.warning(f"Limiting to {max_pages} pages ({len(targets)} total found)")
        targets = targets[:max_pages]
    return targets, truncated


class CrawlOrchestrator:
    """State of one crawl run. Use :func:`crawl_pages` unless you need the pieces."""

    def __init__(
        self,
        store: LibraryStore,
        options: CrawlOptions,
        *,
        politeness: Politeness,
        client: HttpClient,
        extractor: ContentExtractor,
        checkpoints: CheckpointManager | None = None,
    ):
        self.store = store
        self.options = options
        self.politeness = politeness
        self.client = client
        self.extractor = extractor
        self.checkpoints = checkpoints if options.checkpoints_enabled else None

        self.pages: list[PageRecord] = []
        self.failed_pages: list[FailedPage] = []
        self.skipped = 0
        self.rate_limit = RateLimitState()
        self._targets: list[PageDescriptor] = []
        self._checkpoint: Checkpoint | None = None
        self._since_save = 0

    # -- checkpointing ------------------------------------------------------

    def _pending_urls(self) -> list[str]:
        done = {normalize_url(p.url) for p in self.pages}
        done.update(normalize_url(f.url) for f in self.failed_pages)
        return [d.url for d in self._targets if normalize_url(d.url) not in done]

    def save_checkpoint(self, force: bool = False) -> bool:
        """Snapshot progress if the interval is reached or *force* is set."""
        if self._checkpoint is None or self.checkpoints is None:
            return False
        if not force and self._since_save < self.options.checkpoint_interval:
            return False

        cp = self._checkpoint
        cp.total_pages = len(self._targets)
        cp.completed = list(self.pages)
        cp.failed = list(self.failed_pages)
        cp.pending = self._pending_urls()
        cp.rate_limit_state = self.rate_limit.model_copy() if self.rate_limit.rate_limited else None
        self._since_save = 0
        return self.checkpoints.save(cp)

    def _start_checkpoint(
        self,
        resume_state: Checkpoint | None,
        target_id: str,
        operation: str,
        metadata: dict[str, Any] | None,
    ) -> None:
        if self.checkpoints is None:
            return
        if resume_state is not None and resume_state.target_id == target_id:
            self._checkpoint = resume_state.model_copy(deep=True)
            self._checkpoint.operation = operation
            if metadata:
                self._checkpoint.metadata.update(metadata)
            self.save_checkpoint(force=True)
        else:
            self._checkpoint = self.checkpoints.create(
                target_id, self._targets, operation=operation, metadata=metadata
            )
            if self.pages:
                self.save_checkpoint(force=True)

    # -- per page -----------------------------------------------------------

    def _record_failure(self, url: str, error: CategorizedError, attempts: int) -> None:
        self.failed_pages.append(to_failed_page(url, error, attempts))
        if error.category is ErrorCategory.RATE_LIMIT:
            self.rate_limit.rate_limited = True
        logger.warning(format_error_message(error, url))

    def _local_failure(self, url: str, category: ErrorCategory, message: str) -> None:
        self._record_failure(
            url,
            CategorizedError(
                category=category,
                retryable=False,
                message=message,
                suggested_action="Check the page content and retry later",
            ),
            1,
        )

    async def process(self, descriptor: PageDescriptor, sem: asyncio.Semaphore) -> None:
        url = descriptor.url
        async with sem:
            if not self.politeness.allowed(url):
                self.skipped += 1
                return

            delay_ms = self.politeness.effective_delay_ms()
            if delay_ms > 0:
                await asyncio.sleep(delay_ms / 1000)

            try:
                response, _attempts = await self.client.fetch_with_retry(
                    url, rate_limit=self.rate_limit
                )
            except PageFetchError as e:
                self._record_failure(url, e.error, e.attempts)
                return

            try:
                extraction = await self.extractor.extract(response.text, url)
            except Exception as e:  # extractor is a pluggable collaborator
                self._local_failure(url, ErrorCategory.EXTRACTION, f"Extraction failed: {e}")
                return
            if not extraction.success:
                self._local_failure(
                    url,
                    ErrorCategory.EXTRACTION,
                    f"Extraction failed: {extraction.error or 'no content'}",
                )
                return

            try:
                record = self.store.save_page(url, extraction.markdown, extraction.title)
            except OSError as e:
                self._local_failure(url, ErrorCategory.SAVE_ERROR, f"Failed to save page: {e}")
                return

            self.pages.append(
                record.model_copy(
                    update={
                        "last_modified": descriptor.last_modified,
                        "change_frequency": descriptor.change_frequency,
                        "priority": descriptor.priority,
                    }
                )
            )
            self._since_save += 1
            self.save_checkpoint()

            done = len(self.pages) + len(self.failed_pages) + self.skipped
            if done % 10 == 0:
                logger.info(f"Progress: {done}/{len(self._targets)} pages processed")

    # -- run ----------------------------------------------------------------

    async def run(
        self,
        descriptors: list[PageDescriptor],
        *,
        resume_state: Checkpoint | None = None,
        allow_urls: set[str] | None = None,
        target_id: str | None = None,
        operation: str = "fetch",
        metadata: dict[str, Any] | None = None,
    ) -> CrawlResult:
        targets, truncated = select_targets(descriptors, self.options.max_pages, allow_urls)
        self._targets = targets
        target_id = target_id or f"{self.store.library}@{self.store.version}"

        completed = set()
        if resume_state is not None:
            target_keys = {normalize_url(d.url) for d in targets}
            for record in resume_state.completed:
                key = normalize_url(record.url)
                if key in target_keys and key not in completed:
                    completed.add(key)
                    self.pages.append(record)
            if resume_state.rate_limit_state is not None:
                self.rate_limit = resume_state.rate_limit_state.model_copy()
            logger.info(f"Resuming: {len(completed)}/{len(targets)} pages already done")

        todo = [d for d in targets if normalize_url(d.url) not in completed]
        logger.info(
            f"Crawling {len(todo)} pages with concurrency {self.options.concurrency}"
        )

        self._start_checkpoint(resume_state, target_id, operation, metadata)

        sem = asyncio.Semaphore(self.options.concurrency)
        tasks = [asyncio.create_task(self.process(d, sem)) for d in todo]
        try:
            await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.warning("Crawl interrupted, saving checkpoint")
            self.save_checkpoint(force=True)
            raise

        if self.checkpoints is not None:
            self.checkpoints.delete()

        return self._result(resumed=resume_state is not None, truncated=truncated)

    def _result(self, *, resumed: bool, truncated: bool) -> CrawlResult:
        summary = summarize_errors(self.failed_pages)
        result = CrawlResult(
            successful=len(self.pages),
            failed=len(self.failed_pages),
            skipped=self.skipped,
            total_size=sum(p.size_bytes or 0 for p in self.pages),
            pages=list(self.pages),
            failed_pages=list(self.failed_pages),
            rate_limited=self.rate_limit.rate_limited,
            resumed=resumed,
            truncated=truncated,
            error_summary=summary,
        )
        log_summary(result)
        return result


def log_summary(result: CrawlResult) -> None:
    """Final crawl report: counts, failures per category and a sample of URLs."""
    logger.info(
        f"Crawl finished: {result.successful} successful, {result.failed} failed, "
        f"{result.skipped} skipped"
    )
    if result.skipped:
        logger.warning(f"Skipped {result.skipped} pages (disallowed by robots.txt)")
    if result.rate_limited:
        logger.warning("Rate limiting was encountered during this crawl")

    summary = result.error_summary
    if not summary.get("total"):
        return
    counts = ", ".join(f"{cat}: {n}" for cat, n in summary["by_category"].items() if n)
    logger.warning(f"Failures by category: {counts}")
    for sample in summary["sample"]:
        logger.warning(f"  {sample['category']}: {sample['url']} ({sample['message']})")
    remaining = summary["total"] - len(summary["sample"])
    if remaining > 0:
        logger.warning(f"  ... and {remaining} more")


async def crawl_pages(
    descriptors: list[PageDescriptor],
    store: LibraryStore,
    options: CrawlOptions,
    *,
    politeness: Politeness,
    client: HttpClient,
    extractor: ContentExtractor,
    resume_state: Checkpoint | None = None,
    allow_urls: set[str] | None = None,
    checkpoints: CheckpointManager | None = None,
    target_id: str | None = None,
    operation: str = "fetch",
    metadata: dict[str, Any] | None = None,
) -> CrawlResult:
    """Fetch *descriptors* into *store* and return the crawl outcome."""
    store.ensure()
    orchestrator = CrawlOrchestrator(
        store,
        options,
        politeness=politeness,
        client=client,
        extractor=extractor,
        checkpoints=checkpoints,
    )
    return await orchestrator.run(
        descriptors,
        resume_state=resume_state,
        allow_urls=allow_urls,
        target_id=target_id,
        operation=operation,
        metadata=metadata,
    )
