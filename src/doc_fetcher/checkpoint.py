"""Checkpoint persistence and interruption detection.

A checkpoint is written next to the cache entry while a crawl runs and is
removed when the crawl finishes. Loading ignores checkpoints with another
schema version and checkpoints older than ``checkpoint_max_age_days``.

Write failures are logged and swallowed: losing a checkpoint costs at most the
progress since the previous save, never the crawl itself.
"""

import json
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from loguru import logger
from pydantic import ValidationError

from doc_fetcher.config import CrawlOptions
from doc_fetcher.models import Checkpoint, PageDescriptor, PageRecord, utcnow
from doc_fetcher.storage import LibraryStore, atomic_write_text
from doc_fetcher.urls import normalize_url

CHECKPOINT_FILENAME = ".checkpoint.json"
SCHEMA_VERSION = "1.0"


@dataclass
class InterruptionStatus:
    """Result of interruption detection.

    Advisory only: the directory heuristics can misfire on hand-edited caches.
    When ``checkpoint`` is set it is authoritative.
    """

    interrupted: bool
    can_resume: bool = False
    reason: str | None = None
    checkpoint: Checkpoint | None = None


class CheckpointManager:
    """Reads and writes ``.checkpoint.json`` for one cache entry."""

    def __init__(self, store: LibraryStore, options: CrawlOptions):
        self.store = store
        self.options = options
        self.path = store.path / CHECKPOINT_FILENAME

    @property
    def max_age(self) -> timedelta:
        return timedelta(days=self.options.checkpoint_max_age_days)

    def exists(self) -> bool:
        return self.path.is_file()

    def load(self, now: datetime | None = None) -> Checkpoint | None:
        """The current checkpoint, or None if missing, foreign, corrupt or stale."""
        try:
            raw = json.loads(self.path.read_text("utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to load checkpoint: {e}")
            return None

        found = raw.get("schemaVersion") if isinstance(raw, dict) else None
        if found != SCHEMA_VERSION:
            logger.warning(
                f"Checkpoint version mismatch (found: {found}, expected: {SCHEMA_VERSION})"
            )
            return None

        try:
            checkpoint = Checkpoint.model_validate(raw)
        except ValidationError as e:
            logger.warning(f"Invalid checkpoint ignored: {e.error_count()} errors")
            return None

        age = (now or utcnow()) - checkpoint.last_saved_at
        if age > self.max_age:
            logger.warning(f"Checkpoint is stale ({age.days} days old), ignoring")
            return None
        return checkpoint

    def save(self, checkpoint: Checkpoint) -> bool:
        """Persist *checkpoint*, stamping ``last_saved_at``. Never raises on I/O."""
        checkpoint.completed_pages = len(checkpoint.completed)
        checkpoint.last_saved_at = utcnow()
        try:
            atomic_write_text(self.path, checkpoint.to_json())
        except OSError as e:
            logger.warning(f"Failed to save checkpoint: {e}")
            return False
        logger.debug(
            f"Checkpoint saved: {checkpoint.completed_pages}/{checkpoint.total_pages} pages"
        )
        return True

    def delete(self) -> bool:
        try:
            self.path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.warning(f"Failed to delete checkpoint: {e}")
            return False
        return True

    def create(
        self,
        target_id: str,
        descriptors: list[PageDescriptor],
        *,
        operation: str = "fetch",
        metadata: dict[str, Any] | None = None,
    ) -> Checkpoint:
        """Start a fresh checkpoint for *descriptors* and write it."""
        checkpoint = Checkpoint(
            schema_version=SCHEMA_VERSION,
            operation=operation,
            target_id=target_id,
            total_pages=len(descriptors),
            pending=[d.url for d in descriptors],
            metadata=metadata or {},
        )
        self.save(checkpoint)
        return checkpoint

    def detect_interrupted(self) -> InterruptionStatus:
        """Look for signs that a previous run on this entry did not finish."""
        checkpoint = self.load()
        if checkpoint is not None:
            return InterruptionStatus(
                interrupted=True,
                can_resume=True,
                reason="Active checkpoint found",
                checkpoint=checkpoint,
            )

        store = self.store
        if not store.pages_dir.is_dir():
            return InterruptionStatus(interrupted=False)

        if not store.has_manifest():
            return InterruptionStatus(
                interrupted=True,
                can_resume=True,
                reason="Pages directory exists but no sitemap.json",
            )

        manifest = store.load_manifest()
        page_count = len(store.page_files())
        if manifest is not None and len(manifest.pages) != page_count:
            return InterruptionStatus(
                interrupted=True,
                can_resume=True,
                reason=(
                    f"Sitemap has {len(manifest.pages)} pages "
                    f"but {page_count} files found"
                ),
            )

        return InterruptionStatus(interrupted=False)

    def build_recovery_state(
        self,
        descriptors: list[PageDescriptor],
        target_id: str,
        *,
        operation: str = "fetch",
    ) -> Checkpoint:
        """Rebuild resume state from page files when no checkpoint survived.

        Pages on disk whose header URL is among *descriptors* count as
        completed; everything else is pending. Nothing is written.
        """
        by_key = {normalize_url(d.url): d for d in descriptors}
        completed: list[PageRecord] = []
        done: set[str] = set()

        for path in self.store.page_files():
            header = self.store.read_page_header(path)
            if not header or not header.get("url"):
                continue
            key = normalize_url(header["url"])
            descriptor = by_key.get(key)
            if descriptor is None or key in done:
                continue
            done.add(key)
            completed.append(
                PageRecord(
                    url=descriptor.url,
                    title=header.get("title") or None,
                    filename=path.name,
                    size_bytes=path.stat().st_size,
                    last_modified=descriptor.last_modified,
                    change_frequency=descriptor.change_frequency,
                    priority=descriptor.priority,
                )
            )

        pending = [d.url for key, d in by_key.items() if key not in done]
        total = len(by_key)
        percent = round(len(completed) / total * 100) if total else 0
        logger.info(
            f"Recovered {len(completed)}/{total} pages from disk ({percent}%), "
            f"{len(pending)} pending"
        )
        return Checkpoint(
            schema_version=SCHEMA_VERSION,
            operation=operation,
            target_id=target_id,
            total_pages=total,
            completed_pages=len(completed),
            completed=completed,
            pending=pending,
            metadata={"recovered": True},
        )


def _format_age(age: timedelta) -> str:
    minutes = int(age.total_seconds() // 60)
    hours, days = minutes // 60, age.days
    if days > 0:
        return f"{days} day{'s' if days > 1 else ''} ago"
    if hours > 0:
        return f"{hours} hour{'s' if hours > 1 else ''} ago"
    return f"{minutes} minute{'s' if minutes != 1 else ''} ago"


def format_checkpoint_info(checkpoint: Checkpoint | None, now: datetime | None = None) -> str:
    """Multi-line human summary of a checkpoint."""
    if checkpoint is None:
        return "No checkpoint found"

    now = now or utcnow()
    percent = (
        round(checkpoint.completed_pages / checkpoint.total_pages * 100)
        if checkpoint.total_pages
        else 0
    )
    return "\n".join(
        [
            "Checkpoint Info:",
            f"   Operation: {checkpoint.operation}",
            f"   Target: {checkpoint.target_id}",
            f"   Progress: {checkpoint.completed_pages}/{checkpoint.total_pages} pages ({percent}%)",
            f"   Failed: {len(checkpoint.failed)}",
            f"   Last updated: {_format_age(now - checkpoint.last_saved_at)}",
            f"   Started: {checkpoint.started_at.isoformat(timespec='seconds')}",
        ]
    )
