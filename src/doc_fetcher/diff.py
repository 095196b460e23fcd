"""Incremental sync: compare a cached manifest with a fresh discovery.

Pages are matched by normalized URL. A page present on both sides is
*modified* when, in priority order:

1. both sides carry a parseable timestamp and the new one is later;
2. otherwise both sides carry a size and the sizes differ;
3. otherwise both sides carry a title and the titles differ.

Anything else is *unchanged*: without evidence of change the cached copy is
kept rather than refetched.
"""

from collections.abc import Sequence
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime

from doc_fetcher.models import (
    DiffEntry,
    DiffResult,
    DiffStats,
    Manifest,
    PageDescriptor,
    PageRecord,
)
from doc_fetcher.urls import normalize_url


def parse_timestamp(value: str | None) -> datetime | None:
    """Sitemap ``lastmod`` (W3C datetime) or HTTP-date as an aware datetime."""
    if not value:
        return None
    text = value.strip()
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        try:
            parsed = parsedate_to_datetime(text)
        except (TypeError, ValueError, IndexError):
            return None
        if parsed is None:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def has_changed(old: PageRecord, new: PageDescriptor | PageRecord) -> bool:
    old_ts = parse_timestamp(old.last_modified)
    new_ts = parse_timestamp(new.last_modified)
    if old_ts is not None and new_ts is not None:
        return new_ts > old_ts

    old_size, new_size = old.size_bytes, getattr(new, "size_bytes", None)
    if old_size and new_size and old_size != new_size:
        return True

    old_title, new_title = old.title, getattr(new, "title", None)
    if old_title and new_title and old_title != new_title:
        return True

    return False


def _by_key(entries: Sequence[PageDescriptor | PageRecord]) -> dict:
    keyed: dict = {}
    for entry in entries:
        keyed.setdefault(normalize_url(entry.url), entry)
    return keyed


def diff(
    old_manifest: Manifest, new_entries: Sequence[PageDescriptor | PageRecord]
) -> DiffResult:
    """Classify every page as unchanged, modified, added or removed."""
    old_map: dict[str, PageRecord] = _by_key(old_manifest.pages)
    new_map = _by_key(new_entries)
    result = DiffResult()

    for key, new in new_map.items():
        new_title = getattr(new, "title", None)
        old = old_map.get(key)
        if old is None:
            result.added.append(
                DiffEntry(
                    key=key,
                    url=new.url,
                    title=new_title,
                    size_bytes=getattr(new, "size_bytes", None),
                    last_modified=new.last_modified,
                )
            )
        elif has_changed(old, new):
            result.modified.append(
                DiffEntry(
                    key=key,
                    url=new.url,
                    title=new_title or old.title,
                    filename=old.filename,
                    size_bytes=old.size_bytes,
                    last_modified=new.last_modified,
                    old_last_modified=old.last_modified,
                    old_title=old.title,
                )
            )
        else:
            result.unchanged.append(
                DiffEntry(
                    key=key,
                    url=new.url,
                    title=old.title,
                    filename=old.filename,
                    size_bytes=old.size_bytes,
                    last_modified=old.last_modified,
                )
            )

    for key, old in old_map.items():
        if key not in new_map:
            result.removed.append(
                DiffEntry(
                    key=key,
                    url=old.url,
                    title=old.title,
                    filename=old.filename,
                    size_bytes=old.size_bytes,
                    last_modified=old.last_modified,
                )
            )

    result.stats = DiffStats(
        total=len(new_map),
        unchanged=len(result.unchanged),
        modified=len(result.modified),
        added=len(result.added),
        removed=len(result.removed),
        needs_fetch=len(result.modified) + len(result.added),
        percent_unchanged=round(len(result.unchanged) / len(old_map) * 100) if old_map else 0,
    )
    return result


def format_diff_summary(result: DiffResult) -> str:
    stats = result.stats
    lines = [f"Found {stats.total} pages in new discovery"]
    if stats.unchanged:
        lines.append(f"  = {stats.unchanged} pages unchanged ({stats.percent_unchanged}%)")
    if stats.modified:
        lines.append(f"  ! {stats.modified} pages modified")
    if stats.added:
        lines.append(f"  + {stats.added} pages added")
    if stats.removed:
        lines.append(f"  - {stats.removed} pages removed")

    if stats.needs_fetch:
        saved = stats.total - stats.needs_fetch
        saved_percent = round(saved / stats.total * 100) if stats.total else 0
        lines.append(f"Will fetch {stats.needs_fetch} pages (saving {saved_percent}% bandwidth)")
    else:
        lines.append("No changes detected - documentation is up to date")
    return "\n".join(lines)
