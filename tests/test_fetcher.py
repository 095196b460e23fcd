"""End-to-end tests for fetch, update and status against an in-memory site."""

import pytest

from doc_fetcher.checkpoint import CheckpointManager
from doc_fetcher.config import RobotsMode
from doc_fetcher.errors import CrawlFailedError, DiscoveryError, RobotsPolicyError
from doc_fetcher.fetcher import (
    FetchOutcome,
    UpdateOutcome,
    fetch_documentation,
    library_status,
    update_documentation,
)
from doc_fetcher.models import Manifest, PageDescriptor
from doc_fetcher.storage import LibraryStore

BASE = "https://docs.example.com"
DOCS = f"{BASE}/docs"

LLMS_FULL = "# Example\n\n## Installation\n\n" + "\n".join(
    f"Paragraph {i} explains one more detail about using Example." for i in range(12)
)


@pytest.fixture
def docs_site(site, page, sitemap):
    site.routes[f"{BASE}/sitemap.xml"] = sitemap(
        [(f"{DOCS}/{name}", "2024-01-01") for name in "abc"]
    )
    for name in "abcd":
        site.routes[f"{DOCS}/{name}"] = page(f"Page {name.upper()}")
    return site


@pytest.fixture
def store(tmp_path):
    return LibraryStore(tmp_path, "example", "1.0")


async def _fetch(site, options, extractor, tmp_path, **kwargs):
    return await fetch_documentation(
        "example",
        "1.0",
        kwargs.pop("source_url", DOCS),
        options,
        cache_dir=tmp_path,
        extractor=extractor,
        transport=site.transport,
        **kwargs,
    )


async def _update(site, options, extractor, tmp_path):
    return await update_documentation(
        "example",
        "1.0",
        options,
        cache_dir=tmp_path,
        extractor=extractor,
        transport=site.transport,
    )


# -----------------------------------------------------------------------
# fetch
# -----------------------------------------------------------------------


class TestFetch:
    @pytest.mark.asyncio
    async def test_sitemap_fetch(self, docs_site, options, extractor, tmp_path, store):
        outcome = await _fetch(docs_site, options, extractor, tmp_path)

        assert isinstance(outcome, FetchOutcome)
        assert outcome.path == store.path
        assert outcome.discovery.source_type == "sitemap"
        assert outcome.crawl.successful == 3

        index = store.load_index()
        assert index.page_count == 3
        assert index.source_url == DOCS
        assert index.source_file_url == f"{BASE}/sitemap.xml"
        assert index.total_size_bytes > 0

        manifest = store.load_manifest()
        assert manifest.urls() == [f"{DOCS}/{n}" for n in "abc"]
        assert all(p.last_modified == "2024-01-01" for p in manifest.pages)
        assert [p.name for p in store.page_files()] == ["docs-a.md", "docs-b.md", "docs-c.md"]
        assert not CheckpointManager(store, options).exists()

    @pytest.mark.asyncio
    async def test_resumes_from_checkpoint(self, docs_site, options, extractor, tmp_path, store):
        descriptors = [PageDescriptor(url=f"{DOCS}/{n}") for n in "abc"]
        checkpoints = CheckpointManager(store, options)
        cp = checkpoints.create("example@1.0", descriptors)
        cp.completed.append(store.save_page(f"{DOCS}/a", "# A", "Page A"))
        cp.pending = cp.pending[1:]
        checkpoints.save(cp)

        outcome = await _fetch(docs_site, options, extractor, tmp_path)

        assert outcome.crawl.resumed is True
        assert sorted(extractor.calls) == [f"{DOCS}/b", f"{DOCS}/c"]
        assert docs_site.hits(f"{DOCS}/a") == 0
        assert store.load_manifest().urls() == [f"{DOCS}/a", f"{DOCS}/b", f"{DOCS}/c"]
        assert not checkpoints.exists()

    @pytest.mark.asyncio
    async def test_recovers_from_page_files(self, docs_site, options, extractor, tmp_path, store):
        store.save_page(f"{DOCS}/b", "# B", "Page B")

        outcome = await _fetch(docs_site, options, extractor, tmp_path)

        assert outcome.crawl.resumed is True
        assert sorted(extractor.calls) == [f"{DOCS}/a", f"{DOCS}/c"]
        assert outcome.index.page_count == 3

    @pytest.mark.asyncio
    async def test_prunes_unreferenced_pages(self, docs_site, options, extractor, tmp_path, store):
        old = store.save_page(f"{DOCS}/retired", "# Old", "Old")
        store.save_manifest(Manifest(pages=[old]))

        await _fetch(docs_site, options, extractor, tmp_path)

        assert "docs-retired.md" not in [p.name for p in store.page_files()]
        assert len(store.page_files()) == 3

    @pytest.mark.asyncio
    async def test_case_variant_urls_keep_separate_files(
        self, site, page, sitemap, options, extractor, make_extractor, tmp_path, store
    ):
        urls = [f"{DOCS}/Intro", f"{DOCS}/intro", f"{DOCS}/setup"]
        site.routes[f"{BASE}/sitemap.xml"] = sitemap([(u, None) for u in urls])
        for url in urls:
            site.routes[url] = page(url.rsplit("/", 1)[1])

        outcome = await _fetch(site, options, extractor, tmp_path)

        assert outcome.index.page_count == 3
        filenames = [p.filename for p in store.load_manifest().pages]
        assert len({f.casefold() for f in filenames}) == 3
        assert len(store.page_files()) == 3
        for record in store.load_manifest().pages:
            header = store.read_page_header(store.pages_dir / record.filename)
            assert header["url"] == record.url

        status = library_status("example", "1.0", options, cache_dir=tmp_path)
        assert status.interruption.interrupted is False

        again = make_extractor()
        second = await _fetch(site, options, again, tmp_path)
        assert second.crawl.resumed is False
        assert sorted(again.calls) == sorted(urls)
        assert [p.filename for p in store.load_manifest().pages] == filenames

    @pytest.mark.asyncio
    async def test_all_pages_failing_raises(self, docs_site, options, extractor, tmp_path, store):
        for name in "abc":
            docs_site.routes[f"{DOCS}/{name}"] = (503, "down")
        opts = options.model_copy(update={"max_retries": 0})

        with pytest.raises(CrawlFailedError):
            await _fetch(docs_site, opts, extractor, tmp_path)
        assert store.load_index() is None
        assert not store.has_manifest()

    @pytest.mark.asyncio
    async def test_llms_full_stored_inline(self, site, options, extractor, tmp_path, store):
        site.routes[f"{BASE}/llms-full.txt"] = LLMS_FULL

        outcome = await _fetch(site, options, extractor, tmp_path, source_url=BASE)

        assert outcome.discovery.source_type == "llms.txt"
        assert extractor.calls == []
        assert [p.name for p in store.page_files()] == ["index.md"]
        assert store.load_manifest().pages[0].filename == "index.md"
        assert (store.pages_dir / "index.md").read_text("utf-8").endswith(LLMS_FULL)

    @pytest.mark.asyncio
    async def test_github_readme_only(self, site, options, extractor, tmp_path, store):
        site.routes["https://api.github.com/repos/acme/widget/readme"] = "# Widget\n\nDocs."

        outcome = await _fetch(
            site, options, extractor, tmp_path, source_url=None, repository="acme/widget"
        )

        assert outcome.index.source_type == "github-readme"
        assert outcome.index.repository == "acme/widget"
        assert outcome.index.page_count == 1

    @pytest.mark.asyncio
    async def test_requires_a_source(self, site, options, extractor, tmp_path):
        with pytest.raises(DiscoveryError):
            await _fetch(site, options, extractor, tmp_path, source_url=None)

    @pytest.mark.asyncio
    async def test_strict_robots_failure_aborts(self, docs_site, options, extractor, tmp_path):
        docs_site.routes[f"{BASE}/robots.txt"] = (500, "oops")
        opts = options.model_copy(update={"robots_mode": RobotsMode.STRICT})

        with pytest.raises(RobotsPolicyError):
            await _fetch(docs_site, opts, extractor, tmp_path)
        assert extractor.calls == []


# -----------------------------------------------------------------------
# update
# -----------------------------------------------------------------------


class TestUpdate:
    @pytest.mark.asyncio
    async def test_no_changes(self, docs_site, options, extractor, make_extractor, tmp_path):
        first = await _fetch(docs_site, options, extractor, tmp_path)
        second = make_extractor()

        outcome = await _update(docs_site, options, second, tmp_path)

        assert isinstance(outcome, UpdateOutcome)
        assert outcome.diff.has_changes is False
        assert outcome.crawl is None
        assert second.calls == []
        assert outcome.index.updated_at is not None
        assert outcome.index.fetched_at == first.index.fetched_at

    @pytest.mark.asyncio
    async def test_refetches_only_changed_pages(
        self, docs_site, options, extractor, make_extractor, sitemap, tmp_path, store
    ):
        await _fetch(docs_site, options, extractor, tmp_path)
        docs_site.routes[f"{BASE}/sitemap.xml"] = sitemap(
            [
                (f"{DOCS}/a", "2024-01-01"),
                (f"{DOCS}/b", "2024-02-01"),
                (f"{DOCS}/d", "2024-02-01"),
            ]
        )
        second = make_extractor()

        outcome = await _update(docs_site, options, second, tmp_path)

        assert sorted(second.calls) == [f"{DOCS}/b", f"{DOCS}/d"]
        assert outcome.diff.stats.unchanged == 1
        assert outcome.diff.stats.removed == 1

        manifest = store.load_manifest()
        assert manifest.urls() == [f"{DOCS}/a", f"{DOCS}/b", f"{DOCS}/d"]
        assert manifest.pages[1].last_modified == "2024-02-01"
        assert [p.name for p in store.page_files()] == ["docs-a.md", "docs-b.md", "docs-d.md"]
        assert outcome.index.page_count == 3

    @pytest.mark.asyncio
    async def test_removal_only(
        self, docs_site, options, extractor, make_extractor, sitemap, tmp_path, store
    ):
        await _fetch(docs_site, options, extractor, tmp_path)
        docs_site.routes[f"{BASE}/sitemap.xml"] = sitemap([(f"{DOCS}/a", "2024-01-01")])
        second = make_extractor()

        outcome = await _update(docs_site, options, second, tmp_path)

        assert second.calls == []
        assert outcome.index.page_count == 1
        assert [p.name for p in store.page_files()] == ["docs-a.md"]

    @pytest.mark.asyncio
    async def test_failed_refetch_keeps_cached_page(
        self, docs_site, options, extractor, make_extractor, sitemap, tmp_path, store
    ):
        await _fetch(docs_site, options, extractor, tmp_path)
        docs_site.routes[f"{BASE}/sitemap.xml"] = sitemap(
            [
                (f"{DOCS}/a", "2024-02-01"),
                (f"{DOCS}/b", "2024-02-01"),
                (f"{DOCS}/c", "2024-01-01"),
            ]
        )
        docs_site.routes[f"{DOCS}/a"] = (404, "gone for now")

        outcome = await _update(docs_site, options, make_extractor(), tmp_path)

        assert outcome.crawl.failed == 1
        manifest = store.load_manifest()
        assert manifest.urls() == [f"{DOCS}/a", f"{DOCS}/b", f"{DOCS}/c"]
        assert manifest.pages[0].last_modified == "2024-01-01"
        assert (store.pages_dir / "docs-a.md").is_file()

    @pytest.mark.asyncio
    async def test_inline_source_unchanged_then_changed(
        self, site, options, extractor, tmp_path, store
    ):
        site.routes[f"{BASE}/llms-full.txt"] = LLMS_FULL
        await _fetch(site, options, extractor, tmp_path, source_url=BASE)

        same = await _update(site, options, extractor, tmp_path)
        assert same.diff.has_changes is False

        site.routes[f"{BASE}/llms-full.txt"] = LLMS_FULL + "\n\n## Usage\n\nNew section."
        changed = await _update(site, options, extractor, tmp_path)
        assert changed.diff.stats.modified == 1
        assert (store.pages_dir / "index.md").read_text("utf-8").endswith("New section.")

    @pytest.mark.asyncio
    async def test_without_cache_falls_back_to_fetch(
        self, docs_site, options, extractor, tmp_path
    ):
        outcome = await update_documentation(
            "example",
            "1.0",
            options,
            cache_dir=tmp_path,
            source_url=DOCS,
            extractor=extractor,
            transport=docs_site.transport,
        )
        assert isinstance(outcome, FetchOutcome)
        assert outcome.index.page_count == 3
        assert outcome.index.updated_at is None

    @pytest.mark.asyncio
    async def test_without_cache_or_source(self, site, options, extractor, tmp_path):
        with pytest.raises(DiscoveryError):
            await _update(site, options, extractor, tmp_path)


# -----------------------------------------------------------------------
# status
# -----------------------------------------------------------------------


class TestStatus:
    def test_not_fetched(self, options, tmp_path):
        status = library_status("example", "1.0", options, cache_dir=tmp_path)
        assert status.index is None
        assert "Not fetched yet" in status.describe()

    @pytest.mark.asyncio
    async def test_after_fetch(self, docs_site, options, extractor, tmp_path):
        await _fetch(docs_site, options, extractor, tmp_path)
        status = library_status("example", "1.0", options, cache_dir=tmp_path)
        text = status.describe()
        assert "Pages: 3 (3 files)" in text
        assert "Source: sitemap" in text
        assert status.interruption.interrupted is False

    def test_interrupted(self, options, tmp_path, store):
        CheckpointManager(store, options).create(
            "example@1.0", [PageDescriptor(url=f"{DOCS}/a")]
        )
        status = library_status("example", "1.0", options, cache_dir=tmp_path)
        assert status.interruption.interrupted is True
        assert "Checkpoint Info:" in status.describe()
