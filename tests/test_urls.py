from doc_fetcher.urls import (
    extract_domain,
    is_doc_url,
    is_excluded_link,
    normalize_url,
    page_filename,
    resolve_url,
    same_host,
    sanitize_filename,
    url_digest,
)


class TestNormalizeUrl:
    def test_trailing_slash_and_fragment(self):
        assert normalize_url("https://a.test/docs/intro/#setup") == "https://a.test/docs/intro"

    def test_case_of_scheme_and_host(self):
        assert normalize_url("HTTPS://Docs.A.Test/Guide") == "https://docs.a.test/Guide"

    def test_query_sorted(self):
        assert normalize_url("https://a.test/p?b=2&a=1") == "https://a.test/p?a=1&b=2"

    def test_root_becomes_origin(self):
        assert normalize_url("https://a.test/") == "https://a.test"

    def test_same_page_variants_share_key(self):
        variants = [
            "https://a.test/docs",
            "https://a.test/docs/",
            "https://A.test/docs#top",
        ]
        assert len({normalize_url(v) for v in variants}) == 1

    def test_relative_string(self):
        assert normalize_url("docs/intro/") == "docs/intro"

    def test_empty(self):
        assert normalize_url("") == ""


def test_page_filename():
    assert page_filename("https://a.test/") == "index.md"
    assert page_filename("https://a.test/docs/getting-started/") == "docs-getting-started.md"
    assert page_filename("https://a.test/API/Ref") == "API-Ref.md"


def test_page_filename_hash_suffix():
    digest = url_digest("https://a.test/search?q=1")
    assert len(digest) == 8
    assert page_filename("https://a.test/search?q=1") == f"search-{digest}.md"
    assert page_filename("https://a.test/search?q=1") != page_filename("https://a.test/search?q=2")
    assert page_filename("https://a.test/docs/intro", unique=True) == (
        f"docs-intro-{url_digest('https://a.test/docs/intro')}.md"
    )
    assert url_digest("https://a.test/docs/") == url_digest("https://A.test/docs#top")


def test_sanitize_filename():
    assert sanitize_filename('My Lib: "v2"') == "my-lib---v2-"
    assert "/" not in sanitize_filename("../../etc/passwd")


def test_resolve_url():
    assert resolve_url("https://a.test/docs/", "intro") == "https://a.test/docs/intro"
    assert resolve_url("https://a.test/docs/", "mailto:x@a.test") is None
    assert resolve_url("https://a.test/docs/", "javascript:void(0)") is None


def test_domain_helpers():
    assert extract_domain("https://Docs.A.test/x") == "docs.a.test"
    assert extract_domain("not a url") is None
    assert same_host("https://a.test/x", "https://a.test/y")
    assert not same_host("https://a.test/x", "https://b.test/x")


def test_doc_heuristics():
    assert is_doc_url("https://a.test/docs/intro")
    assert is_doc_url("https://a.test/getting-started")
    assert not is_doc_url("https://a.test/about")
    assert is_excluded_link("https://a.test/blog/post")
    assert is_excluded_link("https://a.test/logo.png")
    assert is_excluded_link("#section")
