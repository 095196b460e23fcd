"""Tests for llms.txt discovery and validation."""

import pytest

from doc_fetcher.http_client import HttpClient
from doc_fetcher.robots import Politeness
from doc_fetcher.sources.llms_txt import (
    discover_llms_txt,
    extract_title,
    extract_urls,
    extract_version,
    find_llms_txt,
    validate_content,
)

BASE = "https://docs.example.com"

_FILLER = "\n".join(
    f"Example keeps its documentation short and readable, part {i}." for i in range(12)
)

LLMS_TXT = f"""# Example Library

> Example is a library for building examples. Version: 2.4.1

## Getting Started

- [Installation](https://docs.example.com/docs/installation): How to install
- [Quick start](/docs/quick-start): First steps
- [API reference](https://docs.example.com/docs/api "API")
- [Community](https://forum.other.test/example)
- Also see https://docs.example.com/docs/api#methods for methods.

## Overview

{_FILLER}
"""

LLMS_FULL_TXT = f"""# Example Library

## Installation

```
pip install example
```

## Usage

{_FILLER}
"""


# -----------------------------------------------------------------------
# Validation
# -----------------------------------------------------------------------


class TestValidateContent:
    def test_valid(self):
        result = validate_content(LLMS_TXT)
        assert result.valid is True
        assert result.warning is False

    def test_html_rejected(self):
        result = validate_content("<!DOCTYPE html><html><body>" + "x" * 600)
        assert result.valid is False
        assert "HTML" in result.reason

    def test_not_found_page_rejected(self):
        result = validate_content("# Oops\n\nPage not found\n" + "x" * 600)
        assert result.valid is False
        assert "404" in result.reason

    def test_too_small(self):
        result = validate_content("# Tiny\n\n## Installation\n")
        assert result.valid is False
        assert "too small" in result.reason

    def test_not_markdown(self):
        result = validate_content("plain words " * 60)
        assert result.valid is False

    def test_missing_sections_warns(self):
        result = validate_content("# Notes\n\n" + "Lorem ipsum dolor sit amet. " * 30)
        assert result.valid is True
        assert result.warning is True


def test_extract_version_and_title():
    assert extract_version(LLMS_TXT) == "2.4.1"
    assert extract_version("# No version here") is None
    assert extract_title(LLMS_TXT) == "Example Library"
    assert extract_title("## Only a subheading") is None


def test_extract_urls():
    urls = extract_urls(LLMS_TXT, f"{BASE}/llms.txt")
    assert urls == [
        f"{BASE}/docs/installation",
        f"{BASE}/docs/quick-start",
        f"{BASE}/docs/api",
        "https://forum.other.test/example",
    ]


# -----------------------------------------------------------------------
# Discovery
# -----------------------------------------------------------------------


class TestDiscoverLlmsTxt:
    @pytest.mark.asyncio
    async def test_llms_txt_links_become_pages(self, site, options):
        site.routes[f"{BASE}/llms.txt"] = LLMS_TXT
        async with HttpClient(options, transport=site.transport) as client:
            result = await discover_llms_txt(BASE, options, client, Politeness(options))

        assert result.source_type == "llms.txt"
        assert result.source_url == f"{BASE}/llms.txt"
        assert result.is_inline is False
        assert [p.url for p in result.pages] == [
            f"{BASE}/docs/installation",
            f"{BASE}/docs/quick-start",
            f"{BASE}/docs/api",
        ]
        assert result.version == "2.4.1"
        assert result.title == "Example Library"

    @pytest.mark.asyncio
    async def test_llms_full_txt_is_inline(self, site, options):
        site.routes[f"{BASE}/llms-full.txt"] = LLMS_FULL_TXT
        site.routes[f"{BASE}/llms.txt"] = LLMS_TXT
        async with HttpClient(options, transport=site.transport) as client:
            result = await discover_llms_txt(BASE, options, client, Politeness(options))

        assert result.is_inline is True
        assert result.content == LLMS_FULL_TXT
        assert [p.url for p in result.pages] == [f"{BASE}/llms-full.txt"]
        assert f"{BASE}/llms.txt" not in site.requests

    @pytest.mark.asyncio
    async def test_links_disabled_stores_inline(self, site, options):
        site.routes[f"{BASE}/llms.txt"] = LLMS_TXT
        opts = options.model_copy(update={"fetch_llms_urls": False})
        async with HttpClient(opts, transport=site.transport) as client:
            result = await discover_llms_txt(BASE, opts, client, Politeness(opts))
        assert result.is_inline is True

    @pytest.mark.asyncio
    async def test_html_response_skipped(self, site, options):
        site.routes[f"{BASE}/llms-full.txt"] = "<html><body>SPA shell</body></html>"
        site.routes[f"{BASE}/docs/llms.txt"] = LLMS_FULL_TXT
        async with HttpClient(options, transport=site.transport) as client:
            found = await find_llms_txt(f"{BASE}/docs/intro", client, Politeness(options))
        assert found == (f"{BASE}/docs/llms.txt", LLMS_FULL_TXT)

    @pytest.mark.asyncio
    async def test_none_found(self, site, options):
        async with HttpClient(options, transport=site.transport) as client:
            assert await discover_llms_txt(BASE, options, client, Politeness(options)) is None
        assert len(site.requests) == 6
