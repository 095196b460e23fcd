"""doc-fetcher - resumable, polite documentation fetching into a local cache."""

from importlib.metadata import version

from doc_fetcher.__main__ import _cli as main
from doc_fetcher.fetcher import fetch_documentation, library_status, update_documentation

__version__ = version("doc-fetcher")
__all__ = [
    "fetch_documentation",
    "update_documentation",
    "library_status",
    "main",
    "__version__",
]
