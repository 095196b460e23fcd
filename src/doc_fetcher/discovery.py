"""Source discovery chain.

Strategies are tried in order until one yields at least one page:

1. llms.txt / llms-full.txt at well-known paths
2. sitemap.xml (robots-declared first, sitemap indexes followed)
3. Recursive navigation link crawl
4. GitHub README of the known repository

Every strategy returns a ``DiscoveryResult`` or None; an empty result falls
through to the next one. Running out of strategies raises DiscoveryError.
"""

from collections.abc import Awaitable, Callable, Sequence

from loguru import logger

from doc_fetcher.config import CrawlOptions
from doc_fetcher.errors import DiscoveryError, DocFetcherError, RobotsPolicyError
from doc_fetcher.http_client import HttpClient
from doc_fetcher.models import DiscoveryResult
from doc_fetcher.robots import Politeness
from doc_fetcher.sources.github_readme import discover_github_readme
from doc_fetcher.sources.link_crawl import discover_link_crawl
from doc_fetcher.sources.llms_txt import discover_llms_txt
from doc_fetcher.sources.sitemap import discover_sitemap

Strategy = Callable[
    [str, CrawlOptions, HttpClient, Politeness], Awaitable[DiscoveryResult | None]
]

DEFAULT_STRATEGIES: tuple[tuple[str, Strategy], ...] = (
    ("llms.txt", discover_llms_txt),
    ("sitemap", discover_sitemap),
    ("link-crawl", discover_link_crawl),
)


async def discover(
    base_url: str | None,
    options: CrawlOptions,
    politeness: Politeness,
    client: HttpClient,
    *,
    repository: str | None = None,
    strategies: Sequence[tuple[str, Strategy]] | None = None,
) -> DiscoveryResult:
    """Run the fallback chain for *base_url* (and *repository* as last resort)."""
    tried: list[str] = []

    if base_url:
        for name, strategy in strategies if strategies is not None else DEFAULT_STRATEGIES:
            tried.append(name)
            logger.info(f"Trying discovery strategy: {name}")
            try:
                result = await strategy(base_url, options, client, politeness)
            except RobotsPolicyError:
                raise
            except DocFetcherError as e:
                logger.warning(f"Discovery strategy {name} failed: {e}")
                continue

            if result is not None and result.pages:
                logger.info(
                    f"Discovered {len(result.pages)} pages via {result.source_type}"
                )
                return result
            logger.info(f"Strategy {name} found nothing, falling back")

    if repository:
        tried.append("github-readme")
        logger.info("Trying discovery strategy: github-readme")
        result = await discover_github_readme(repository, options, client)
        if result is not None and result.pages:
            logger.info(f"Using README from {result.source_url}")
            return result

    target = base_url or repository or "<no source>"
    raise DiscoveryError(
        f"No documentation found for {target} (tried: {', '.join(tried) or 'nothing'})"
    )
