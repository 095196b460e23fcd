"""robots.txt politeness: fetch, cache, parse and enforce.

``Politeness.init`` loads the base URL's robots policy once (cache first, then
the network). Afterwards ``allowed``, ``crawl_delay`` and ``sitemap_urls`` are
plain synchronous lookups, so workers can call them freely.

Failure handling is fail-open: a robots.txt that cannot be fetched or parsed
means "allow all", except in strict mode where it is fatal.
"""

import sqlite3
import time
from dataclasses import dataclass, field
from urllib.robotparser import RobotFileParser

from loguru import logger

from doc_fetcher.cache import RobotsCache
from doc_fetcher.config import CrawlOptions, RobotsMode
from doc_fetcher.errors import FetchError, RobotsDisallowedError, RobotsPolicyError
from doc_fetcher.http_client import HttpClient
from doc_fetcher.urls import extract_domain, origin_of


@dataclass
class RobotsPolicy:
    """Parsed robots.txt of one domain."""

    domain: str
    robots_url: str
    fetched_at: float
    sitemap_urls: list[str] = field(default_factory=list)
    _parser: RobotFileParser | None = None

    @classmethod
    def parse(
        cls, domain: str, robots_url: str, content: str, fetched_at: float | None = None
    ) -> "RobotsPolicy":
        parser = None
        sitemaps: list[str] = []
        if content.strip():
            parser = RobotFileParser(robots_url)
            parser.parse(content.splitlines())
            sitemaps = list(parser.site_maps() or [])
        return cls(
            domain=domain,
            robots_url=robots_url,
            fetched_at=fetched_at if fetched_at is not None else time.time(),
            sitemap_urls=sitemaps,
            _parser=parser,
        )

    @classmethod
    def allow_all(cls, domain: str, robots_url: str) -> "RobotsPolicy":
        return cls(domain=domain, robots_url=robots_url, fetched_at=time.time())

    def can_fetch(self, user_agent: str, url: str) -> bool:
        if self._parser is None:
            return True
        return self._parser.can_fetch(user_agent, url)

    def crawl_delay_ms(self, user_agent: str) -> float | None:
        if self._parser is None:
            return None
        delay = self._parser.crawl_delay(user_agent)
        if delay is None:
            return None
        return float(delay) * 1000


class Politeness:
    """robots.txt compliance for one crawl target."""

    def __init__(
        self,
        options: CrawlOptions,
        client: HttpClient | None = None,
        cache: RobotsCache | None = None,
    ):
        self.options = options
        self.mode = options.robots_mode
        self._client = client
        self._cache = cache
        self.policy: RobotsPolicy | None = None

    @property
    def enabled(self) -> bool:
        return self.mode is not RobotsMode.OFF

    async def init(self, base_url: str) -> None:
        """Load the robots policy for *base_url*'s origin."""
        if not self.enabled:
            logger.debug("Robots.txt checking disabled")
            return

        domain = extract_domain(base_url)
        if not domain:
            logger.warning(f"Invalid base URL for robots.txt: {base_url}")
            return

        robots_url = f"{origin_of(base_url)}/robots.txt"
        try:
            content = await self._load(domain, robots_url)
        except FetchError as e:
            if self.mode is RobotsMode.STRICT:
                raise RobotsPolicyError(
                    f"Could not load robots.txt for {domain}: {e.message}"
                ) from e
            logger.warning(f"Failed to fetch robots.txt for {domain}: {e.message}")
            self.policy = RobotsPolicy.allow_all(domain, robots_url)
            return

        try:
            self.policy = RobotsPolicy.parse(domain, robots_url, content)
        except Exception as e:  # robotparser has no error type of its own
            if self.mode is RobotsMode.STRICT:
                raise RobotsPolicyError(f"Invalid robots.txt for {domain}: {e}") from e
            logger.warning(f"Error parsing robots.txt for {domain}: {e}")
            self.policy = RobotsPolicy.allow_all(domain, robots_url)
            return

        if content.strip():
            logger.debug(f"Robots.txt loaded for {domain}")
        else:
            logger.debug(f"No robots.txt for {domain}, allowing all")

    async def _load(self, domain: str, robots_url: str) -> str:
        if self._cache is not None:
            try:
                cached = self._cache.get(domain)
            except sqlite3.Error as e:
                logger.warning(f"Robots cache unavailable: {e}")
                cached = None
            if cached is not None:
                return cached

        if self._client is None:
            return ""

        logger.debug(f"Fetching robots.txt from {robots_url}")
        response = await self._client.get(robots_url, ok_statuses=(200, 404))
        if response.status_code == 404:
            logger.debug(f"No robots.txt found (404) for {domain}")
            content = ""
        else:
            content = response.text
            logger.info(f"Fetched robots.txt for {domain}")

        self._store(domain, content, robots_url)
        return content

    def _store(self, domain: str, content: str, robots_url: str) -> None:
        if self._cache is None:
            return
        try:
            self._cache.set(domain, content, robots_url)
        except Exception as e:  # cache write failures never stop a crawl
            logger.warning(f"Failed to cache robots.txt for {domain}: {e}")

    def allowed(self, url: str) -> bool:
        """Whether *url* may be fetched under the current mode."""
        if not self.enabled or self.policy is None:
            return True
        if extract_domain(url) != self.policy.domain:
            return True

        if self.policy.can_fetch(self.options.user_agent, url):
            return True

        message = f"URL disallowed by robots.txt: {url}"
        if self.mode is RobotsMode.STRICT:
            raise RobotsDisallowedError(message)
        if self.mode is RobotsMode.WARN:
            logger.warning(f"{message} (proceeding anyway in warn mode)")
            return True
        logger.warning(f"{message} (skipping)")
        return False

    def crawl_delay(self) -> float | None:
        """robots.txt Crawl-delay in milliseconds, if one applies."""
        if not self.enabled or self.policy is None:
            return None
        delay = self.policy.crawl_delay_ms(self.options.user_agent)
        if delay is not None:
            logger.debug(f"Using Crawl-delay from robots.txt: {delay / 1000:g}s")
        return delay

    def sitemap_urls(self) -> list[str]:
        if not self.enabled or self.policy is None:
            return []
        return list(self.policy.sitemap_urls)

    def effective_delay_ms(self) -> float:
        """robots.txt Crawl-delay when declared, else the configured delay."""
        delay = self.crawl_delay()
        return delay if delay is not None else float(self.options.crawl_delay_ms)
