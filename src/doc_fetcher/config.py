"""Configuration settings for doc-fetcher.

Two layers:

- ``Settings`` reads the environment (``DOC_FETCHER_*``). Only the CLI touches it.
- ``CrawlOptions`` is the immutable value the core receives. Every component takes
  it explicitly; nothing below the CLI looks up configuration on its own.
"""

from enum import StrEnum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings


def _default_cache_dir() -> Path:
    """Get default cache directory (~/.doc-fetcher/docs)."""
    return Path.home() / ".doc-fetcher" / "docs"


class RobotsMode(StrEnum):
    """How robots.txt disallow rules are applied."""

    OFF = "off"
    ENFORCE = "enforce"
    WARN = "warn"
    STRICT = "strict"


class CrawlOptions(BaseModel):
    """Options passed into every crawl component."""

    model_config = ConfigDict(frozen=True)

    # Politeness
    crawl_delay_ms: int = Field(default=1000, ge=0)
    robots_mode: RobotsMode = RobotsMode.ENFORCE
    robots_ttl_hours: float = 24
    user_agent: str = "doc-fetcher/1.0"

    # Fetching
    max_pages: int = Field(default=500, ge=1)
    timeout_ms: int = Field(default=30000, gt=0)
    max_retries: int = Field(default=3, ge=0)
    concurrency: int = Field(default=5, ge=1)
    retry_base_delay_ms: int = Field(default=1000, ge=0)
    retry_max_delay_ms: int = Field(default=30000, ge=0)
    retry_jitter_ms: int = Field(default=1000, ge=0)
    block_private_hosts: bool = True

    # Checkpoints
    checkpoints_enabled: bool = True
    checkpoint_interval: int = Field(default=10, ge=1)
    checkpoint_max_age_days: float = 7

    # Discovery
    link_crawl_max_links: int = Field(default=200, ge=1)
    link_crawl_max_depth: int = Field(default=10, ge=1)
    fetch_llms_urls: bool = True
    github_token: str | None = None

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000


class Settings(BaseSettings):
    """doc-fetcher configuration.

    Environment variables (prefix ``DOC_FETCHER_``):
    - CACHE_DIR: Cache root (default: ~/.doc-fetcher/docs)
    - CRAWL_DELAY_MS: Delay between page fetches (default: 1000)
    - MAX_PAGES: Maximum pages per fetch (default: 500)
    - TIMEOUT_MS: Request timeout (default: 30000)
    - MAX_RETRIES: Retry attempts per page (default: 3)
    - CONCURRENCY: Parallel page fetches (default: 5)
    - CHECKPOINTS_ENABLED / CHECKPOINT_INTERVAL / CHECKPOINT_MAX_AGE_DAYS
    - ROBOTS_MODE: off | enforce | warn | strict (default: enforce)
    - USER_AGENT: User agent for all requests
    - GITHUB_TOKEN: Optional token for the README fallback
    - LOG_LEVEL: Loguru level (default: INFO)
    """

    cache_dir: str = ""

    crawl_delay_ms: int = 1000
    max_pages: int = 500
    timeout_ms: int = 30000
    max_retries: int = 3
    concurrency: int = 5

    checkpoints_enabled: bool = True
    checkpoint_interval: int = 10
    checkpoint_max_age_days: float = 7

    robots_mode: RobotsMode = RobotsMode.ENFORCE
    user_agent: str = "doc-fetcher/1.0"

    github_token: str | None = None

    # Logging
    log_level: str = "INFO"

    model_config = {"env_prefix": "DOC_FETCHER_", "case_sensitive": False}

    def get_cache_dir(self) -> Path:
        """Get cache directory.

        Uses CACHE_DIR if set, otherwise ~/.doc-fetcher/docs.
        """
        if self.cache_dir:
            return Path(self.cache_dir).expanduser()
        return _default_cache_dir()

    def get_robots_db_path(self) -> Path:
        """Get the robots.txt cache database path (next to the docs cache)."""
        return self.get_cache_dir().parent / "robots.db"

    def crawl_options(self) -> CrawlOptions:
        """Build the options value handed to the core."""
        return CrawlOptions(
            crawl_delay_ms=self.crawl_delay_ms,
            max_pages=self.max_pages,
            timeout_ms=self.timeout_ms,
            max_retries=self.max_retries,
            concurrency=self.concurrency,
            checkpoints_enabled=self.checkpoints_enabled,
            checkpoint_interval=self.checkpoint_interval,
            checkpoint_max_age_days=self.checkpoint_max_age_days,
            robots_mode=self.robots_mode,
            user_agent=self.user_agent,
            github_token=self.github_token,
        )
