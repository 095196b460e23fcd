"""GitHub README fallback: last-resort single-page documentation."""

import re
from dataclasses import dataclass, field
from datetime import UTC, datetime

from loguru import logger

from doc_fetcher.config import CrawlOptions
from doc_fetcher.errors import FetchError
from doc_fetcher.http_client import HttpClient
from doc_fetcher.models import DiscoveryResult, PageDescriptor

GITHUB_API = "https://api.github.com"
GITHUB_RAW = "https://raw.githubusercontent.com"

README_FILES = (
    "README.md",
    "readme.md",
    "Readme.md",
    "README.rst",
    "readme.rst",
    "README.txt",
    "readme.txt",
    "README",
    "readme",
)

DEFAULT_BRANCHES = ("main", "master")

_GH_REPO_RE = re.compile(r"github\.com[/:]([^/\s]+)/([^/\s#?]+?)(?:\.git)?(?:[/#?]|$)")
_SHORTHAND_RE = re.compile(r"^([A-Za-z0-9_.-]+)/([A-Za-z0-9_.-]+?)(?:\.git)?$")


@dataclass
class Readme:
    owner: str
    repo: str
    content: str
    filename: str | None = None
    branch: str | None = None
    metadata: dict = field(default_factory=dict)

    @property
    def repo_url(self) -> str:
        return f"https://github.com/{self.owner}/{self.repo}"


def parse_github_url(url: str | None) -> tuple[str, str] | None:
    """``(owner, repo)`` from a GitHub URL, git remote or ``owner/repo`` shorthand."""
    if not url:
        return None
    url = url.strip()
    if url.startswith("github:"):
        url = url[len("github:") :]

    match = _GH_REPO_RE.search(url)
    if match:
        return match.group(1), match.group(2)

    if "://" not in url:
        match = _SHORTHAND_RE.match(url)
        if match:
            return match.group(1), match.group(2)
    return None


def _api_headers(options: CrawlOptions, accept: str) -> dict[str, str]:
    headers = {"Accept": accept}
    if options.github_token:
        headers["Authorization"] = f"Bearer {options.github_token}"
    return headers


async def _repo_metadata(
    owner: str, repo: str, client: HttpClient, options: CrawlOptions
) -> dict:
    resp = await client.try_get(
        f"{GITHUB_API}/repos/{owner}/{repo}",
        headers=_api_headers(options, "application/vnd.github+json"),
    )
    if resp is None:
        logger.debug("Could not fetch repo metadata")
        return {}
    try:
        data = resp.json()
    except ValueError:
        return {}
    license_info = data.get("license") or {}
    return {
        "stars": data.get("stargazers_count"),
        "description": data.get("description"),
        "last_updated": data.get("updated_at"),
        "license": license_info.get("name") if isinstance(license_info, dict) else None,
    }


async def fetch_readme(
    owner: str, repo: str, client: HttpClient, options: CrawlOptions
) -> Readme | None:
    """README via the API's raw media type, then conventional raw file paths."""
    logger.info(f"Fetching GitHub README for {owner}/{repo}")

    try:
        resp = await client.get(
            f"{GITHUB_API}/repos/{owner}/{repo}/readme",
            headers=_api_headers(options, "application/vnd.github.raw"),
        )
        content = resp.text
        if content.strip():
            logger.info(f"README fetched ({len(content)} characters)")
            metadata = await _repo_metadata(owner, repo, client, options)
            return Readme(owner=owner, repo=repo, content=content, metadata=metadata)
    except FetchError as e:
        if e.status_code == 403 and e.retry_after is None:
            logger.warning(f"GitHub API refused README lookup for {owner}/{repo} (rate limited?)")
        else:
            logger.debug(f"README API lookup failed: {e.message}")

    for branch in DEFAULT_BRANCHES:
        for filename in README_FILES:
            resp = await client.try_get(f"{GITHUB_RAW}/{owner}/{repo}/{branch}/{filename}")
            if resp is None or not resp.text.strip():
                continue
            logger.info(f"Found {filename} ({branch} branch)")
            return Readme(
                owner=owner,
                repo=repo,
                content=resp.text,
                filename=filename,
                branch=branch,
            )

    logger.warning(f"No README found for {owner}/{repo}")
    return None


def format_readme(readme: Readme, fetched_at: datetime | None = None) -> str:
    """README text with a metadata header and a pointer back to the repository."""
    fetched_at = fetched_at or datetime.now(UTC)
    lines = ["---", "source: GitHub README", f"url: {readme.repo_url}"]
    for key in ("stars", "last_updated", "license"):
        value = readme.metadata.get(key)
        if value:
            lines.append(f"{key}: {value}")
    lines.append(f"fetchedAt: {fetched_at.strftime('%Y-%m-%dT%H:%M:%SZ')}")
    lines.append("---")

    notice = (
        "> **Note**: This documentation was extracted from the project's GitHub README.\n"
        f"> For the most up-to-date information, visit [{readme.repo_url}]({readme.repo_url}).\n"
    )
    return "\n".join(lines) + "\n" + notice + "\n" + readme.content


async def discover_github_readme(
    repository: str | None,
    options: CrawlOptions,
    client: HttpClient,
) -> DiscoveryResult | None:
    parsed = parse_github_url(repository)
    if parsed is None:
        if repository:
            logger.debug(f"Not a GitHub repository: {repository}")
        return None

    owner, repo = parsed
    readme = await fetch_readme(owner, repo, client, options)
    if readme is None:
        return None

    return DiscoveryResult(
        source_type="github-readme",
        source_url=readme.repo_url,
        pages=[PageDescriptor(url=readme.repo_url)],
        content=format_readme(readme),
        title=f"{owner}/{repo} README",
    )
