"""Package registry lookups: find a library's homepage and repository."""

from loguru import logger

from doc_fetcher.http_client import HttpClient

ECOSYSTEMS = ("npm", "pypi", "crates")


def _normalize_repo_url(repo_url: str) -> str:
    """Turn npm/git shorthands into a browsable https URL."""
    repo_url = (repo_url or "").strip()
    if not repo_url:
        return ""
    if repo_url.startswith("git+"):
        repo_url = repo_url[4:]
    if repo_url.startswith("git://"):
        repo_url = "https://" + repo_url[len("git://") :]
    if repo_url.startswith("git@github.com:"):
        repo_url = "https://github.com/" + repo_url[len("git@github.com:") :]
    if repo_url.startswith("github:"):
        repo_url = "https://github.com/" + repo_url[len("github:") :]
    # npm shorthand "owner/repo"
    if "/" in repo_url and "://" not in repo_url:
        repo_url = f"https://github.com/{repo_url}"
    if repo_url.endswith(".git"):
        repo_url = repo_url[:-4]
    return repo_url


async def _from_npm(name: str, client: HttpClient) -> dict | None:
    """Query npm registry for package metadata."""
    resp = await client.try_get(f"https://registry.npmjs.org/{name}")
    if resp is None:
        return None
    data = resp.json()

    repository = data.get("repository")
    repo_url = (
        repository.get("url", "") if isinstance(repository, dict) else (repository or "")
    )
    return {
        "name": data.get("name", name),
        "description": data.get("description") or "",
        "homepage": data.get("homepage") or "",
        "repository": _normalize_repo_url(repo_url),
        "registry": "npm",
    }


async def _from_pypi(name: str, client: HttpClient) -> dict | None:
    """Query PyPI JSON API for package metadata."""
    resp = await client.try_get(f"https://pypi.org/pypi/{name}/json")
    if resp is None:
        return None
    info = resp.json().get("info") or {}

    # PyPI project_urls keys have inconsistent casing
    project_urls = {k.lower(): v for k, v in (info.get("project_urls") or {}).items() if v}
    docs_url = (
        project_urls.get("documentation")
        or project_urls.get("docs")
        or project_urls.get("homepage")
        or info.get("docs_url")
        or info.get("home_page")
        or ""
    )
    repo_url = (
        project_urls.get("repository")
        or project_urls.get("source")
        or project_urls.get("source code")
        or project_urls.get("code")
        or ""
    )
    # Many packages only list GitHub under "Homepage" or "Bug Tracker"
    if "github.com" not in repo_url:
        for value in project_urls.values():
            if "github.com" in value:
                repo_url = value
                break
    return {
        "name": info.get("name", name),
        "description": info.get("summary") or "",
        "homepage": docs_url,
        "repository": _normalize_repo_url(repo_url),
        "registry": "pypi",
    }


async def _from_crates(name: str, client: HttpClient) -> dict | None:
    """Query crates.io API for package metadata."""
    resp = await client.try_get(f"https://crates.io/api/v1/crates/{name}")
    if resp is None:
        return None
    crate = resp.json().get("crate") or {}

    homepage = crate.get("homepage") or ""
    # A crates.io listing page is not documentation
    if "crates.io" in homepage:
        homepage = ""
    return {
        "name": crate.get("name", name),
        "description": crate.get("description") or "",
        "homepage": homepage or crate.get("documentation") or f"https://docs.rs/{name}",
        "repository": _normalize_repo_url(crate.get("repository") or ""),
        "registry": "crates",
    }


_REGISTRY_FUNCTIONS = {
    "npm": _from_npm,
    "pypi": _from_pypi,
    "crates": _from_crates,
}


async def resolve_repository(name: str, ecosystem: str, client: HttpClient) -> dict | None:
    """Registry metadata ``{name, description, homepage, repository, registry}``.

    Returns None for unknown ecosystems, missing packages or unreadable replies.
    """
    lookup = _REGISTRY_FUNCTIONS.get(ecosystem.lower())
    if lookup is None:
        logger.warning(f"Unsupported ecosystem: {ecosystem}")
        return None
    try:
        info = await lookup(name, client)
    except ValueError as e:
        logger.debug(f"{ecosystem} lookup failed for {name}: {e}")
        return None
    if info:
        logger.info(f"Resolved {name} via {ecosystem}: {info['homepage'] or info['repository']}")
    return info
