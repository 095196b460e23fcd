"""doc-fetcher command line entry point."""

import argparse
import asyncio
import sys

from loguru import logger

from doc_fetcher.cache import RobotsCache
from doc_fetcher.config import RobotsMode, Settings
from doc_fetcher.errors import DocFetcherError
from doc_fetcher.sources.registries import ECOSYSTEMS


def _setup_logging(level: str) -> None:
    logger.remove()
    logger.add(sys.stderr, level=level)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="doc-fetcher",
        description="Fetch and cache library documentation for offline use.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    fetch = sub.add_parser("fetch", help="Fetch documentation for a library")
    fetch.add_argument("library", help="Library name (e.g. nextjs, httpx)")
    fetch.add_argument("version", nargs="?", help="Version label (default: latest)")
    fetch.add_argument("--url", help="Documentation URL")
    fetch.add_argument("--repo", help="Source repository (GitHub URL or owner/repo)")
    fetch.add_argument(
        "--ecosystem",
        choices=ECOSYSTEMS,
        help="Look the library up in a package registry to find its URLs",
    )
    fetch.add_argument("--max-pages", type=int, help="Maximum pages to fetch")
    fetch.add_argument(
        "--robots", choices=[m.value for m in RobotsMode], help="robots.txt mode"
    )

    update = sub.add_parser("update", help="Refetch only changed pages")
    update.add_argument("library")
    update.add_argument("version", nargs="?")
    update.add_argument("--url", help="Override the stored documentation URL")

    sub.add_parser("list", help="List cached libraries")

    status = sub.add_parser("status", help="Show cache and checkpoint state")
    status.add_argument("library")
    status.add_argument("version", nargs="?")
    return parser


async def _resolve_sources(args: argparse.Namespace, settings: Settings) -> None:
    """Fill ``args.url`` / ``args.repo`` from a package registry when asked."""
    if not args.ecosystem or (args.url and args.repo):
        return

    from doc_fetcher.http_client import HttpClient
    from doc_fetcher.sources.registries import resolve_repository

    async with HttpClient(settings.crawl_options()) as client:
        info = await resolve_repository(args.library, args.ecosystem, client)
    if info is None:
        logger.warning(f"{args.library} not found on {args.ecosystem}")
        return
    args.url = args.url or info.get("homepage") or None
    args.repo = args.repo or info.get("repository") or None


async def _run(args: argparse.Namespace, settings: Settings) -> int:
    from doc_fetcher.fetcher import (
        fetch_documentation,
        library_status,
        update_documentation,
    )
    from doc_fetcher.sources.extractor import shutdown_extractor
    from doc_fetcher.storage import LibraryStore

    cache_dir = settings.get_cache_dir()

    if args.command == "list":
        libraries = LibraryStore.list_libraries(cache_dir)
        if not libraries:
            print("No cached documentation.")
            return 0
        for index in libraries:
            print(
                f"{index.library} {index.version}  {index.page_count} pages  "
                f"{index.source_type or '-'}  {index.fetched_at:%Y-%m-%d}"
            )
        return 0

    if args.command == "status":
        status = library_status(
            args.library, args.version, settings.crawl_options(), cache_dir=cache_dir
        )
        print(status.describe())
        return 0

    options = settings.crawl_options()
    overrides = {}
    if getattr(args, "max_pages", None):
        overrides["max_pages"] = args.max_pages
    if getattr(args, "robots", None):
        overrides["robots_mode"] = RobotsMode(args.robots)
    if overrides:
        options = options.model_copy(update=overrides)

    robots_cache = RobotsCache(
        settings.get_robots_db_path(), ttl_seconds=options.robots_ttl_hours * 3600
    )
    try:
        if args.command == "fetch":
            await _resolve_sources(args, settings)
            if not args.url and not args.repo:
                print("error: give --url, --repo or --ecosystem", file=sys.stderr)
                return 2
            outcome = await fetch_documentation(
                args.library,
                args.version,
                args.url,
                options,
                cache_dir=cache_dir,
                repository=args.repo,
                robots_cache=robots_cache,
            )
            crawl = outcome.crawl
            print(f"Cached {outcome.index.page_count} pages at {outcome.path}")
            if crawl.failed:
                print(f"{crawl.failed} pages failed (see log for details)")
        else:
            outcome = await update_documentation(
                args.library,
                args.version,
                options,
                cache_dir=cache_dir,
                source_url=args.url,
                robots_cache=robots_cache,
            )
            print(f"{outcome.index.page_count} pages cached at {outcome.path}")
    finally:
        robots_cache.close()
        await shutdown_extractor()
    return 0


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    settings = Settings()
    _setup_logging(settings.log_level)

    try:
        return asyncio.run(_run(args, settings))
    except DocFetcherError as e:
        logger.error(str(e))
        return 1
    except KeyboardInterrupt:
        logger.warning("Interrupted; progress was checkpointed and will resume next run")
        return 130


def _cli() -> None:
    sys.exit(main())


if __name__ == "__main__":
    _cli()
