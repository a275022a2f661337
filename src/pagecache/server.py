"""Server and command-line entrypoint.

Responsibilities (and nothing more):
- Configure structlog
- Build AppState (store, admin, job queue, fetcher) from settings
- Wrap a host ASGI app with the page cache and serve the cache directory
- Expose the administrative operations as CLI subcommands
"""

from __future__ import annotations

import argparse
import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import TYPE_CHECKING

import structlog
import uvicorn
from rich.console import Console
from rich.table import Table
from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.routing import Mount
from starlette.staticfiles import StaticFiles
from uvicorn.importer import ImportFromStringError, import_from_string

from pagecache import __version__
from pagecache.admin import CacheAdmin
from pagecache.config import Settings, SettingsStore, _find_config_file
from pagecache.controller import PageCacheService
from pagecache.errors import PageCacheError
from pagecache.fetcher import Fetcher, build_allowlist, build_http_client
from pagecache.jobs import JobQueue
from pagecache.middleware import PageCacheMiddleware
from pagecache.state import AppState
from pagecache.store import AtomicStore

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from starlette.types import ASGIApp

log = structlog.get_logger()
console = Console()


# ---------------------------------------------------------------------------
# Logging setup
# ---------------------------------------------------------------------------


def _setup_logging(settings: Settings) -> None:
    """Configure structlog. Called once at startup before any log statements."""
    log_level = logging.getLevelNamesMapping()[settings.logging.level]

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if settings.logging.format == "json":
        processors = [*shared_processors, structlog.processors.JSONRenderer()]
    else:
        processors = [*shared_processors, structlog.dev.ConsoleRenderer()]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        # Logs go to stderr; stdout carries CLI output
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


# ---------------------------------------------------------------------------
# State and application
# ---------------------------------------------------------------------------


def build_state(settings_store: SettingsStore, *, with_fetcher: bool = True) -> AppState:
    """Create all shared resources. ``cache_dir``/``public_url`` are read once here."""
    settings = settings_store.current()
    store = AtomicStore(Path(settings.cache.cache_dir).expanduser(), settings.cache.public_url)
    admin = CacheAdmin(store, settings_store)
    settings_store.bind_admin(admin)

    state = AppState(
        settings_store=settings_store,
        store=store,
        jobs=JobQueue(store),
        admin=admin,
    )
    if with_fetcher:
        state.http_client = build_http_client(settings.fetcher)
        state.fetcher = Fetcher(state.http_client, max_redirects=settings.fetcher.max_redirects)
        state.allowlist = build_allowlist(settings.fetcher)
    return state


def build_app(app: ASGIApp, state: AppState) -> Starlette:
    """Wrap ``app`` with the page cache and mount the cache directory.

    Only the wrapper's own lifespan runs; startup hooks of ``app`` are not called.
    """
    settings = state.settings_store.current()
    service = PageCacheService(state)

    @asynccontextmanager
    async def lifespan(_: Starlette) -> AsyncGenerator[None, None]:
        log.info("server_started", version=__version__, cache_dir=str(state.store.root))
        try:
            yield
        finally:
            await state.jobs.aclose()
            if state.http_client is not None:
                await state.http_client.aclose()
            log.info("server_stopping")

    public_path = "/" + settings.cache.public_url.strip("/")
    return Starlette(
        routes=[
            Mount(public_path, app=StaticFiles(directory=state.store.root, check_dir=False)),
            Mount("/", app=app),
        ],
        middleware=[Middleware(PageCacheMiddleware, service=service)],
        lifespan=lifespan,
    )


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


def _settings_store(args: argparse.Namespace) -> SettingsStore:
    path = args.config or _find_config_file()
    return SettingsStore(Path(path) if path else None)


def _serve(args: argparse.Namespace) -> int:
    settings_store = _settings_store(args)
    _setup_logging(settings_store.current())

    try:
        upstream = import_from_string(args.app)
    except ImportFromStringError as exc:
        console.print(f"[red]ERROR: Could not load app {args.app!r}: {exc}[/red]")
        return 1

    state = build_state(settings_store)
    uvicorn.run(
        build_app(upstream, state),
        host=args.host,
        port=args.port,
        log_config=None,  # Disable uvicorn's default logging; structlog handles it
    )
    return 0


def _purge_all(args: argparse.Namespace) -> int:
    settings_store = _settings_store(args)
    _setup_logging(settings_store.current())
    state = build_state(settings_store, with_fetcher=False)
    deleted = state.admin.purge_all()
    console.print(f"[green]Purged {deleted} cached file(s)[/green]")
    return 0


def _purge_page(args: argparse.Namespace) -> int:
    settings_store = _settings_store(args)
    _setup_logging(settings_store.current())
    state = build_state(settings_store, with_fetcher=False)
    try:
        deleted = state.admin.purge_page(args.url)
    except PageCacheError as exc:
        console.print(f"[red]ERROR ({exc.code}): {exc.message}[/red]")
        console.print(f"  {exc.suggestion}")
        return 1
    if deleted:
        console.print(f"[green]Purged cached page for {args.url}[/green]")
    else:
        console.print(f"[yellow]No cached page for {args.url}[/yellow]")
    return 0


def _stats(args: argparse.Namespace) -> int:
    settings_store = _settings_store(args)
    _setup_logging(settings_store.current())
    state = build_state(settings_store, with_fetcher=False)

    table = Table(title=f"Cache usage ({state.store.root})")
    table.add_column("Subtree")
    table.add_column("Files", justify="right")
    table.add_column("Bytes", justify="right")
    for row in state.admin.stats():
        table.add_row(row.subtree, str(row.files), str(row.size_bytes))
    console.print(table)
    return 0


def build_arg_parser() -> argparse.ArgumentParser:
    """Build argument parser for CLI."""
    p = argparse.ArgumentParser(
        prog="pagecache",
        description="Full-page cache and HTML/CSS/JS optimizer for ASGI sites",
    )
    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    p.add_argument("--config", default=None, help="Path to pagecache.yaml (default: search cwd, then config dir)")
    sub = p.add_subparsers(dest="cmd", required=True)

    serve = sub.add_parser("serve", help="Serve an ASGI app behind the page cache")
    serve.add_argument("--app", required=True, help="ASGI app to wrap, as module:attribute")
    serve.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    serve.add_argument("--port", type=int, default=8000, help="Bind port (default: 8000)")
    serve.set_defaults(handler=_serve)

    purge_all = sub.add_parser("purge-all", help="Delete every cached page and asset")
    purge_all.set_defaults(handler=_purge_all)

    purge_page = sub.add_parser("purge-page", help="Delete the cached copy of one page")
    purge_page.add_argument("url", help="Absolute URL of the page")
    purge_page.set_defaults(handler=_purge_page)

    stats = sub.add_parser("stats", help="Show file counts and sizes per cache subtree")
    stats.set_defaults(handler=_stats)

    return p


def main(argv: list[str] | None = None) -> None:
    """Main entry point for CLI."""
    args = build_arg_parser().parse_args(argv)
    sys.exit(args.handler(args))


if __name__ == "__main__":
    main()
