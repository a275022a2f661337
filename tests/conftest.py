"""Shared test fixtures for the pagecache test suite."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

from pagecache.admin import CacheAdmin
from pagecache.config import (
    CacheSettings,
    OptimizeSettings,
    Settings,
    SettingsStore,
    SiteSettings,
)
from pagecache.jobs import JobQueue
from pagecache.locator import AssetLocator
from pagecache.pipeline import PassContext
from pagecache.state import AppState
from pagecache.store import AtomicStore

HOME_URL = "http://example.com"
PAGE_URL = "http://example.com/blog/post-1"


class FakeFetcher:
    """In-memory FetcherProtocol implementation keyed by URL."""

    def __init__(self, responses: dict[str, bytes] | None = None) -> None:
        self.responses = responses or {}
        self.calls: list[str] = []

    async def fetch(self, url: str, allowlist: frozenset[str]) -> bytes | None:
        self.calls.append(url)
        return self.responses.get(url)


def tune_settings(settings: Settings, section: str = "optimize", **values: Any) -> Settings:
    """Copy ``settings`` with some fields of one section changed."""
    current = getattr(settings, section)
    return settings.model_copy(update={section: current.model_copy(update=values)})


@pytest.fixture()
def docroot(tmp_path: Path) -> Path:
    """A small document root with stylesheets and scripts."""
    root = tmp_path / "www"
    (root / "assets" / "css").mkdir(parents=True)
    (root / "assets" / "js").mkdir(parents=True)
    (root / "assets" / "css" / "a.css").write_text(
        "/* layout */\nbody {\n  margin : 0;\n}\n.logo { background: url('../img/logo.png'); }\n",
        encoding="utf-8",
    )
    (root / "assets" / "css" / "b.css").write_text(
        '@charset "utf-8";\nh1 { color : red ; }\n',
        encoding="utf-8",
    )
    (root / "assets" / "css" / "print.css").write_text("nav { display : none; }\n", encoding="utf-8")
    (root / "assets" / "js" / "one.js").write_text("// first\nvar one = 1\n", encoding="utf-8")
    (root / "assets" / "js" / "two.js").write_text("function two() {\n  return 2;\n}\n", encoding="utf-8")
    (root / "assets" / "js" / "three.js").write_text("var three = 3;\n", encoding="utf-8")
    return root


@pytest.fixture()
def settings(docroot: Path, tmp_path: Path) -> Settings:
    return Settings(
        site=SiteSettings(home_url=HOME_URL, document_root=str(docroot)),
        cache=CacheSettings(cache_dir=str(tmp_path / "cache")),
        optimize=OptimizeSettings(debug_footer=False),
    )


@pytest.fixture()
def settings_store(settings: Settings) -> SettingsStore:
    return SettingsStore(settings=settings)


@pytest.fixture()
def store(settings: Settings) -> AtomicStore:
    return AtomicStore(Path(settings.cache.cache_dir), settings.cache.public_url)


@pytest.fixture()
def state(settings_store: SettingsStore, store: AtomicStore) -> AppState:
    admin = CacheAdmin(store, settings_store)
    settings_store.bind_admin(admin)
    return AppState(
        settings_store=settings_store,
        store=store,
        jobs=JobQueue(store),
        admin=admin,
    )


@pytest.fixture()
def make_ctx(state: AppState):
    """Build a PassContext for ``settings`` wired to the shared state."""

    def _make(settings: Settings, *, fetcher: FakeFetcher | None = None, page_url: str = PAGE_URL) -> PassContext:
        return PassContext(
            settings=settings,
            store=state.store,
            locator=AssetLocator(settings.site, settings.fetcher),
            page_url=page_url,
            jobs=state.jobs,
            fetcher=fetcher,
            allowlist=frozenset({"fonts.googleapis.com", "fonts.gstatic.com", "gravatar.com"}),
            admin=state.admin,
        )

    return _make


@pytest.fixture()
def tune():
    return tune_settings


@pytest.fixture()
def fake_fetcher() -> FakeFetcher:
    return FakeFetcher()
