"""Application state container.

AppState is created once per process (inside the server lifespan, or by the
host integration) and handed explicitly to the controller and middleware.
The only per-request input it provides is ``settings_store.current()``, the
read-mostly Settings snapshot taken once per request cycle.

``cache_dir`` and ``public_url`` are read when the store is built; changing
them requires a restart.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import httpx

    from pagecache.admin import CacheAdmin
    from pagecache.config import SettingsStore
    from pagecache.jobs import JobQueue
    from pagecache.protocols import FetcherProtocol
    from pagecache.store import AtomicStore


@dataclass
class AppState:
    """Holds all shared runtime state."""

    settings_store: SettingsStore
    store: AtomicStore
    jobs: JobQueue
    admin: CacheAdmin

    # Remote asset downloads (font/avatar localization)
    http_client: httpx.AsyncClient | None = None
    fetcher: FetcherProtocol | None = None
    allowlist: frozenset[str] = field(default_factory=frozenset)
