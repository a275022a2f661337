"""Administrative cache operations.

Authorization is the caller's responsibility: these functions assume the
action has already been approved. Purges are best-effort sweeps that run
without any lock; a purge racing an in-flight write may leave one freshly
regenerated file behind, which the next read re-validates anyway.
"""

from __future__ import annotations

from typing import TYPE_CHECKING
from urllib.parse import urlsplit

import structlog

from pagecache.errors import ErrorCode, PageCacheError
from pagecache.keys import cache_key
from pagecache.models.cache import CacheStats
from pagecache.store import PAGES, PURGEABLE_SUBTREES

if TYPE_CHECKING:
    from pathlib import Path

    from pagecache.config import SettingsStore
    from pagecache.store import AtomicStore

log = structlog.get_logger()


def page_path(store: AtomicStore, key: str) -> Path:
    return store.path_for(PAGES, f"{key}.html")


class CacheAdmin:
    """Invalidation entry points for admin actions and the CLI."""

    def __init__(self, store: AtomicStore, settings_store: SettingsStore) -> None:
        self._store = store
        self._settings_store = settings_store

    def purge_all(self) -> int:
        """Delete every cached page and asset. Returns the number of files removed."""
        deleted = self._store.purge(PURGEABLE_SUBTREES)
        log.info("cache_purged", scope="all", deleted=deleted)
        return deleted

    def purge_pages(self) -> int:
        """Delete every cached page, keeping optimized assets."""
        deleted = self._store.purge((PAGES,))
        log.info("cache_purged", scope="pages", deleted=deleted)
        return deleted

    def purge_page(self, url: str) -> bool:
        """Delete the cached page for ``url``.

        Raises PageCacheError when the URL is malformed or belongs to another
        host. Returns True if a cached file was removed.
        """
        settings = self._settings_store.current()
        try:
            parts = urlsplit(url.strip())
        except ValueError as exc:
            raise PageCacheError(
                code=ErrorCode.INVALID_URL,
                message=f"Malformed URL: {url}",
                suggestion="Pass an absolute http(s) URL of a page on this site.",
            ) from exc

        if parts.scheme not in ("http", "https") or not parts.hostname:
            raise PageCacheError(
                code=ErrorCode.INVALID_URL,
                message=f"Not an absolute http(s) URL: {url}",
                suggestion="Pass an absolute http(s) URL of a page on this site.",
            )

        site_host = (urlsplit(settings.site.home_url).hostname or "").lower()
        if parts.hostname.lower() != site_host:
            raise PageCacheError(
                code=ErrorCode.HOST_MISMATCH,
                message=f"URL host {parts.hostname!r} does not match site host {site_host!r}",
                suggestion="Only pages of the configured site can be purged.",
            )

        uri = parts.path or "/"
        if parts.query:
            uri = f"{uri}?{parts.query}"
        key = cache_key(uri, parts.netloc, parts.scheme, home_url=settings.site.home_url)
        deleted = self._store.delete(page_path(self._store, key))
        log.info("cache_purged", scope="page", url=url, deleted=int(deleted))
        return deleted

    def stats(self) -> list[CacheStats]:
        stats = []
        for subtree in PURGEABLE_SUBTREES:
            files, size = self._store.usage(subtree)
            stats.append(CacheStats(subtree=subtree, files=files, size_bytes=size))
        return stats
