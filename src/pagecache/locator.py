"""Asset URL resolution.

Maps a URL found in a page onto either a file under the document root
(same-origin), an allow-listed remote URL (web fonts, avatars), or
``Unresolvable`` when the reference must be left alone.

Same-origin paths are percent-decoded exactly once, normalized, and rejected
unless the result stays inside the document root.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import TYPE_CHECKING
from urllib.parse import unquote, urljoin, urlsplit

from pagecache.models.assets import LocalAsset, RemoteAsset, Resolution, Unresolvable

if TYPE_CHECKING:
    from pagecache.config import FetcherSettings, SiteSettings

_SCHEME_RE = re.compile(r"^[a-z][a-z0-9+.\-]*:", re.IGNORECASE)
_INERT_SCHEMES = ("data:", "javascript:", "blob:", "about:")


def has_scheme(url: str) -> bool:
    return bool(_SCHEME_RE.match(url))


class AssetLocator:
    """Resolves asset URLs for one site and request scheme."""

    def __init__(
        self,
        site: SiteSettings,
        fetcher: FetcherSettings,
        *,
        scheme: str | None = None,
    ) -> None:
        home = urlsplit(site.home_url)
        self._host = (home.hostname or "").lower()
        self._scheme = (scheme or home.scheme or "http").lower()
        self._origin = f"{self._scheme}://{home.netloc}"
        self._root = os.path.realpath(site.document_root)
        base_path = site.base_path.strip("/")
        self._base_path = f"/{base_path}" if base_path else ""
        self._remote_hosts = frozenset(
            host.lower()
            for host in (
                *fetcher.font_stylesheet_hosts,
                *fetcher.font_file_hosts,
                *fetcher.avatar_hosts,
            )
        )

    @property
    def origin(self) -> str:
        return self._origin

    @property
    def scheme(self) -> str:
        return self._scheme

    @property
    def document_root(self) -> Path:
        return Path(self._root)

    def absolute_url(self, url: str, base_url: str | None = None) -> str:
        """Resolve protocol-relative, root-relative and relative forms."""
        url = url.strip()
        if url.startswith("//"):
            return f"{self._scheme}:{url}"
        if has_scheme(url):
            return url
        base = base_url or f"{self._origin}/"
        if base.startswith("//"):
            base = f"{self._scheme}:{base}"
        elif not has_scheme(base):
            base = urljoin(f"{self._origin}/", base)
        return urljoin(base, url)

    def host_of(self, url: str) -> str:
        if url.startswith("//"):
            url = f"{self._scheme}:{url}"
        try:
            return (urlsplit(url).hostname or "").lower()
        except ValueError:
            return ""

    def is_same_origin(self, url: str) -> bool:
        """Relative URLs (no host) count as same-origin."""
        host = self.host_of(url.strip())
        return not host or host == self._host

    def resolve(
        self,
        url: str,
        base_url: str | None = None,
        *,
        extensions: tuple[str, ...] = (),
    ) -> Resolution:
        raw = url.strip()
        if not raw or raw.lower().startswith(_INERT_SCHEMES):
            return Unresolvable(url=raw, reason="not_a_resource")

        absolute = self.absolute_url(raw, base_url)
        try:
            parts = urlsplit(absolute)
        except ValueError:
            return Unresolvable(url=raw, reason="malformed")
        if parts.scheme not in ("http", "https"):
            return Unresolvable(url=raw, reason="unsupported_scheme")

        host = (parts.hostname or "").lower()
        if host != self._host:
            if host in self._remote_hosts:
                return RemoteAsset(url=absolute)
            return Unresolvable(url=raw, reason="cross_origin")

        local = self.local_path(parts.path)
        if local is None:
            return Unresolvable(url=raw, reason="outside_document_root")
        if extensions and not local.lower().endswith(extensions):
            return Unresolvable(url=raw, reason="unexpected_extension")
        if not os.path.isfile(local):
            return Unresolvable(url=raw, reason="missing")
        return LocalAsset(url=absolute, path=Path(local))

    def local_path(self, url_path: str) -> str | None:
        """Map a URL path onto the document root, or None if it escapes it."""
        if self._base_path:
            if url_path == self._base_path or url_path.startswith(self._base_path + "/"):
                url_path = url_path[len(self._base_path) :]
        decoded = unquote(url_path)
        if "\x00" in decoded:
            return None
        # realpath, so a symlink under the root cannot point outside it
        candidate = os.path.realpath(os.path.join(self._root, decoded.lstrip("/")))
        if os.path.commonpath([self._root, candidate]) != self._root:
            return None
        return candidate
