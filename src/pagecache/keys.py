"""Cache key derivation.

A page key is the SHA-256 of the normalized logical URL. Host and scheme are
case-insensitive; the URI (path + query) is used verbatim because two URLs
that differ only in their query string are different cacheable variants.
"""

from __future__ import annotations

import hashlib
from urllib.parse import urlsplit


def cache_key(
    uri: str | None,
    host: str | None,
    scheme: str | None,
    *,
    home_url: str,
) -> str:
    """Return the page cache key for ``scheme://host/uri``.

    Missing parts default to ``/`` for the URI and to the host and scheme of
    ``home_url`` otherwise.
    """
    home = urlsplit(home_url)
    uri = uri or "/"
    host = (host or home.netloc).strip().lower()
    scheme = (scheme or home.scheme or "http").strip().lower()
    return hashlib.sha256(f"{scheme}://{host}{uri}".encode()).hexdigest()


def content_hash(*parts: str | bytes) -> str:
    """Return a SHA-256 hex digest over ``parts`` joined by ``|``."""
    digest = hashlib.sha256()
    for index, part in enumerate(parts):
        if index:
            digest.update(b"|")
        digest.update(part.encode() if isinstance(part, str) else part)
    return digest.hexdigest()
