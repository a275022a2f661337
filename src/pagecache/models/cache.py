from __future__ import annotations

from pydantic import BaseModel


class CachedPage(BaseModel):
    """A persisted page read back from the store for a HIT."""

    key: str  # SHA-256 of scheme://host/uri
    body: bytes
    stored_at: float  # File mtime (epoch seconds)
    etag: str  # Quoted validator derived from the stored body


class CacheStats(BaseModel):
    """File count and size of one cache subtree."""

    subtree: str
    files: int
    size_bytes: int
