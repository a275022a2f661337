from __future__ import annotations

from pagecache.models.assets import LocalAsset, RemoteAsset, Resolution, Unresolvable
from pagecache.models.cache import CachedPage, CacheStats
from pagecache.models.request import CacheStatus, RequestInfo, ServeState

__all__ = [
    # assets
    "LocalAsset",
    "RemoteAsset",
    "Unresolvable",
    "Resolution",
    # cache
    "CachedPage",
    "CacheStats",
    # request
    "CacheStatus",
    "RequestInfo",
    "ServeState",
]
