from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel


class CacheStatus(StrEnum):
    """Value of the status marker header."""

    HIT = "HIT"
    MISS = "MISS"
    BYPASS = "BYPASS"


class ServeState(StrEnum):
    SERVE_HIT = "SERVE_HIT"
    SERVE_MISS_BYPASS = "SERVE_MISS_BYPASS"
    SERVE_MISS_CAPTURE = "SERVE_MISS_CAPTURE"


class RequestInfo(BaseModel):
    """Request metadata handed over by the host framework."""

    method: str = "GET"
    uri: str = "/"  # Path + query, verbatim
    host: str | None = None
    scheme: str | None = None
    cookies: dict[str, str] = {}
    if_none_match: str | None = None
    logged_in: bool = False
    preview: bool = False
    is_admin: bool = False
    is_ajax: bool = False
    is_rest: bool = False
    is_search: bool = False
    is_feed: bool = False

    @property
    def url(self) -> str:
        scheme = self.scheme or "http"
        return f"{scheme}://{self.host or ''}{self.uri}"
