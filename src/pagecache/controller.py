"""Serve/capture controller.

One PageCacheService is built per process and consulted twice per request:

  decide()   before the upstream render: can this request be answered from
             the store, and if not, will its output be persisted?
  serve()    for SERVE_HIT: build the cached response (200, or 304 on a
             matching If-None-Match).
  capture()  after the upstream render: run the asset pipeline over the
             body and persist it when the request was cacheable.

Two checks govern a request. ``cacheable`` (may the page be stored and
served from the store) is the narrow one; ``optimizable`` (may the
pipeline transform the body) is broader, so anonymous requests that merely
bypass the cache still get minified output. Logged-in sessions are never
transformed.

The serving path never raises for cache reasons: a failed read is a miss,
a failed write returns the transformed body unpersisted.
"""

from __future__ import annotations

import hashlib
import time
from dataclasses import dataclass, field
from email.utils import formatdate
from typing import TYPE_CHECKING

import structlog

from pagecache.admin import page_path
from pagecache.exclusions import matches
from pagecache.keys import cache_key
from pagecache.models.cache import CachedPage
from pagecache.models.request import CacheStatus, RequestInfo, ServeState
from pagecache.pipeline import DEBUG_MARKER_RE, AssetPipeline

if TYPE_CHECKING:
    from pagecache.config import Settings
    from pagecache.state import AppState

log = structlog.get_logger()

CONTENT_TYPE = "text/html; charset=UTF-8"


def etag_for(body: bytes) -> str:
    """Strong validator over the stored body, ignoring the debug marker."""
    digest = hashlib.sha256(DEBUG_MARKER_RE.sub(b"", body)).hexdigest()
    return f'"{digest[:32]}"'


def etag_matches(if_none_match: str | None, etag: str) -> bool:
    if not if_none_match:
        return False
    candidates = [value.strip() for value in if_none_match.split(",")]
    return "*" in candidates or etag in candidates


@dataclass
class Decision:
    request: RequestInfo
    settings: Settings
    key: str
    state: ServeState
    cacheable: bool
    optimizable: bool
    reason: str | None = None  # Why caching was bypassed

    @property
    def status(self) -> CacheStatus:
        if self.state is ServeState.SERVE_HIT:
            return CacheStatus.HIT
        return CacheStatus.MISS if self.cacheable else CacheStatus.BYPASS


@dataclass
class CachedResponse:
    status_code: int
    headers: list[tuple[str, str]] = field(default_factory=list)
    body: bytes = b""


@dataclass
class CaptureResult:
    body: str
    status: CacheStatus
    persisted: bool = False


def _has_cookie(cookies: dict[str, str], prefixes: list[str]) -> bool:
    return any(name.startswith(prefix) for name in cookies for prefix in prefixes if prefix)


def is_logged_in(request: RequestInfo, settings: Settings) -> bool:
    return request.logged_in or _has_cookie(request.cookies, settings.bypass.logged_in_cookies)


def bypass_reason(request: RequestInfo, settings: Settings) -> str | None:
    """Return why ``request`` must not be cached, or None if it may be."""
    if not settings.cache.enabled:
        return "disabled"
    if request.method.upper() != "GET":
        return "method"
    for reason, flag in (
        ("admin", request.is_admin),
        ("ajax", request.is_ajax),
        ("rest", request.is_rest),
        ("search", request.is_search),
        ("feed", request.is_feed),
        ("preview", request.preview),
    ):
        if flag:
            return reason
    if is_logged_in(request, settings):
        return "logged_in"
    if _has_cookie(request.cookies, settings.bypass.cookies):
        return "cookie"
    if matches(request.uri, settings.exclusions.pages) or matches(request.url, settings.exclusions.pages):
        return "excluded"
    return None


def is_optimizable(request: RequestInfo, settings: Settings) -> bool:
    if is_logged_in(request, settings) or request.preview:
        return False
    return not (request.is_admin or request.is_ajax or request.is_rest or request.is_feed)


class PageCacheService:
    """Explicit service object wrapping the store, pipeline and settings."""

    def __init__(self, state: AppState) -> None:
        self._state = state
        self._pipeline = AssetPipeline(state)

    @property
    def state(self) -> AppState:
        return self._state

    def decide(self, request: RequestInfo, *, settings: Settings | None = None) -> Decision:
        settings = settings or self._state.settings_store.current()
        key = cache_key(request.uri, request.host, request.scheme, home_url=settings.site.home_url)
        reason = bypass_reason(request, settings)
        cacheable = reason is None

        if not cacheable:
            state = ServeState.SERVE_MISS_BYPASS
        elif self._state.store.is_fresh(page_path(self._state.store, key), settings.cache.page_ttl_seconds):
            state = ServeState.SERVE_HIT
        else:
            state = ServeState.SERVE_MISS_CAPTURE

        log.debug("cache_decision", uri=request.uri, state=state, reason=reason)
        return Decision(
            request=request,
            settings=settings,
            key=key,
            state=state,
            cacheable=cacheable,
            optimizable=is_optimizable(request, settings),
            reason=reason,
        )

    def load(self, decision: Decision) -> CachedPage | None:
        store = self._state.store
        path = page_path(store, decision.key)
        body = store.read_if_fresh(path, decision.settings.cache.page_ttl_seconds)
        stored_at = store.mtime(path)
        if body is None or stored_at is None:
            return None
        return CachedPage(key=decision.key, body=body, stored_at=stored_at, etag=etag_for(body))

    def serve(self, decision: Decision) -> CachedResponse | None:
        """Build the HIT response, or None if the page went stale meanwhile."""
        if decision.state is not ServeState.SERVE_HIT:
            return None
        page = self.load(decision)
        if page is None:
            return None

        ttl = decision.settings.cache.page_ttl_seconds
        headers = [
            ("Last-Modified", formatdate(page.stored_at, usegmt=True)),
            ("Cache-Control", f"public, max-age={ttl}"),
            ("Expires", formatdate(time.time() + ttl, usegmt=True)),
            (decision.settings.cache.status_header, CacheStatus.HIT.value),
            ("Content-Type", CONTENT_TYPE),
            ("Vary", "Cookie"),
            ("ETag", page.etag),
        ]

        if etag_matches(decision.request.if_none_match, page.etag):
            log.debug("cache_not_modified", uri=decision.request.uri)
            return CachedResponse(status_code=304, headers=headers)

        log.debug("cache_hit", uri=decision.request.uri, size=len(page.body))
        return CachedResponse(status_code=200, headers=headers, body=page.body)

    def capture(self, decision: Decision, body: str, *, status_code: int = 200) -> CaptureResult:
        """Transform an upstream body and persist it when the request allows."""
        if not decision.optimizable:
            return CaptureResult(body=body, status=CacheStatus.BYPASS)

        ctx = self._pipeline.context(
            decision.settings,
            decision.request.url,
            scheme=decision.request.scheme,
        )
        output = self._pipeline.run(body, ctx)

        persist = decision.cacheable and status_code == 200 and bool(output.strip())
        if not persist:
            return CaptureResult(body=output, status=decision.status)

        store = self._state.store
        persisted = store.write(page_path(store, decision.key), output.encode("utf-8"))
        if persisted:
            log.info("page_cached", uri=decision.request.uri, key=decision.key, size=len(output))
        return CaptureResult(body=output, status=decision.status, persisted=persisted)
