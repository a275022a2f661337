"""ASGI integration: wraps any ASGI app with the page cache.

Implemented as pure ASGI (not BaseHTTPMiddleware) so responses the cache
does not touch are streamed through unbuffered. Only complete ``200``
``text/html`` responses without a Content-Encoding are buffered, handed to
``PageCacheService.capture`` and re-emitted with a fresh Content-Length.

Store reads, pipeline passes and store writes are blocking, so ``serve`` and
``capture`` run in the threadpool.
"""

from __future__ import annotations

import asyncio
from dataclasses import replace
from typing import TYPE_CHECKING

import structlog
from starlette.concurrency import run_in_threadpool
from starlette.datastructures import MutableHeaders
from starlette.requests import Request
from starlette.responses import Response

from pagecache.models.request import RequestInfo, ServeState

if TYPE_CHECKING:
    from starlette.types import ASGIApp, Message, Receive, Scope, Send

    from pagecache.config import Settings
    from pagecache.controller import Decision, PageCacheService

log = structlog.get_logger()


def _under(path: str, prefixes: list[str]) -> bool:
    for prefix in prefixes:
        prefix = prefix.rstrip("/")
        if prefix and (path == prefix or path.startswith(prefix + "/")):
            return True
    return False


def request_info_from_scope(scope: Scope, settings: Settings) -> RequestInfo:
    """Derive request metadata from an ASGI HTTP scope."""
    request = Request(scope)
    path = scope.get("path", "/") or "/"
    raw_path = scope.get("raw_path") or path.encode("utf-8")
    uri = raw_path.decode("latin-1")
    query = scope.get("query_string", b"").decode("latin-1")
    if query:
        uri = f"{uri}?{query}"

    params = request.query_params
    bypass = settings.bypass
    return RequestInfo(
        method=scope.get("method", "GET"),
        uri=uri,
        host=request.headers.get("host"),
        scheme=scope.get("scheme", "http"),
        cookies=dict(request.cookies),
        if_none_match=request.headers.get("if-none-match"),
        preview=any(name in params for name in bypass.preview_params),
        is_admin=_under(path, bypass.admin_paths),
        is_ajax=_under(path, bypass.ajax_paths),
        is_rest=_under(path, bypass.rest_paths),
        is_search=_under(path, bypass.search_paths) or any(name in params for name in bypass.search_params),
        is_feed=_under(path, bypass.feed_paths),
    )


class PageCacheMiddleware:
    """Serves HITs from the store and captures cacheable HTML responses."""

    def __init__(self, app: ASGIApp, service: PageCacheService) -> None:
        self.app = app
        self.service = service

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        settings = self.service.state.settings_store.current()
        if scope.get("path", "").startswith(settings.cache.public_url):
            await self.app(scope, receive, send)
            return

        self.service.state.jobs.bind_loop(asyncio.get_running_loop())
        decision = self.service.decide(request_info_from_scope(scope, settings), settings=settings)

        if decision.state is ServeState.SERVE_HIT:
            cached = await run_in_threadpool(self.service.serve, decision)
            if cached is not None:
                response = Response(cached.body, status_code=cached.status_code)
                response.raw_headers = [
                    (name.lower().encode("latin-1"), value.encode("latin-1")) for name, value in cached.headers
                ]
                response.headers["content-length"] = str(len(cached.body))
                await response(scope, receive, send)
                return
            decision = replace(decision, state=ServeState.SERVE_MISS_CAPTURE)

        responder = _CaptureResponder(self.app, self.service, decision)
        await responder(scope, receive, send)


class _CaptureResponder:
    def __init__(self, app: ASGIApp, service: PageCacheService, decision: Decision) -> None:
        self.app = app
        self.service = service
        self.decision = decision
        self.initial_message: Message | None = None
        self.capturing = False
        self.chunks: list[bytes] = []
        self.send: Send | None = None

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        self.send = send
        await self.app(scope, receive, self.send_wrapper)

    def _should_capture(self, message: Message) -> bool:
        if self.decision.request.method.upper() == "HEAD" or message["status"] != 200:
            return False
        headers = MutableHeaders(raw=message["headers"])
        content_type = headers.get("content-type", "").lower()
        return content_type.startswith("text/html") and "content-encoding" not in headers

    async def send_wrapper(self, message: Message) -> None:
        assert self.send is not None
        if message["type"] == "http.response.start":
            headers = MutableHeaders(raw=message["headers"])
            self.capturing = self._should_capture(message)
            if not self.capturing:
                headers[self.decision.settings.cache.status_header] = self.decision.status.value
                await self.send(message)
                return
            self.initial_message = message
            return

        if message["type"] != "http.response.body" or not self.capturing:
            await self.send(message)
            return

        self.chunks.append(message.get("body", b""))
        if message.get("more_body", False):
            return

        body = b"".join(self.chunks)
        status = self.decision.status
        try:
            text = body.decode("utf-8")
        except UnicodeDecodeError:
            log.info("capture_skipped", uri=self.decision.request.uri, reason="not_utf8")
        else:
            result = await run_in_threadpool(self.service.capture, self.decision, text, status_code=200)
            body = result.body.encode("utf-8")
            status = result.status

        assert self.initial_message is not None
        headers = MutableHeaders(raw=self.initial_message["headers"])
        headers[self.decision.settings.cache.status_header] = status.value
        headers["content-length"] = str(len(body))
        await self.send(self.initial_message)
        await self.send({"type": "http.response.body", "body": body})

