"""Integration test fixtures.

Provides an upstream Starlette site wrapped by the page cache, served
in-process through httpx.ASGITransport. Settings, store and AppState come
from tests/conftest.py.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import httpx
import pytest
from starlette.applications import Starlette
from starlette.responses import HTMLResponse, JSONResponse, PlainTextResponse
from starlette.routing import Route

from pagecache.server import build_app

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from starlette.requests import Request

    from pagecache.state import AppState

POST_HTML = """<!DOCTYPE html>
<html>
<head>
  <title>Post 1</title>
  <link rel="stylesheet" href="/assets/css/a.css" media="all">
  <link rel="stylesheet" href="/assets/css/b.css" media="all">
  <link rel="stylesheet" href="/assets/css/print.css" media="print">
  <script src="/assets/js/one.js"></script>
</head>
<body>
  <article>
    <h1>Post   1</h1>
  </article>
</body>
</html>
"""


FONT_CSS_URL = "https://fonts.googleapis.com/css2?family=Roboto"
FONT_FILE_URL = "https://fonts.gstatic.com/s/roboto/v30/roboto.woff2"
FONTS_HTML = f'<html><head><link rel="stylesheet" href="{FONT_CSS_URL}"></head><body><p>fonts</p></body></html>'


class RenderCounter:
    def __init__(self) -> None:
        self.count = 0


@pytest.fixture()
def renders() -> RenderCounter:
    return RenderCounter()


@pytest.fixture()
def upstream(renders: RenderCounter) -> Starlette:
    async def post(request: Request) -> HTMLResponse:
        renders.count += 1
        return HTMLResponse(POST_HTML)

    async def fonts(request: Request) -> HTMLResponse:
        return HTMLResponse(FONTS_HTML)

    async def missing(request: Request) -> HTMLResponse:
        return HTMLResponse("<html><body>Not found</body></html>", status_code=404)

    async def api(request: Request) -> JSONResponse:
        return JSONResponse({"ok": True})

    async def text(request: Request) -> PlainTextResponse:
        return PlainTextResponse("plain   text")

    return Starlette(
        routes=[
            Route("/blog/post-1", post),
            Route("/blog/post-1/", post),
            Route("/fonts", fonts),
            Route("/missing", missing),
            Route("/api/data", api),
            Route("/robots.txt", text),
        ]
    )


@pytest.fixture()
async def client(upstream: Starlette, state: AppState) -> AsyncIterator[httpx.AsyncClient]:
    app = build_app(upstream, state)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://example.com") as http:
        yield http
