"""End-to-end tests for the page cache wrapped around an ASGI site."""

from __future__ import annotations

import re

from pagecache.admin import page_path
from pagecache.keys import cache_key
from pagecache.markup import LINK_TAG_RE, tag_attrs
from pagecache.store import FONT_CSS, PAGES

FONT_CSS_URL = "https://fonts.googleapis.com/css2?family=Roboto"
FONT_FILE_URL = "https://fonts.gstatic.com/s/roboto/v30/roboto.woff2"
KEY = cache_key("/blog/post-1", "example.com", "http", home_url="http://example.com")


class TestFirstViewAndHit:
    async def test_miss_persists_then_hit(self, client, state, renders) -> None:
        first = await client.get("/blog/post-1")
        assert first.status_code == 200
        assert first.headers["x-pagecache"] == "MISS"
        assert page_path(state.store, KEY).exists()
        assert "<h1>Post 1</h1>" in first.text
        assert int(first.headers["content-length"]) == len(first.content)

        second = await client.get("/blog/post-1")
        assert second.status_code == 200
        assert second.headers["x-pagecache"] == "HIT"
        assert second.headers["etag"].startswith('"')
        assert second.headers["vary"] == "Cookie"
        assert second.headers["cache-control"] == "public, max-age=3600"
        assert second.text == first.text
        assert renders.count == 1

    async def test_conditional_get_returns_304(self, client, renders) -> None:
        await client.get("/blog/post-1")
        etag = (await client.get("/blog/post-1")).headers["etag"]

        response = await client.get("/blog/post-1", headers={"If-None-Match": etag})
        assert response.status_code == 304
        assert response.content == b""
        assert renders.count == 1

    async def test_stale_etag_gets_full_body(self, client) -> None:
        await client.get("/blog/post-1")
        response = await client.get("/blog/post-1", headers={"If-None-Match": '"stale"'})
        assert response.status_code == 200
        assert response.headers["x-pagecache"] == "HIT"


class TestBypass:
    async def test_logged_in_cookie_never_persisted(self, client, state) -> None:
        for _ in range(2):
            response = await client.get("/blog/post-1", headers={"Cookie": "wordpress_logged_in_abc123=x"})
            assert response.headers["x-pagecache"] == "BYPASS"
            assert "<h1>Post   1</h1>" in response.text
        assert state.store.usage(PAGES) == (0, 0)

    async def test_logged_in_not_served_existing_page(self, client, renders) -> None:
        await client.get("/blog/post-1")
        response = await client.get("/blog/post-1", headers={"Cookie": "wordpress_logged_in_abc123=x"})
        assert response.headers["x-pagecache"] == "BYPASS"
        assert renders.count == 2

    async def test_cart_cookie_optimized_not_cached(self, client, state) -> None:
        response = await client.get("/blog/post-1", headers={"Cookie": "woocommerce_items_in_cart=1"})
        assert response.headers["x-pagecache"] == "BYPASS"
        assert "<h1>Post 1</h1>" in response.text
        assert state.store.usage(PAGES) == (0, 0)

    async def test_search_query_bypasses(self, client, state) -> None:
        response = await client.get("/blog/post-1", params={"s": "hello"})
        assert response.headers["x-pagecache"] == "BYPASS"
        assert state.store.usage(PAGES) == (0, 0)

    async def test_post_not_cached(self, client, state) -> None:
        response = await client.post("/blog/post-1")
        assert response.headers["x-pagecache"] == "BYPASS"
        assert state.store.usage(PAGES) == (0, 0)

    async def test_non_html_passes_through(self, client, state) -> None:
        response = await client.get("/api/data")
        assert response.json() == {"ok": True}
        text = await client.get("/robots.txt")
        assert text.text == "plain   text"
        assert state.store.usage(PAGES) == (0, 0)

    async def test_error_pages_not_cached(self, client, state) -> None:
        response = await client.get("/missing")
        assert response.status_code == 404
        assert state.store.usage(PAGES) == (0, 0)


class TestInvalidation:
    async def test_settings_change_purges_pages(self, client, state, settings) -> None:
        await client.get("/blog/post-1")
        assert state.store.usage(PAGES)[0] == 1

        updated = settings.model_copy(update={"optimize": settings.optimize.model_copy(update={"minify_html": False})})
        state.settings_store.save(updated)
        assert state.store.usage(PAGES) == (0, 0)

        response = await client.get("/blog/post-1")
        assert response.headers["x-pagecache"] == "MISS"
        assert "<h1>Post   1</h1>" in response.text

    async def test_purge_page(self, client, state) -> None:
        await client.get("/blog/post-1")
        assert state.admin.purge_page("http://example.com/blog/post-1") is True
        assert (await client.get("/blog/post-1")).headers["x-pagecache"] == "MISS"


class TestCombination:
    async def test_stylesheets_combined_by_media(self, client, state, settings) -> None:
        state.settings_store.save(
            settings.model_copy(update={"optimize": settings.optimize.model_copy(update={"combine_css": True})})
        )
        response = await client.get("/blog/post-1")
        links = [tag_attrs(m.group(0)) for m in LINK_TAG_RE.finditer(response.text)]

        assert len(links) == 2
        assert re.fullmatch(r"/_pagecache/css/combined-[0-9a-f]{64}\.css", links[0]["href"])
        assert links[1]["media"] == "print"
        assert "combined-" not in links[1]["href"]

        asset = await client.get(links[0]["href"])
        assert asset.status_code == 200
        assert "margin:0" in asset.text

    async def test_scripts_deferred(self, client) -> None:
        response = await client.get("/blog/post-1")
        assert re.search(r'<script defer src="/_pagecache/js/[0-9a-f]{64}\.js"></script>', response.text)


class TestBackgroundLocalization:
    async def test_font_job_scheduled_from_capture_runs(self, client, state, settings, fake_fetcher) -> None:
        fake_fetcher.responses = {
            FONT_CSS_URL: f"@font-face{{src:url({FONT_FILE_URL})}}".encode(),
            FONT_FILE_URL: b"wOF2-data",
        }
        state.fetcher = fake_fetcher
        state.allowlist = frozenset({"fonts.googleapis.com", "fonts.gstatic.com"})
        state.settings_store.save(
            settings.model_copy(update={"optimize": settings.optimize.model_copy(update={"local_fonts": True})})
        )

        first = await client.get("/fonts")
        assert FONT_CSS_URL in first.text
        await state.jobs.join()
        assert fake_fetcher.calls == [FONT_CSS_URL, FONT_FILE_URL]
        assert state.store.usage(FONT_CSS)[0] == 1

        # Uncached anonymous views are still optimized and pick up the local copy
        second = await client.get("/fonts", headers={"Cookie": "woocommerce_items_in_cart=1"})
        assert FONT_CSS_URL not in second.text
        assert re.search(r'href="/_pagecache/fonts/css/[0-9a-f]{64}\.css"', second.text)
