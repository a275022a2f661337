"""Unit tests for web-font localization."""

from __future__ import annotations

from pagecache.keys import content_hash
from pagecache.passes import fonts
from pagecache.store import FONT_CSS, FONT_FILES, PAGES

FONT_CSS_URL = "https://fonts.googleapis.com/css2?family=Roboto"
FONT_FILE_URL = "https://fonts.gstatic.com/s/roboto/v30/roboto.woff2"
REMOTE_CSS = (
    "/* latin */\n@font-face {\n  font-family: 'Roboto';\n"
    f"  src: url({FONT_FILE_URL}) format('woff2');\n}}\n"
).encode()
HTML = f'<head><link rel="stylesheet" href="{FONT_CSS_URL}" id="fonts-css"></head>'


class TestForeground:
    def test_disabled_is_identity(self, settings, make_ctx) -> None:
        assert fonts.apply(HTML, make_ctx(settings)) == HTML

    async def test_uncached_stylesheet_left_and_job_enqueued(self, settings, tune, make_ctx, fake_fetcher, state) -> None:
        ctx = make_ctx(tune(settings, local_fonts=True), fetcher=fake_fetcher)
        assert fonts.apply(HTML, ctx) == HTML
        assert state.jobs.pending == 1
        await state.jobs.join()

    async def test_repeat_views_enqueue_one_job(self, settings, tune, make_ctx, fake_fetcher, state) -> None:
        ctx = make_ctx(tune(settings, local_fonts=True), fetcher=fake_fetcher)
        for _ in range(5):
            fonts.apply(HTML, ctx)
        await state.jobs.join()
        assert fake_fetcher.calls == [FONT_CSS_URL]

    def test_fresh_local_copy_rewrites_href(self, settings, tune, make_ctx, store) -> None:
        path = store.path_for(FONT_CSS, f"{content_hash(FONT_CSS_URL)}.css")
        store.write(path, b"@font-face{}")
        out = fonts.apply(HTML, make_ctx(tune(settings, local_fonts=True)))
        assert f'href="{store.url_for(path)}"' in out
        assert 'id="fonts-css"' in out

    def test_other_hosts_untouched(self, settings, tune, make_ctx, state) -> None:
        html = '<link rel="stylesheet" href="https://cdn.other.org/fonts.css">'
        assert fonts.apply(html, make_ctx(tune(settings, local_fonts=True))) == html
        assert state.jobs.pending == 0


class TestBackgroundJob:
    async def test_downloads_rewrites_and_purges_pages(self, settings, tune, make_ctx, fake_fetcher, store) -> None:
        fake_fetcher.responses = {FONT_CSS_URL: REMOTE_CSS, FONT_FILE_URL: b"wOF2-data"}
        page = store.path_for(PAGES, "k.html")
        store.write(page, b"<html></html>")

        assert await fonts.localize_stylesheet(FONT_CSS_URL, make_ctx(tune(settings, local_fonts=True), fetcher=fake_fetcher))

        css_path = store.path_for(FONT_CSS, f"{content_hash(FONT_CSS_URL)}.css")
        font_path = store.path_for(FONT_FILES, f"{content_hash(FONT_FILE_URL)}.woff2")
        assert font_path.read_bytes() == b"wOF2-data"
        css = css_path.read_text()
        assert store.url_for(font_path) in css
        assert "fonts.gstatic.com" not in css
        assert "latin" not in css  # minified
        assert not page.exists()

    async def test_failed_font_file_aborts(self, settings, tune, make_ctx, fake_fetcher, store) -> None:
        fake_fetcher.responses = {FONT_CSS_URL: REMOTE_CSS}
        page = store.path_for(PAGES, "k.html")
        store.write(page, b"<html></html>")

        ctx = make_ctx(tune(settings, local_fonts=True), fetcher=fake_fetcher)
        assert await fonts.localize_stylesheet(FONT_CSS_URL, ctx) is False
        assert not store.path_for(FONT_CSS, f"{content_hash(FONT_CSS_URL)}.css").exists()
        assert page.exists()

    async def test_failed_stylesheet_fetch(self, settings, tune, make_ctx, fake_fetcher) -> None:
        ctx = make_ctx(tune(settings, local_fonts=True), fetcher=fake_fetcher)
        assert await fonts.localize_stylesheet(FONT_CSS_URL, ctx) is False

    async def test_end_to_end_second_view_uses_local_copy(self, settings, tune, make_ctx, fake_fetcher, state) -> None:
        fake_fetcher.responses = {FONT_CSS_URL: REMOTE_CSS, FONT_FILE_URL: b"wOF2-data"}
        ctx = make_ctx(tune(settings, local_fonts=True), fetcher=fake_fetcher)

        assert fonts.apply(HTML, ctx) == HTML
        await state.jobs.join()
        assert "/_pagecache/fonts/css/" in fonts.apply(HTML, ctx)
