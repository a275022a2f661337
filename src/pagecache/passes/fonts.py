"""Web-font localization.

Foreground: a ``<link rel="stylesheet">`` pointing at a configured font
stylesheet host is repointed at ``fonts/css/<hash>.css`` when a fresh local
copy exists. Otherwise the tag is left untouched and a background job is
enqueued under ``font-<hash>``; the foreground request never waits for it.

Background: download the stylesheet, download every font file it
references into ``fonts/files/``, rewrite the references, minify (if
enabled) and persist the stylesheet, then purge cached pages so the next
render picks up the local copy. Any failed download aborts the whole job,
leaving no local stylesheet that points at missing files.
"""

from __future__ import annotations

from pathlib import PurePosixPath
from typing import TYPE_CHECKING
from urllib.parse import urljoin, urlsplit

import structlog

from pagecache.keys import content_hash
from pagecache.markup import LINK_TAG_RE, CommentIndex, apply_replacements, set_attr, tag_attrs
from pagecache.minify import minify_css
from pagecache.passes.common import is_pinned
from pagecache.rewriter import find_css_urls, replace_css_urls
from pagecache.store import FONT_CSS, FONT_FILES

if TYPE_CHECKING:
    from pagecache.pipeline import PassContext

log = structlog.get_logger()

FONT_EXTENSIONS = frozenset({".woff2", ".woff", ".ttf", ".otf", ".eot", ".svg"})


def stylesheet_key(url: str) -> str:
    return content_hash(url)


def apply(html: str, ctx: PassContext) -> str:
    if not ctx.settings.optimize.local_fonts:
        return html

    hosts = {host.lower() for host in ctx.settings.fetcher.font_stylesheet_hosts}
    ttl = ctx.settings.cache.asset_ttl_seconds
    comments = CommentIndex(html)
    replacements: list[tuple[int, int, str]] = []

    for match in LINK_TAG_RE.finditer(html):
        if comments.contains(match.start()):
            continue
        tag = match.group(0)
        attrs = tag_attrs(tag)
        if "stylesheet" not in attrs.get("rel", "").lower().split() or is_pinned(attrs):
            continue
        href = attrs.get("href", "").strip()
        if not href:
            continue
        url = ctx.locator.absolute_url(href, ctx.page_url)
        if ctx.locator.host_of(url) not in hosts:
            continue

        key = stylesheet_key(url)
        path = ctx.store.path_for(FONT_CSS, f"{key}.css")
        if ctx.store.is_fresh(path, ttl):
            replacements.append((match.start(), match.end(), set_attr(tag, "href", ctx.store.url_for(path))))
        else:
            schedule(url, key, ctx)

    return apply_replacements(html, replacements)


def schedule(url: str, key: str, ctx: PassContext) -> bool:
    if ctx.jobs is None or ctx.fetcher is None:
        log.debug("font_localize_unavailable", url=url)
        return False
    return ctx.jobs.enqueue(
        lambda: localize_stylesheet(url, ctx),
        dedupe_key=f"font-{key}",
        lock_ttl_seconds=ctx.settings.cache.lock_ttl_seconds,
    )


async def localize_stylesheet(url: str, ctx: PassContext) -> bool:
    """Download a font stylesheet and its font files into the cache."""
    if ctx.fetcher is None:
        return False

    body = await ctx.fetcher.fetch(url, ctx.allowlist)
    if body is None:
        return False
    css = body.decode("utf-8", errors="replace")

    local_refs: dict[str, str] = {}
    for ref in find_css_urls(css):
        if ref.lower().startswith("data:") or ref.startswith("#"):
            continue
        font_url = urljoin(url, ref)
        local = await _localize_font_file(font_url, ctx)
        if local is None:
            log.warning("font_localize_aborted", url=url, font_url=font_url)
            return False
        local_refs[ref] = local

    css = replace_css_urls(css, local_refs.get)
    if ctx.settings.optimize.minify_css:
        css = minify_css(css)

    path = ctx.store.path_for(FONT_CSS, f"{stylesheet_key(url)}.css")
    if not ctx.store.write(path, css.encode("utf-8")):
        return False

    log.info("font_stylesheet_localized", url=url, files=len(local_refs))
    if ctx.admin is not None:
        ctx.admin.purge_pages()
    return True


async def _localize_font_file(font_url: str, ctx: PassContext) -> str | None:
    suffix = PurePosixPath(urlsplit(font_url).path).suffix.lower()
    extension = suffix if suffix in FONT_EXTENSIONS else ".font"
    path = ctx.store.path_for(FONT_FILES, f"{content_hash(font_url)}{extension}")

    if not ctx.store.is_fresh(path, ctx.settings.cache.asset_ttl_seconds):
        data = await ctx.fetcher.fetch(font_url, ctx.allowlist) if ctx.fetcher else None
        if data is None or not ctx.store.write(path, data):
            return None
    return ctx.store.url_for(path)
