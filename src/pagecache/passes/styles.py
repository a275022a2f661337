"""External stylesheet pass.

Eligible ``<link rel="stylesheet">`` tags point at a same-origin ``.css``
file under the document root, are not excluded by pattern and carry no
``integrity``/``crossorigin`` attribute. Tags inside HTML comments and
alternate stylesheets are skipped.

Sheets that use ``@import`` are never combined: the rule would land after
other rules and be ignored. They are minified as single files instead.

With combination on, eligible tags are grouped by ``media``. A group of two
or more becomes one ``css/combined-<hash>.css`` linked where the first
member was; the other members are removed. A group of one is handled as a
single file. With combination off, each eligible stylesheet is minified
into ``css/<hash>.css`` and its ``href`` repointed.

Relocated CSS has its relative ``url()`` and ``@import`` references made
absolute against the original stylesheet URL first.
"""

from __future__ import annotations

import html as html_lib
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog

from pagecache.keys import content_hash
from pagecache.markup import LINK_TAG_RE, CommentIndex, apply_replacements, set_attr, tag_attrs
from pagecache.minify import minify_css
from pagecache.models.assets import LocalAsset
from pagecache.passes.common import is_excluded, is_pinned, read_text, store_text
from pagecache.rewriter import rewrite_css_urls
from pagecache.store import CSS

if TYPE_CHECKING:
    from pagecache.pipeline import PassContext

log = structlog.get_logger()

_CHARSET_RE = re.compile(r"""@charset\s+["'][^"']*["']\s*;""", re.IGNORECASE)
_IMPORT_RE = re.compile(r"@import\b", re.IGNORECASE)

# A title makes the sheet part of a named style set; onload/disabled are
# the async-loading tricks. Such tags keep their own <link>.
_NON_COMBINABLE_ATTRS = ("title", "onload", "disabled")


@dataclass
class Stylesheet:
    start: int
    end: int
    tag: str
    href: str
    media: str
    asset: LocalAsset
    css: str
    combinable: bool


def apply(html: str, ctx: PassContext) -> str:
    optimize = ctx.settings.optimize
    if not (optimize.combine_css or optimize.minify_css):
        return html

    sheets = find_stylesheets(html, ctx)
    if not sheets:
        return html

    replacements: list[tuple[int, int, str]] = []
    if optimize.combine_css:
        groups: dict[str, list[Stylesheet]] = {}
        for sheet in sheets:
            if sheet.combinable:
                groups.setdefault(sheet.media, []).append(sheet)
            elif optimize.minify_css:
                replacements.extend(_single(sheet, ctx))
        for media, members in groups.items():
            if len(members) >= 2:
                replacements.extend(_combine(members, media, ctx))
            elif optimize.minify_css:
                replacements.extend(_single(members[0], ctx))
    else:
        for sheet in sheets:
            replacements.extend(_single(sheet, ctx))

    return apply_replacements(html, replacements)


def find_stylesheets(html: str, ctx: PassContext) -> list[Stylesheet]:
    comments = CommentIndex(html)
    patterns = ctx.settings.exclusions.css
    sheets: list[Stylesheet] = []

    for match in LINK_TAG_RE.finditer(html):
        if comments.contains(match.start()):
            continue
        tag = match.group(0)
        attrs = tag_attrs(tag)
        rel = attrs.get("rel", "").lower().split()
        if "stylesheet" not in rel or "alternate" in rel:
            continue
        href = attrs.get("href", "").strip()
        if not href or is_pinned(attrs) or is_excluded(href, patterns, ctx):
            continue

        resolution = ctx.locator.resolve(href, ctx.page_url, extensions=(".css",))
        if not isinstance(resolution, LocalAsset):
            log.debug("stylesheet_skipped", href=href, reason=getattr(resolution, "reason", "remote"))
            continue
        css = read_text(resolution.path)
        if css is None:
            continue

        sheets.append(
            Stylesheet(
                start=match.start(),
                end=match.end(),
                tag=tag,
                href=href,
                media=attrs.get("media", "").strip().lower() or "all",
                asset=resolution,
                css=css,
                combinable=not (any(name in attrs for name in _NON_COMBINABLE_ATTRS) or _IMPORT_RE.search(css)),
            )
        )
    return sheets


def relocate(sheet: Stylesheet) -> str:
    """CSS text ready to be served from the cache directory."""
    return rewrite_css_urls(sheet.css, sheet.asset.url)


def _combine(members: list[Stylesheet], media: str, ctx: PassContext) -> list[tuple[int, int, str]]:
    # @charset is only valid as the very first rule of a file
    content = "\n".join(_CHARSET_RE.sub("", relocate(sheet)) for sheet in members)
    if ctx.settings.optimize.minify_css:
        content = minify_css(content)

    sources = "\n".join(sheet.asset.url for sheet in members)
    url = store_text(ctx, CSS, f"combined-{content_hash(sources, content)}.css", content)
    if url is None:
        return []

    log.debug("stylesheets_combined", media=media, count=len(members), url=url)
    link = (
        f'<link rel="stylesheet" href="{html_lib.escape(url, quote=True)}" '
        f'media="{html_lib.escape(media, quote=True)}">'
    )
    first, *rest = members
    return [(first.start, first.end, link)] + [(sheet.start, sheet.end, "") for sheet in rest]


def _single(sheet: Stylesheet, ctx: PassContext) -> list[tuple[int, int, str]]:
    content = minify_css(relocate(sheet))
    if not content:
        return []
    url = store_text(ctx, CSS, f"{content_hash(sheet.asset.url, content)}.css", content)
    if url is None:
        return []
    return [(sheet.start, sheet.end, set_attr(sheet.tag, "href", url))]
