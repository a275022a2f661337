"""Inline ``<style>`` and ``<script>`` minification."""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

from pagecache.markup import SCRIPT_BLOCK_RE, STYLE_BLOCK_RE, is_js_script, parse_attrs
from pagecache.minify import minify_css, minify_js

if TYPE_CHECKING:
    from pagecache.pipeline import PassContext


def _replace_body(match: re.Match[str], body: str) -> str:
    block = match.group(0)
    offset = match.start()
    return block[: match.start("body") - offset] + body + block[match.end("body") - offset :]


def minify_styles(html: str, ctx: PassContext) -> str:
    if not ctx.settings.optimize.minify_css:
        return html

    def _sub(match: re.Match[str]) -> str:
        body = match.group("body")
        if not body.strip():
            return match.group(0)
        return _replace_body(match, minify_css(body))

    return STYLE_BLOCK_RE.sub(_sub, html)


def minify_scripts(html: str, ctx: PassContext) -> str:
    """Minify inline classic and module scripts. JSON and template blocks are data."""
    if not ctx.settings.optimize.minify_js:
        return html

    def _sub(match: re.Match[str]) -> str:
        body = match.group("body")
        if not body.strip():
            return match.group(0)
        attrs = parse_attrs(match.group("attrs"))
        if "src" in attrs or not is_js_script(attrs):
            return match.group(0)
        result = minify_js(body)
        if result.degraded:
            return match.group(0)
        return _replace_body(match, result.content)

    return SCRIPT_BLOCK_RE.sub(_sub, html)
