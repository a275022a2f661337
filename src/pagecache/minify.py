"""Whitespace and comment reduction for HTML, CSS and JS.

These are pattern-based transforms, not parsers. Known limitations:

* HTML: whitespace inside ``<pre>`` and ``<textarea>`` is collapsed like any
  other text. ``<script>`` bodies are kept verbatim because JS line comments
  and automatic semicolon insertion depend on newlines.
* CSS: whitespace next to ``:`` is removed, so a descendant pseudo-class
  selector written ``a :hover`` becomes ``a:hover``. String literals are
  never modified.
* JS: delegated to ``jsmin``; any failure returns the input unchanged.
"""

from __future__ import annotations

import re
import secrets
from typing import NamedTuple

import structlog
from jsmin import jsmin

log = structlog.get_logger()

_HTML_BETWEEN_TAGS_RE = re.compile(r">\s+<")
_WHITESPACE_RE = re.compile(r"\s+")
_HTML_SCRIPT_BLOCK_RE = re.compile(r"<script\b[^>]*>.*?</script\s*>", re.IGNORECASE | re.DOTALL)

_CSS_STRING = r"\"(?:\\.|[^\"\\])*\"|'(?:\\.|[^'\\])*'"
_CSS_COMMENT_OR_STRING_RE = re.compile(rf"({_CSS_STRING})|/\*.*?\*/", re.DOTALL)
_CSS_STRING_SPLIT_RE = re.compile(rf"({_CSS_STRING})", re.DOTALL)
_CSS_PUNCTUATION_RE = re.compile(r"\s*([{};:,])\s*")


class MinifyResult(NamedTuple):
    content: str
    degraded: bool  # True when minification failed and the input was returned


def minify_html(html: str) -> str:
    """Drop whitespace between tags, collapse the rest to single spaces, trim."""
    token = _placeholder_token(html)
    placeholder_re = re.compile(rf"<{token}-(\d+)>")
    blocks: list[str] = []

    def _protect(match: re.Match[str]) -> str:
        blocks.append(match.group(0))
        return f"<{token}-{len(blocks) - 1}>"

    html = _HTML_SCRIPT_BLOCK_RE.sub(_protect, html)
    html = _HTML_BETWEEN_TAGS_RE.sub("><", html)
    html = _WHITESPACE_RE.sub(" ", html).strip()

    if blocks:
        html = placeholder_re.sub(lambda m: blocks[int(m.group(1))], html)
    return html


def _placeholder_token(html: str) -> str:
    while True:
        token = f"pagecache-{secrets.token_hex(8)}"
        if token not in html:
            return token


def minify_css(css: str) -> str:
    """Strip comments, collapse whitespace, tighten around ``{ } ; : ,``."""
    # Removing one comment can join a stray "/" and "*" into a new one
    while True:
        stripped = _CSS_COMMENT_OR_STRING_RE.sub(lambda m: m.group(1) or "", css)
        if stripped == css:
            break
        css = stripped

    parts = _CSS_STRING_SPLIT_RE.split(css)
    for index in range(0, len(parts), 2):
        segment = _WHITESPACE_RE.sub(" ", parts[index])
        parts[index] = _CSS_PUNCTUATION_RE.sub(r"\1", segment)
    return "".join(parts).strip()


def minify_js(js: str) -> MinifyResult:
    """Minify JS, returning the original text if the minifier fails."""
    if not js.strip():
        return MinifyResult(js, False)
    try:
        return MinifyResult(jsmin(js, quote_chars="'\"`"), False)
    except Exception:
        log.warning("js_minify_failed", length=len(js), exc_info=True)
        return MinifyResult(js, True)
