"""Regex helpers for locating and editing tags in captured HTML.

Every pass in ``pagecache.passes`` works on the raw document text through
these helpers. Matching rules:

* ``<link ...>`` and ``<img ...>`` are matched as single tags.
* ``<script ...>...</script>`` and ``<style ...>...</style>`` are matched
  non-greedily up to the first closing tag.
* Tags that start inside an HTML comment (including conditional comments)
  are reported by ``in_comment`` and skipped by the asset passes.
* Attribute names are case-insensitive; values may be double-quoted,
  single-quoted or bare. Values are HTML-unescaped on read.
"""

from __future__ import annotations

import bisect
import html
import re

LINK_TAG_RE = re.compile(r"<link\b[^>]*>", re.IGNORECASE)
IMG_TAG_RE = re.compile(r"<img\b[^>]*>", re.IGNORECASE)
SCRIPT_BLOCK_RE = re.compile(
    r"<script\b(?P<attrs>[^>]*)>(?P<body>.*?)</script\s*>",
    re.IGNORECASE | re.DOTALL,
)
SCRIPT_OPEN_RE = re.compile(r"<script\b(?P<attrs>[^>]*)>", re.IGNORECASE)
STYLE_BLOCK_RE = re.compile(
    r"<style\b(?P<attrs>[^>]*)>(?P<body>.*?)</style\s*>",
    re.IGNORECASE | re.DOTALL,
)
_COMMENT_RE = re.compile(r"<!--.*?-->", re.DOTALL)
_HEAD_CLOSE_RE = re.compile(r"</head\s*>", re.IGNORECASE)
_ATTR_RE = re.compile(
    r"""([^\s=/>"']+)(?:\s*=\s*(?:"([^"]*)"|'([^']*)'|([^\s"'>]+)))?""",
)
_TAG_NAME_RE = re.compile(r"^<[a-zA-Z][a-zA-Z0-9-]*")

JS_TYPES = frozenset(
    {
        "",
        "text/javascript",
        "application/javascript",
        "application/x-javascript",
        "application/ecmascript",
        "text/ecmascript",
        "module",
    }
)
JSON_TYPES = frozenset({"application/json", "application/ld+json"})


def parse_attrs(attr_text: str) -> dict[str, str]:
    """Parse a tag's attribute string. Boolean attributes map to ``""``."""
    attrs: dict[str, str] = {}
    for match in _ATTR_RE.finditer(attr_text):
        name = match.group(1).lower()
        value = next((g for g in match.group(2, 3, 4) if g is not None), "")
        attrs.setdefault(name, html.unescape(value))
    return attrs


def tag_attrs(tag: str) -> dict[str, str]:
    """Parse the attributes of a complete start tag such as ``<link ...>``."""
    name = _TAG_NAME_RE.match(tag)
    start = name.end() if name else 0
    end = len(tag) - 1 if tag.endswith(">") else len(tag)
    return parse_attrs(tag[start:end])


def set_attr(tag: str, name: str, value: str) -> str:
    """Replace the first ``name=...`` value in ``tag``, or append the attribute."""
    escaped = html.escape(value, quote=True)
    pattern = re.compile(
        rf"""(\s){re.escape(name)}\s*=\s*(?:"[^"]*"|'[^']*'|[^\s"'>]+)""",
        re.IGNORECASE,
    )
    new_tag, count = pattern.subn(lambda m: f'{m.group(1)}{name}="{escaped}"', tag, count=1)
    if count:
        return new_tag
    return insert_attr(tag, f'{name}="{escaped}"')


def insert_attr(tag: str, attribute: str) -> str:
    """Insert a raw attribute right after the tag name."""
    name = _TAG_NAME_RE.match(tag)
    if name is None:
        return tag
    return f"{tag[: name.end()]} {attribute}{tag[name.end() :]}"


def script_type(attrs: dict[str, str]) -> str:
    return attrs.get("type", "").strip().lower()


def is_json_script(attrs: dict[str, str]) -> bool:
    return script_type(attrs) in JSON_TYPES


def is_js_script(attrs: dict[str, str]) -> bool:
    """True for classic and module scripts; False for JSON, templates and other data blocks."""
    return script_type(attrs) in JS_TYPES


class CommentIndex:
    """Answers whether a position lies inside an HTML comment."""

    def __init__(self, document: str) -> None:
        spans = [match.span() for match in _COMMENT_RE.finditer(document)]
        self._starts = [start for start, _ in spans]
        self._ends = [end for _, end in spans]

    def contains(self, position: int) -> bool:
        index = bisect.bisect_right(self._starts, position) - 1
        return index >= 0 and position < self._ends[index]


def head_end(document: str) -> int:
    """Offset of the first ``</head>`` outside comments, or 0 when absent."""
    comments = CommentIndex(document)
    for match in _HEAD_CLOSE_RE.finditer(document):
        if not comments.contains(match.start()):
            return match.start()
    return 0


def apply_replacements(document: str, replacements: list[tuple[int, int, str]]) -> str:
    """Rebuild ``document`` with non-overlapping ``(start, end, text)`` edits applied."""
    if not replacements:
        return document
    pieces: list[str] = []
    cursor = 0
    for start, end, text in sorted(replacements):
        pieces.append(document[cursor:start])
        pieces.append(text)
        cursor = end
    pieces.append(document[cursor:])
    return "".join(pieces)
