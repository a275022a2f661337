"""Adds ``defer`` to blocking scripts.

Only the opening tag of a matched ``<script>...</script>`` block is edited,
so markup-looking text inside a script body is never touched. Scripts that
already carry ``defer`` or ``async``, module scripts (deferred by default)
and non-JS types such as JSON-LD are left as they are.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

from pagecache.markup import SCRIPT_BLOCK_RE, insert_attr, is_js_script, parse_attrs, script_type

if TYPE_CHECKING:
    from pagecache.pipeline import PassContext


def should_defer(attrs: dict[str, str]) -> bool:
    if "defer" in attrs or "async" in attrs:
        return False
    return is_js_script(attrs) and script_type(attrs) != "module"


def apply(html: str, ctx: PassContext) -> str:
    if not ctx.settings.optimize.defer_scripts:
        return html

    def _sub(match: re.Match[str]) -> str:
        if not should_defer(parse_attrs(match.group("attrs"))):
            return match.group(0)
        block = match.group(0)
        open_end = match.end("attrs") - match.start() + 1
        return insert_attr(block[:open_end], "defer") + block[open_end:]

    return SCRIPT_BLOCK_RE.sub(_sub, html)
