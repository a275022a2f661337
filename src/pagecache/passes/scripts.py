"""External script pass.

Works like the stylesheet pass, with two extra constraints that keep
execution order intact:

* the head region (before ``</head>``) and the body region are handled
  separately, so a bundle never moves code across that boundary;
* only runs of adjacent eligible scripts are combined. Any other
  ``<script>`` between two eligible ones (inline, remote, excluded, pinned)
  ends the run, because it must still execute between them.

Scripts that are ``async``, ``defer``, ``nomodule`` or module-typed are
never combined. Classic ``async``/``defer`` scripts may still be minified
one by one; module scripts are left alone since their relative imports
resolve against their own URL.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog

from pagecache.keys import content_hash
from pagecache.markup import (
    SCRIPT_BLOCK_RE,
    CommentIndex,
    apply_replacements,
    head_end,
    is_js_script,
    parse_attrs,
    script_type,
    set_attr,
)
from pagecache.minify import minify_js
from pagecache.models.assets import LocalAsset
from pagecache.passes.common import is_excluded, is_pinned, read_text, store_text
from pagecache.store import JS

if TYPE_CHECKING:
    from pagecache.pipeline import PassContext

log = structlog.get_logger()

_ORDERING_ATTRS = ("async", "defer", "nomodule")


@dataclass
class Script:
    start: int
    end: int
    block: str
    region: str
    src: str = ""
    asset: LocalAsset | None = None
    js: str = ""
    combinable: bool = False

    @property
    def eligible(self) -> bool:
        return self.asset is not None


def apply(html: str, ctx: PassContext) -> str:
    optimize = ctx.settings.optimize
    if not (optimize.combine_js or optimize.minify_js):
        return html

    scripts = find_scripts(html, ctx)
    if not any(script.eligible for script in scripts):
        return html

    replacements: list[tuple[int, int, str]] = []
    run: list[Script] = []

    def flush() -> None:
        if len(run) >= 2:
            replacements.extend(_combine(run, ctx))
        elif run and optimize.minify_js:
            replacements.extend(_single(run[0], ctx))
        run.clear()

    for script in scripts:
        if optimize.combine_js and script.combinable:
            if run and run[-1].region != script.region:
                flush()
            run.append(script)
            continue
        flush()
        if script.eligible and optimize.minify_js:
            replacements.extend(_single(script, ctx))
    flush()

    return apply_replacements(html, replacements)


def find_scripts(html: str, ctx: PassContext) -> list[Script]:
    """Every script block outside comments, eligible or not, in document order."""
    comments = CommentIndex(html)
    boundary = head_end(html)
    patterns = ctx.settings.exclusions.js
    scripts: list[Script] = []

    for match in SCRIPT_BLOCK_RE.finditer(html):
        if comments.contains(match.start()):
            continue
        script = Script(
            start=match.start(),
            end=match.end(),
            block=match.group(0),
            region="head" if match.start() < boundary else "body",
        )
        scripts.append(script)

        attrs = parse_attrs(match.group("attrs"))
        src = attrs.get("src", "").strip()
        if not src or match.group("body").strip():
            continue
        if not is_js_script(attrs) or script_type(attrs) == "module" or is_pinned(attrs):
            continue
        if is_excluded(src, patterns, ctx):
            continue

        resolution = ctx.locator.resolve(src, ctx.page_url, extensions=(".js",))
        if not isinstance(resolution, LocalAsset):
            log.debug("script_skipped", src=src, reason=getattr(resolution, "reason", "remote"))
            continue
        js = read_text(resolution.path)
        if js is None:
            continue

        script.src = src
        script.asset = resolution
        script.js = js
        script.combinable = not any(name in attrs for name in _ORDERING_ATTRS)
    return scripts


def _combine(run: list[Script], ctx: PassContext) -> list[tuple[int, int, str]]:
    # A file without a trailing semicolon must not run into the next one
    content = ";\n".join(script.js.rstrip() for script in run)
    if ctx.settings.optimize.minify_js:
        minified = minify_js(content)
        if not minified.degraded:
            content = minified.content

    sources = "\n".join(script.asset.url for script in run if script.asset is not None)
    url = store_text(ctx, JS, f"combined-{content_hash(sources, content)}.js", content)
    if url is None:
        return []

    log.debug("scripts_combined", region=run[0].region, count=len(run), url=url)
    first, *rest = run
    bundle = set_attr("<script></script>", "src", url)
    return [(first.start, first.end, bundle)] + [(script.start, script.end, "") for script in rest]


def _single(script: Script, ctx: PassContext) -> list[tuple[int, int, str]]:
    if script.asset is None:
        return []
    minified = minify_js(script.js)
    if minified.degraded or not minified.content.strip():
        return []
    url = store_text(ctx, JS, f"{content_hash(script.asset.url, minified.content)}.js", minified.content)
    if url is None:
        return []
    return [(script.start, script.end, set_attr(script.block, "src", url))]
