"""Asset pipeline: ordered HTML -> HTML passes over one captured document.

Pass order is fixed; each pass's output is the next pass's input:

  1. fonts           localize web-font stylesheets (background download)
  2. avatars         localize avatar images (background download)
  3. styles          combine or minify same-origin stylesheets
  4. scripts         combine or minify same-origin scripts, per head/body region
  5. inline_styles   minify ``<style>`` blocks
  6. inline_scripts  minify inline ``<script>`` blocks
  7. defer           add ``defer`` to blocking scripts
  8. html            minify the whole document

Each pass checks its own toggle and returns its input unchanged when
disabled, so no pass depends on an earlier one having run. An exception
inside a pass is logged and that pass is skipped; the document always
reaches the end of the pipeline.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import structlog

from pagecache.locator import AssetLocator
from pagecache.minify import minify_html
from pagecache.passes import avatars, deferral, fonts, inline, scripts, styles

if TYPE_CHECKING:
    from pagecache.admin import CacheAdmin
    from pagecache.config import Settings
    from pagecache.jobs import JobQueue
    from pagecache.protocols import FetcherProtocol
    from pagecache.state import AppState
    from pagecache.store import AtomicStore

log = structlog.get_logger()

DEBUG_MARKER_PREFIX = "<!-- pagecache | generated "
DEBUG_MARKER_RE = re.compile(rb"\n<!-- pagecache \| generated [^>]*-->\s*\Z")


@dataclass
class PassContext:
    """Everything a pass may touch while transforming one document."""

    settings: Settings
    store: AtomicStore
    locator: AssetLocator
    page_url: str
    jobs: JobQueue | None = None
    fetcher: FetcherProtocol | None = None
    allowlist: frozenset[str] = field(default_factory=frozenset)
    admin: CacheAdmin | None = None


def minify_document(html: str, ctx: PassContext) -> str:
    if not ctx.settings.optimize.minify_html:
        return html
    return minify_html(html)


Pass = Callable[[str, PassContext], str]

PASSES: list[tuple[str, Pass]] = [
    ("fonts", fonts.apply),
    ("avatars", avatars.apply),
    ("styles", styles.apply),
    ("scripts", scripts.apply),
    ("inline_styles", inline.minify_styles),
    ("inline_scripts", inline.minify_scripts),
    ("defer", deferral.apply),
    ("html", minify_document),
]


def debug_marker(now: datetime | None = None) -> str:
    stamp = (now or datetime.now(UTC)).isoformat(timespec="seconds")
    return f"\n{DEBUG_MARKER_PREFIX}{stamp} -->"


class AssetPipeline:
    """Runs the pass sequence with per-pass failure isolation."""

    def __init__(self, state: AppState) -> None:
        self._state = state

    def context(self, settings: Settings, page_url: str, scheme: str | None = None) -> PassContext:
        return PassContext(
            settings=settings,
            store=self._state.store,
            locator=AssetLocator(settings.site, settings.fetcher, scheme=scheme),
            page_url=page_url,
            jobs=self._state.jobs,
            fetcher=self._state.fetcher,
            allowlist=self._state.allowlist,
            admin=self._state.admin,
        )

    def run(self, html: str, ctx: PassContext) -> str:
        if not html:
            return html

        for name, apply in PASSES:
            try:
                html = apply(html, ctx)
            except Exception:
                log.warning("pipeline_pass_failed", step=name, url=ctx.page_url, exc_info=True)

        if ctx.settings.optimize.debug_footer:
            html += debug_marker()
        return html
