"""Helpers shared by the stylesheet and script passes."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from pagecache.exclusions import matches

if TYPE_CHECKING:
    from pathlib import Path

    from pagecache.pipeline import PassContext

log = structlog.get_logger()

# Attributes that bind a tag to the exact bytes or fetch mode of its source
PINNED_ATTRS = ("integrity", "crossorigin")


def is_pinned(attrs: dict[str, str]) -> bool:
    return any(name in attrs for name in PINNED_ATTRS)


def is_excluded(ref: str, patterns: list[str], ctx: PassContext) -> bool:
    """Match both the reference as written and its absolute form."""
    if not patterns:
        return False
    return matches(ref, patterns) or matches(ctx.locator.absolute_url(ref, ctx.page_url), patterns)


def read_text(path: Path) -> str | None:
    """Read a same-origin asset as UTF-8, or None when it cannot be used."""
    try:
        text = path.read_bytes().decode("utf-8")
    except OSError:
        log.warning("asset_read_error", path=str(path), exc_info=True)
        return None
    except UnicodeDecodeError:
        log.info("asset_not_utf8", path=str(path))
        return None
    return text.removeprefix("\ufeff")


def store_text(ctx: PassContext, subtree: str, name: str, content: str) -> str | None:
    """Persist ``content`` unless already present and return its public URL.

    Names are content-addressed, so an existing file never needs rewriting.
    Returns None when the write fails and the original reference must stay.
    """
    path = ctx.store.path_for(subtree, name)
    if not ctx.store.exists(path) and not ctx.store.write(path, content.encode("utf-8")):
        return None
    return ctx.store.url_for(path)
