"""Rewrites ``url(...)`` and ``@import`` references inside CSS.

A stylesheet that is combined or relocated into the cache directory loses
its original location, so every relative reference is made absolute against
the URL of the stylesheet it came from (not the page that links it).
"""

from __future__ import annotations

import re
from collections.abc import Callable
from urllib.parse import urljoin

from pagecache.locator import has_scheme

_URL_RE = re.compile(
    r"url\(\s*(?P<quote>['\"]?)(?P<ref>.*?)(?P=quote)\s*\)",
    re.IGNORECASE | re.DOTALL,
)
_IMPORT_RE = re.compile(r"(@import\s+)(?P<quote>['\"])(?P<ref>[^'\"]+)(?P=quote)", re.IGNORECASE)


def _is_rewritable(ref: str) -> bool:
    return bool(ref) and not ref.startswith(("#", "//")) and not has_scheme(ref)


def find_css_urls(css: str) -> list[str]:
    """Return the distinct ``url(...)`` references in document order."""
    seen: dict[str, None] = {}
    for match in _URL_RE.finditer(css):
        ref = match.group("ref").strip()
        if ref:
            seen.setdefault(ref, None)
    return list(seen)


def replace_css_urls(css: str, replace: Callable[[str], str | None]) -> str:
    """Substitute each ``url(...)`` reference for which ``replace`` returns a value."""

    def _sub(match: re.Match[str]) -> str:
        quote = match.group("quote")
        new_ref = replace(match.group("ref").strip())
        if new_ref is None:
            return match.group(0)
        return f"url({quote}{new_ref}{quote})"

    return _URL_RE.sub(_sub, css)


def rewrite_css_urls(css: str, css_url: str) -> str:
    """Make relative references in ``css`` absolute against ``css_url``."""

    def _absolute(ref: str) -> str | None:
        return urljoin(css_url, ref) if _is_rewritable(ref) else None

    css = replace_css_urls(css, _absolute)

    def _sub_import(match: re.Match[str]) -> str:
        ref = match.group("ref").strip()
        if not _is_rewritable(ref):
            return match.group(0)
        quote = match.group("quote")
        return f"{match.group(1)}{quote}{urljoin(css_url, ref)}{quote}"

    return _IMPORT_RE.sub(_sub_import, css)
