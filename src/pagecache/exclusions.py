"""Wildcard exclusion matching for pages and assets.

Patterns use ``*`` (any run of characters) and ``?`` (exactly one character),
are anchored at both ends and match case-insensitively. A subject is excluded
when the subject itself or its path-only projection matches any pattern.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from functools import lru_cache
from urllib.parse import urlsplit

import structlog

log = structlog.get_logger()


def parse_pattern_list(value: str | Iterable[str] | None) -> list[str]:
    """Normalize a newline-delimited string or an iterable into a pattern list."""
    if value is None:
        return []
    lines = value.splitlines() if isinstance(value, str) else list(value)
    return [line.strip() for line in lines if line and line.strip()]


@lru_cache(maxsize=1024)
def compile_pattern(pattern: str) -> re.Pattern[str]:
    """Compile one wildcard pattern into an anchored, case-insensitive regex."""
    parts: list[str] = []
    for char in pattern:
        if char == "*":
            parts.append(".*")
        elif char == "?":
            parts.append(".")
        else:
            parts.append(re.escape(char))
    try:
        return re.compile("".join(parts), re.IGNORECASE | re.DOTALL)
    except re.error:
        log.warning("exclusion_pattern_invalid", pattern=pattern)
        return re.compile(re.escape(pattern), re.IGNORECASE)


def _path_projection(subject: str) -> str:
    try:
        return urlsplit(subject).path
    except ValueError:
        return subject


def matches(subject: str, patterns: Iterable[str]) -> bool:
    """Return True if ``subject`` or its path matches any pattern.

    An empty pattern set never matches.
    """
    candidates = {subject, _path_projection(subject)}
    for pattern in patterns:
        pattern = pattern.strip()
        if not pattern:
            continue
        compiled = compile_pattern(pattern)
        if any(compiled.fullmatch(candidate) for candidate in candidates):
            return True
    return False
