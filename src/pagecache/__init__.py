"""pagecache: full-page HTTP response cache with an HTML/CSS/JS optimization pipeline.

The version is shown by ``pagecache --version`` and logged at server start.
"""

from __future__ import annotations

import warnings
from importlib import metadata

FALLBACK_VERSION = "0.0.0+unknown"


def _resolve_version(distribution: str = "pagecache") -> str:
    try:
        return metadata.version(distribution)
    except metadata.PackageNotFoundError:
        # Running from a source checkout that was never installed
        warnings.warn(
            f"No installed metadata for {distribution!r}; reporting version {FALLBACK_VERSION!r}.",
            RuntimeWarning,
            stacklevel=2,
        )
        return FALLBACK_VERSION


__version__ = _resolve_version()
