"""Protocol interfaces for swappable components.

The pipeline passes and AppState reference these protocols, not the concrete
implementations. This allows:
- Tests to use lightweight in-memory fakes for network access
- Future fetch backends to be swapped without changing pass code
"""

from __future__ import annotations

from typing import Protocol


class FetcherProtocol(Protocol):
    """Interface for the remote asset fetcher."""

    async def fetch(self, url: str, allowlist: frozenset[str]) -> bytes | None: ...
