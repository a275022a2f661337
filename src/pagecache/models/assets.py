from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ConfigDict


class LocalAsset(BaseModel):
    """Same-origin asset mapped onto a file under the document root."""

    model_config = ConfigDict(frozen=True)

    url: str  # Absolute URL the asset is served from
    path: Path


class RemoteAsset(BaseModel):
    """Cross-origin asset on an allow-listed host, fetched in the background."""

    model_config = ConfigDict(frozen=True)

    url: str


class Unresolvable(BaseModel):
    """The reference must be left untouched."""

    model_config = ConfigDict(frozen=True)

    url: str
    reason: str


Resolution = LocalAsset | RemoteAsset | Unresolvable
