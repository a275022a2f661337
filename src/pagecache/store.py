"""Filesystem cache store with atomic replace semantics.

Every artifact (pages, css, js, fonts, avatars) is written to a uniquely
named temporary sibling and then moved into place with ``os.replace``, so a
reader never observes partial content. Concurrent writers to the same path
are safe (last rename wins) but redundant work is not deduplicated.

Expiry is lazy: a file past its TTL is reported stale but is not removed;
the next successful regeneration overwrites it.

Write failures never cross the AtomicStore boundary. They are logged with
``exc_info=True`` and reported as ``False`` so the caller can carry on with
whatever it already has in memory.
"""

from __future__ import annotations

import os
import tempfile
import time
from contextlib import suppress
from pathlib import Path

import structlog

log = structlog.get_logger()

PAGES = "pages"
CSS = "css"
JS = "js"
FONT_CSS = "fonts/css"
FONT_FILES = "fonts/files"
AVATARS = "avatars"
LOCKS = "locks"

PURGEABLE_SUBTREES: tuple[str, ...] = (PAGES, CSS, JS, FONT_CSS, FONT_FILES, AVATARS)

_FILE_MODE = 0o644


def atomic_write(path: Path, data: bytes) -> bool:
    """Write ``data`` to ``path`` via temp file + rename. Returns False on failure."""
    tmp_path: str | None = None
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
        with os.fdopen(fd, "wb") as file_obj:
            file_obj.write(data)
            file_obj.flush()
            os.fsync(file_obj.fileno())
        # mkstemp creates 0600; cached assets are served by the web server
        os.chmod(tmp_path, _FILE_MODE)
        os.replace(tmp_path, path)
        tmp_path = None
        return True
    except OSError:
        log.warning("cache_write_error", path=str(path), exc_info=True)
        return False
    finally:
        if tmp_path is not None:
            with suppress(OSError):
                os.unlink(tmp_path)


class AtomicStore:
    """Cache directory addressed by subtree and ``<hash>.<ext>`` names."""

    def __init__(self, root: Path, public_url: str = "/_pagecache/") -> None:
        self._root = root
        self._public_url = public_url if public_url.endswith("/") else public_url + "/"

    @property
    def root(self) -> Path:
        return self._root

    def path_for(self, subtree: str, name: str) -> Path:
        return self._root / subtree / name

    def url_for(self, path: Path) -> str:
        """Return the public URL under which ``path`` is served."""
        relative = path.relative_to(self._root).as_posix()
        return self._public_url + relative

    # ------------------------------------------------------------------
    # Read / write
    # ------------------------------------------------------------------

    def write(self, path: Path, data: bytes) -> bool:
        return atomic_write(path, data)

    def exists(self, path: Path) -> bool:
        return path.is_file()

    def mtime(self, path: Path) -> float | None:
        try:
            return path.stat().st_mtime
        except OSError:
            return None

    def is_fresh(self, path: Path, ttl_seconds: float) -> bool:
        mtime = self.mtime(path)
        return mtime is not None and time.time() - mtime < ttl_seconds

    def read_if_fresh(self, path: Path, ttl_seconds: float) -> bytes | None:
        """Return the file contents when younger than ``ttl_seconds``, else None."""
        if not self.is_fresh(path, ttl_seconds):
            return None
        try:
            return path.read_bytes()
        except OSError:
            log.warning("cache_read_error", path=str(path), exc_info=True)
            return None

    # ------------------------------------------------------------------
    # Lock markers
    # ------------------------------------------------------------------

    def try_lock(self, name: str, ttl_seconds: float) -> bool:
        """Create a short-lived exclusive marker. False if a live one exists.

        Single-node only: the marker lives on the local filesystem.
        """
        path = self.path_for(LOCKS, f"{name}.lock")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
        except OSError:
            log.warning("cache_lock_error", name=name, exc_info=True)
            return False

        for _ in range(2):
            try:
                fd = os.open(path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, _FILE_MODE)
            except FileExistsError:
                if self.is_fresh(path, ttl_seconds):
                    return False
                with suppress(OSError):
                    path.unlink()
                continue
            except OSError:
                log.warning("cache_lock_error", name=name, exc_info=True)
                return False
            os.close(fd)
            return True
        return False

    # ------------------------------------------------------------------
    # Invalidation
    # ------------------------------------------------------------------

    def delete(self, path: Path) -> bool:
        try:
            path.unlink()
            return True
        except FileNotFoundError:
            return False
        except OSError:
            log.warning("cache_delete_error", path=str(path), exc_info=True)
            return False

    def purge(self, subtrees: tuple[str, ...] = PURGEABLE_SUBTREES) -> int:
        """Delete every file under ``subtrees``. Best-effort, not under any lock."""
        deleted = 0
        for subtree in subtrees:
            directory = self._root / subtree
            if not directory.is_dir():
                continue
            for entry in directory.iterdir():
                if entry.is_file() and not entry.name.startswith(".") and self.delete(entry):
                    deleted += 1
        return deleted

    def usage(self, subtree: str) -> tuple[int, int]:
        """Return ``(file_count, total_bytes)`` for one subtree."""
        directory = self._root / subtree
        files = 0
        size = 0
        if not directory.is_dir():
            return files, size
        for entry in directory.iterdir():
            if entry.is_file() and not entry.name.startswith("."):
                with suppress(OSError):
                    size += entry.stat().st_size
                    files += 1
        return files, size
