"""Content-addressed page cache: one JSON file per fetched URL.

The file name is the SHA-256 of the normalized URL. Entries never expire;
they are replaced by a forced refresh or removed with ``invalidate``.

Read failures of any kind (missing file, unreadable file, malformed JSON,
an entry that fails validation) are logged and reported as a miss. An entry
without an HTML body is also a miss: extraction depends on tag and class
structure that the markdown form loses. Write failures are logged and
ignored, so a full disk never fails a fetch that already succeeded.
"""

from __future__ import annotations

import hashlib
import os
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING
from urllib.parse import urlsplit, urlunsplit

import structlog
from pydantic import ValidationError

from codexsync.models.cache import CacheEntry

if TYPE_CHECKING:
    from collections.abc import Iterator

    from pydantic import BaseModel

log = structlog.get_logger()


def normalize_url(url: str) -> str:
    """Strip whitespace and the fragment, lowercase scheme and host."""
    parts = urlsplit(url.strip())
    return urlunsplit((parts.scheme.lower(), parts.netloc.lower(), parts.path, parts.query, ""))


def url_key(url: str) -> str:
    return hashlib.sha256(normalize_url(url).encode("utf-8")).hexdigest()


class CacheStore:
    """Directory-backed cache implementing CacheProtocol."""

    def __init__(self, cache_dir: Path) -> None:
        self.cache_dir = cache_dir

    def path_for(self, url: str) -> Path:
        return self.cache_dir / f"{url_key(url)}.json"

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def get(self, url: str) -> CacheEntry | None:
        """Return a complete cached entry, or ``None`` on any kind of miss."""
        path = self.path_for(url)
        if not path.exists():
            return None
        entry = self._load(path)
        if entry is None:
            return None
        if not entry.html:
            log.info("cache_entry_incomplete", url=url, reason="missing_html")
            return None
        return entry.model_copy(update={"served_from_cache": True})

    def iter_entries(self) -> Iterator[CacheEntry]:
        """Yield every complete entry in the cache directory, in file-name order."""
        if not self.cache_dir.is_dir():
            return
        for path in sorted(self.cache_dir.glob("*.json")):
            entry = self._load(path)
            if entry is not None and entry.html:
                yield entry.model_copy(update={"served_from_cache": True})

    def _load(self, path: Path) -> CacheEntry | None:
        try:
            return CacheEntry.model_validate_json(path.read_bytes())
        except (OSError, ValidationError):
            log.warning("cache_read_error", path=str(path), exc_info=True)
            return None

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    def put(self, entry: CacheEntry) -> None:
        """Persist an entry atomically. Non-fatal on failure."""
        path = self.path_for(entry.url)
        stored = entry.model_copy(update={"served_from_cache": False})
        try:
            write_model(path, stored)
        except OSError:
            log.warning("cache_write_error", url=entry.url, path=str(path), exc_info=True)

    def invalidate(self, url: str) -> bool:
        """Remove the entry for ``url``. Returns True if a file was deleted."""
        try:
            self.path_for(url).unlink()
        except FileNotFoundError:
            return False
        log.info("cache_invalidated", url=url)
        return True


def write_model(path: Path, model: BaseModel) -> None:
    """Replace ``path`` with ``model`` as indented JSON.

    The JSON goes to a uniquely named sibling first and is renamed over the
    target, so readers see the old file or the new one, never a mix.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, part_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.stem}-", suffix=".part")
    part = Path(part_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(model.model_dump_json(indent=2))
            handle.flush()
            os.fsync(handle.fileno())
        part.replace(path)
    except OSError:
        part.unlink(missing_ok=True)
        raise
