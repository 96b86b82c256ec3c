"""Protocol interfaces for swappable components.

The ingestion layer and AppState reference these protocols, not the
concrete implementations, so tests can drive a run with in-memory fakes.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from collections.abc import Iterator

    from codexsync.models.cache import CacheEntry


class CacheProtocol(Protocol):
    """Interface for the page cache."""

    def get(self, url: str) -> CacheEntry | None: ...

    def put(self, entry: CacheEntry) -> None: ...

    def invalidate(self, url: str) -> bool: ...

    def iter_entries(self) -> Iterator[CacheEntry]: ...


class FetcherProtocol(Protocol):
    """Interface for the rate-limited remote fetcher."""

    async def fetch(
        self,
        url: str,
        *,
        use_cache: bool = True,
        force_refresh: bool = False,
        timeout_ms: int | None = None,
    ) -> CacheEntry: ...
