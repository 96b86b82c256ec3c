"""Application state container.

AppState is created once per CLI invocation by ``cli.open_state`` and
handed to the command that runs. It owns the HTTP client and the store
connection; ``close`` releases both.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import aiosqlite
    import httpx

    from codexsync.config import Settings
    from codexsync.ingest import Ingestor
    from codexsync.protocols import CacheProtocol, FetcherProtocol
    from codexsync.reconcile import Reconciler
    from codexsync.snapshots import SnapshotArchive
    from codexsync.sources import SourceUrls
    from codexsync.store import Store


@dataclass
class AppState:
    """Holds the wired components of one run."""

    settings: Settings
    urls: SourceUrls
    http_client: httpx.AsyncClient
    db: aiosqlite.Connection
    store: Store
    cache: CacheProtocol
    fetcher: FetcherProtocol
    reconciler: Reconciler
    ingestor: Ingestor
    archive: SnapshotArchive

    async def close(self) -> None:
        await self.http_client.aclose()
        await self.db.close()
