from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

CACHE_FORMAT_VERSION = 1


class CacheEntry(BaseModel):
    """One fetched page as persisted in the cache directory."""

    format_version: int = CACHE_FORMAT_VERSION
    url: str
    markdown: str = ""
    html: str = ""  # Required for extraction; entries without it are never served
    metadata: dict[str, Any] = Field(default_factory=dict)
    links: list[str] = Field(default_factory=list)
    content_hash: str  # SHA-256 of html, else markdown
    fetched_at: datetime
    served_from_cache: bool = False
