"""Rate-limited fetcher for the remote scraping provider.

All outbound page fetches of a run go through a single Fetcher instance.
The Fetcher receives an httpx.AsyncClient and a cache via constructor
injection; the caller owns the client lifecycle. Rate-limiter state lives
on the instance, so independent fetchers never share a clock.
"""

from __future__ import annotations

import asyncio
import hashlib
import re
import time
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any
from urllib.parse import urljoin, urlparse

import httpx
import structlog

from codexsync import __version__
from codexsync.errors import CodexSyncError, ErrorCode
from codexsync.models.cache import CacheEntry

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from codexsync.config import Settings
    from codexsync.protocols import CacheProtocol

log = structlog.get_logger()

_MARKDOWN_LINK_RE = re.compile(r"\[([^\]]+)\]\(([^)\s]+)[^)]*\)")

# Client-side slack on top of the provider's own page timeout.
_CLIENT_TIMEOUT_MARGIN_SECONDS = 10.0


def build_http_client() -> httpx.AsyncClient:
    """Create the shared httpx client. Called once per run."""
    return httpx.AsyncClient(
        follow_redirects=True,
        timeout=httpx.Timeout(60.0),
        headers={"User-Agent": f"codexsync/{__version__}"},
        limits=httpx.Limits(
            max_connections=10,
            max_keepalive_connections=5,
        ),
    )


def extract_links(markdown: str, base_url: str, host: str) -> list[str]:
    """Collect absolute links to ``host`` from markdown, first occurrence order."""
    seen: dict[str, None] = {}
    for match in _MARKDOWN_LINK_RE.finditer(markdown):
        target = match.group(2)
        if target.startswith("/"):
            link = urljoin(base_url, target)
        elif target.startswith("http"):
            link = target
        else:
            continue
        if (urlparse(link).hostname or "").endswith(host):
            seen.setdefault(link, None)
    return list(seen)


def content_hash(html: str, markdown: str) -> str:
    return hashlib.sha256((html or markdown).encode("utf-8")).hexdigest()


# ---------------------------------------------------------------------------
# Rate limiting
# ---------------------------------------------------------------------------


@dataclass
class RateLimiter:
    """Minimum spacing between outbound requests. Not a token bucket."""

    requests_per_minute: int
    clock: Callable[[], float] = time.monotonic
    last_request_at: float | None = None
    request_count: int = 0

    @property
    def min_interval(self) -> float:
        return 60.0 / self.requests_per_minute

    async def wait(self) -> None:
        if self.last_request_at is not None:
            elapsed = self.clock() - self.last_request_at
            if elapsed < self.min_interval:
                await asyncio.sleep(self.min_interval - elapsed)
        self.last_request_at = self.clock()
        self.request_count += 1


# ---------------------------------------------------------------------------
# Fetcher
# ---------------------------------------------------------------------------


class Fetcher:
    """Read-through, write-through fetcher with retry and backoff."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        cache: CacheProtocol,
        *,
        api_url: str,
        api_key: str,
        source_host: str,
        timeout_ms: int = 30_000,
        rate_limit_per_minute: int = 10,
        retry_attempts: int = 3,
        retry_base_delay_ms: int = 2_000,
        clock: Callable[[], float] = time.monotonic,
        cache_dir: str = "",
    ) -> None:
        self._client = client
        self._cache = cache
        self._api_url = api_url
        self._api_key = api_key
        self._source_host = source_host
        self._timeout_ms = timeout_ms
        self._retry_attempts = retry_attempts
        self._retry_base_delay_ms = retry_base_delay_ms
        self._cache_dir = cache_dir
        self.limiter = RateLimiter(rate_limit_per_minute, clock=clock)

    @classmethod
    def from_settings(
        cls,
        client: httpx.AsyncClient,
        cache: CacheProtocol,
        settings: Settings,
    ) -> Fetcher:
        return cls(
            client,
            cache,
            api_url=settings.provider.api_url,
            api_key=settings.provider.api_key,
            source_host=urlparse(settings.source.base_url).hostname or "",
            timeout_ms=settings.provider.timeout_ms,
            rate_limit_per_minute=settings.fetcher.rate_limit_per_minute,
            retry_attempts=settings.fetcher.retry_attempts,
            retry_base_delay_ms=settings.fetcher.retry_base_delay_ms,
            cache_dir=settings.cache.dir,
        )

    async def fetch(
        self,
        url: str,
        *,
        use_cache: bool = True,
        force_refresh: bool = False,
        timeout_ms: int | None = None,
    ) -> CacheEntry:
        """Return the page for ``url``, from cache when allowed.

        Raises CodexSyncError once every retry attempt has failed.
        """
        if use_cache and not force_refresh:
            cached = self._cache.get(url)
            if cached is not None:
                log.debug("cache_hit", url=url)
                return cached

        if not self._api_key:
            raise CodexSyncError(
                code=ErrorCode.CONFIG_INVALID,
                message=f"No provider API key configured; cannot fetch {url}",
                suggestion=(
                    "Set CODEXSYNC__PROVIDER__API_KEY or provider.api_key in codexsync.yaml."
                ),
            )

        await self.limiter.wait()
        log.info("fetch_start", url=url)

        last_error: CodexSyncError | None = None
        for attempt in range(1, self._retry_attempts + 1):
            try:
                payload = await self._request(url, timeout_ms or self._timeout_ms)
            except CodexSyncError as exc:
                if not exc.recoverable:
                    raise
                last_error = exc
                log.warning(
                    "fetch_attempt_failed",
                    url=url,
                    attempt=attempt,
                    max_attempts=self._retry_attempts,
                    error=exc.message,
                )
                if attempt < self._retry_attempts:
                    delay_ms = self._retry_base_delay_ms * 2 ** (attempt - 1)
                    await asyncio.sleep(delay_ms / 1000)
                continue

            entry = self._build_entry(url, payload)
            if use_cache:
                self._cache.put(entry)
            log.info(
                "fetch_complete",
                url=url,
                attempt=attempt,
                html_length=len(entry.html),
                markdown_length=len(entry.markdown),
            )
            return entry

        if last_error is not None:
            raise last_error
        # Unreachable while retry_attempts >= 1, but satisfies the type checker
        raise CodexSyncError(
            code=ErrorCode.FETCH_FAILED,
            message=f"No fetch attempt made for {url}",
            suggestion="Configure fetcher.retry_attempts >= 1.",
        )

    async def fetch_many(self, urls: Iterable[str], **options: Any) -> dict[str, CacheEntry]:
        """Fetch sequentially, skipping URLs whose fetch failed."""
        results: dict[str, CacheEntry] = {}
        for url in urls:
            try:
                results[url] = await self.fetch(url, **options)
            except CodexSyncError as exc:
                log.warning("fetch_skipped", url=url, code=exc.code, error=exc.message)
        return results

    def stats(self) -> dict[str, Any]:
        return {"request_count": self.limiter.request_count, "cache_dir": self._cache_dir}

    # ------------------------------------------------------------------
    # Provider call
    # ------------------------------------------------------------------

    async def _request(self, url: str, timeout_ms: int) -> dict[str, Any]:
        """One provider call.

        Every failure mode, rejected credentials included, becomes a
        recoverable FETCH_FAILED so the retry loop treats them alike.
        """
        try:
            response = await self._client.post(
                self._api_url,
                json={"url": url, "formats": ["markdown", "html"], "timeout": timeout_ms},
                headers={"Authorization": f"Bearer {self._api_key}"},
                timeout=timeout_ms / 1000 + _CLIENT_TIMEOUT_MARGIN_SECONDS,
            )
        except httpx.HTTPError as exc:
            raise CodexSyncError(
                code=ErrorCode.FETCH_FAILED,
                message=f"Network error fetching {url}: {exc}",
                suggestion="The scraping provider may be temporarily unavailable.",
                recoverable=True,
            ) from exc

        if not response.is_success:
            raise CodexSyncError(
                code=ErrorCode.FETCH_FAILED,
                message=f"HTTP {response.status_code} from provider fetching {url}",
                suggestion="Check the provider API key and quota.",
                recoverable=True,
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise CodexSyncError(
                code=ErrorCode.FETCH_FAILED,
                message=f"Provider returned a non-JSON body for {url}",
                suggestion="The scraping provider may be temporarily unavailable.",
                recoverable=True,
            ) from exc

        if not isinstance(body, dict) or not body.get("success"):
            reason = body.get("error") if isinstance(body, dict) else None
            raise CodexSyncError(
                code=ErrorCode.FETCH_FAILED,
                message=f"Provider scrape failed for {url}: {reason or 'unknown error'}",
                suggestion="The page may be unavailable or blocked; retry later.",
                recoverable=True,
            )
        data = body.get("data")
        return data if isinstance(data, dict) else {}

    def _build_entry(self, url: str, payload: dict[str, Any]) -> CacheEntry:
        markdown = payload.get("markdown") or ""
        html = payload.get("html") or ""
        if not html:
            log.warning("fetch_missing_html", url=url)
        metadata = payload.get("metadata")
        return CacheEntry(
            url=url,
            markdown=markdown,
            html=html,
            metadata=metadata if isinstance(metadata, dict) else {},
            links=extract_links(markdown, url, self._source_host),
            content_hash=content_hash(html, markdown),
            fetched_at=datetime.now(UTC),
            served_from_cache=False,
        )


# ---------------------------------------------------------------------------
# URL liveness
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class UrlCheck:
    url: str
    ok: bool
    status_code: int | None = None
    error: str | None = None


async def _check_url(client: httpx.AsyncClient, url: str) -> UrlCheck:
    try:
        response = await client.head(url)
    except httpx.HTTPError as exc:
        return UrlCheck(url=url, ok=False, error=str(exc) or type(exc).__name__)
    return UrlCheck(url=url, ok=response.is_success, status_code=response.status_code)


async def validate_urls(
    client: httpx.AsyncClient,
    urls: list[str],
    concurrency: int = 5,
) -> list[UrlCheck]:
    """Send HEAD requests in fixed-size batches; each batch completes before the next."""
    results: list[UrlCheck] = []
    for start in range(0, len(urls), concurrency):
        batch = urls[start : start + concurrency]
        results.extend(await asyncio.gather(*(_check_url(client, url) for url in batch)))
    broken = sum(1 for check in results if not check.ok)
    log.info("url_validation_complete", checked=len(results), broken=broken)
    return results
