"""Unit tests for codexsync.fetcher."""

from __future__ import annotations

from typing import TYPE_CHECKING
from unittest.mock import AsyncMock, patch

import httpx
import pytest
import respx

from codexsync.errors import CodexSyncError, ErrorCode
from codexsync.fetcher import (
    Fetcher,
    RateLimiter,
    build_http_client,
    content_hash,
    extract_links,
    validate_urls,
)

if TYPE_CHECKING:
    from collections.abc import Callable

    from codexsync.cache import CacheStore
    from codexsync.models.cache import CacheEntry

API_URL = "https://provider.test/v1/scrape"
PAGE_URL = "https://wahapedia.ru/wh40k10ed/factions/necrons/"
HOST = "wahapedia.ru"


def _ok(markdown: str = "# Necrons", html: str = "<h1>Necrons</h1>") -> httpx.Response:
    return httpx.Response(
        200, json={"success": True, "data": {"markdown": markdown, "html": html, "metadata": {}}}
    )


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def _fetcher(
    client: httpx.AsyncClient, cache: CacheStore, *, api_key: str = "key", **kwargs
) -> Fetcher:
    return Fetcher(client, cache, api_url=API_URL, api_key=api_key, source_host=HOST, **kwargs)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class TestExtractLinks:
    def test_relative_links_resolved_against_origin(self) -> None:
        markdown = "[Wraiths](/wh40k10ed/factions/necrons/Canoptek-Wraiths)"
        assert extract_links(markdown, PAGE_URL, HOST) == [
            "https://wahapedia.ru/wh40k10ed/factions/necrons/Canoptek-Wraiths"
        ]

    def test_foreign_hosts_dropped(self) -> None:
        markdown = "[Shop](https://shop.example.com/x) [Rules](https://wahapedia.ru/a)"
        assert extract_links(markdown, PAGE_URL, HOST) == ["https://wahapedia.ru/a"]

    def test_duplicates_keep_first_order(self) -> None:
        markdown = (
            "[b](https://wahapedia.ru/b) [a](https://wahapedia.ru/a) [b2](https://wahapedia.ru/b)"
        )
        assert extract_links(markdown, PAGE_URL, HOST) == [
            "https://wahapedia.ru/b",
            "https://wahapedia.ru/a",
        ]

    def test_anchors_and_mailto_ignored(self) -> None:
        assert extract_links("[top](#top) [mail](mailto:x@y.z)", PAGE_URL, HOST) == []


class TestContentHash:
    def test_html_preferred(self) -> None:
        assert content_hash("<p>a</p>", "a") == content_hash("<p>a</p>", "b")

    def test_markdown_when_no_html(self) -> None:
        assert content_hash("", "a") != content_hash("", "b")


class TestBuildHttpClient:
    def test_client_configuration(self) -> None:
        client = build_http_client()
        assert isinstance(client, httpx.AsyncClient)
        assert client.follow_redirects is True
        assert client.headers["User-Agent"].startswith("codexsync/")


# ---------------------------------------------------------------------------
# Rate limiting
# ---------------------------------------------------------------------------


class TestRateLimiter:
    async def test_first_request_does_not_wait(self) -> None:
        limiter = RateLimiter(10, clock=FakeClock())
        with patch("asyncio.sleep", new_callable=AsyncMock) as sleep:
            await limiter.wait()
        sleep.assert_not_awaited()
        assert limiter.request_count == 1

    async def test_spacing_at_ten_per_minute(self) -> None:
        clock = FakeClock()
        limiter = RateLimiter(10, clock=clock)
        with patch("asyncio.sleep", new_callable=AsyncMock) as sleep:
            await limiter.wait()
            clock.now += 1.0
            await limiter.wait()
        sleep.assert_awaited_once_with(pytest.approx(5.0))

    async def test_no_wait_after_interval(self) -> None:
        clock = FakeClock()
        limiter = RateLimiter(10, clock=clock)
        with patch("asyncio.sleep", new_callable=AsyncMock) as sleep:
            await limiter.wait()
            clock.now += 7.0
            await limiter.wait()
        sleep.assert_not_awaited()

    def test_min_interval(self) -> None:
        assert RateLimiter(10).min_interval == 6.0


# ---------------------------------------------------------------------------
# Fetcher
# ---------------------------------------------------------------------------


class TestFetcher:
    async def test_successful_fetch_is_cached(self, cache_store: CacheStore) -> None:
        markdown = "# Necrons\n[W](/wh40k10ed/factions/necrons/Canoptek-Wraiths)"
        with respx.mock:
            route = respx.post(API_URL).mock(return_value=_ok(markdown=markdown))
            async with httpx.AsyncClient() as client:
                entry = await _fetcher(client, cache_store).fetch(PAGE_URL)

        assert route.call_count == 1
        assert entry.served_from_cache is False
        assert entry.html == "<h1>Necrons</h1>"
        assert entry.links == [f"{PAGE_URL}Canoptek-Wraiths"]
        cached = cache_store.get(PAGE_URL)
        assert cached is not None
        assert cached.content_hash == entry.content_hash

    async def test_request_body(self, cache_store: CacheStore) -> None:
        with respx.mock:
            route = respx.post(API_URL).mock(return_value=_ok())
            async with httpx.AsyncClient() as client:
                await _fetcher(client, cache_store, timeout_ms=5_000).fetch(PAGE_URL)

        request = route.calls.last.request
        assert request.headers["Authorization"] == "Bearer key"
        assert b'"formats":["markdown","html"]' in request.content.replace(b" ", b"")
        assert b'"timeout":5000' in request.content.replace(b" ", b"")

    async def test_cache_hit_skips_network(
        self, cache_store: CacheStore, make_entry: Callable[..., CacheEntry]
    ) -> None:
        cache_store.put(make_entry(PAGE_URL, html="<p>cached</p>"))
        with respx.mock:
            route = respx.post(API_URL).mock(return_value=_ok())
            async with httpx.AsyncClient() as client:
                fetcher = _fetcher(client, cache_store)
                entry = await fetcher.fetch(PAGE_URL)

        assert route.call_count == 0
        assert entry.served_from_cache is True
        assert fetcher.stats()["request_count"] == 0

    async def test_force_refresh_bypasses_cache(
        self, cache_store: CacheStore, make_entry: Callable[..., CacheEntry]
    ) -> None:
        cache_store.put(make_entry(PAGE_URL, html="<p>cached</p>"))
        with respx.mock:
            respx.post(API_URL).mock(return_value=_ok(html="<p>fresh</p>"))
            async with httpx.AsyncClient() as client:
                entry = await _fetcher(client, cache_store).fetch(PAGE_URL, force_refresh=True)

        assert entry.html == "<p>fresh</p>"
        cached = cache_store.get(PAGE_URL)
        assert cached is not None
        assert cached.html == "<p>fresh</p>"

    async def test_use_cache_false_does_not_write(self, cache_store: CacheStore) -> None:
        with respx.mock:
            respx.post(API_URL).mock(return_value=_ok())
            async with httpx.AsyncClient() as client:
                await _fetcher(client, cache_store).fetch(PAGE_URL, use_cache=False)
        assert cache_store.get(PAGE_URL) is None

    async def test_missing_api_key(self, cache_store: CacheStore) -> None:
        async with httpx.AsyncClient() as client:
            with pytest.raises(CodexSyncError) as exc_info:
                await _fetcher(client, cache_store, api_key="").fetch(PAGE_URL)
        assert exc_info.value.code == ErrorCode.CONFIG_INVALID

    async def test_retries_with_exponential_backoff(self, cache_store: CacheStore) -> None:
        with respx.mock, patch("asyncio.sleep", new_callable=AsyncMock) as sleep:
            route = respx.post(API_URL).mock(
                side_effect=[httpx.Response(500), httpx.Response(502), _ok()]
            )
            async with httpx.AsyncClient() as client:
                entry = await _fetcher(client, cache_store).fetch(PAGE_URL)

        assert route.call_count == 3
        assert entry.html == "<h1>Necrons</h1>"
        assert [call.args[0] for call in sleep.await_args_list] == [2.0, 4.0]

    async def test_exhausted_retries_raise_last_error(self, cache_store: CacheStore) -> None:
        with respx.mock, patch("asyncio.sleep", new_callable=AsyncMock):
            route = respx.post(API_URL).mock(
                side_effect=httpx.ConnectError("Connection refused")
            )
            async with httpx.AsyncClient() as client:
                with pytest.raises(CodexSyncError) as exc_info:
                    await _fetcher(client, cache_store).fetch(PAGE_URL)

        assert route.call_count == 3
        assert exc_info.value.code == ErrorCode.FETCH_FAILED
        assert exc_info.value.recoverable is True
        assert cache_store.get(PAGE_URL) is None

    async def test_provider_failure_body(self, cache_store: CacheStore) -> None:
        with respx.mock, patch("asyncio.sleep", new_callable=AsyncMock):
            respx.post(API_URL).mock(
                return_value=httpx.Response(200, json={"success": False, "error": "blocked"})
            )
            async with httpx.AsyncClient() as client:
                with pytest.raises(CodexSyncError) as exc_info:
                    await _fetcher(client, cache_store).fetch(PAGE_URL)
        assert "blocked" in exc_info.value.message

    async def test_rejected_key_is_retried(self, cache_store: CacheStore) -> None:
        with respx.mock, patch("asyncio.sleep", new_callable=AsyncMock) as sleep:
            route = respx.post(API_URL).mock(side_effect=[httpx.Response(401), _ok()])
            async with httpx.AsyncClient() as client:
                entry = await _fetcher(client, cache_store).fetch(PAGE_URL)

        assert route.call_count == 2
        assert [call.args[0] for call in sleep.await_args_list] == [2.0]
        assert entry.html == "<h1>Necrons</h1>"

    async def test_forbidden_exhausts_as_fetch_failed(self, cache_store: CacheStore) -> None:
        with respx.mock, patch("asyncio.sleep", new_callable=AsyncMock):
            route = respx.post(API_URL).mock(return_value=httpx.Response(403))
            async with httpx.AsyncClient() as client:
                with pytest.raises(CodexSyncError) as exc_info:
                    await _fetcher(client, cache_store).fetch(PAGE_URL)

        assert route.call_count == 3
        assert exc_info.value.code == ErrorCode.FETCH_FAILED
        assert exc_info.value.recoverable is True

    async def test_back_to_back_fetches_are_spaced(self, cache_store: CacheStore) -> None:
        clock = FakeClock()
        other = "https://wahapedia.ru/wh40k10ed/factions/orks/"
        with respx.mock, patch("asyncio.sleep", new_callable=AsyncMock) as sleep:
            respx.post(API_URL).mock(return_value=_ok())
            async with httpx.AsyncClient() as client:
                fetcher = _fetcher(client, cache_store, rate_limit_per_minute=10, clock=clock)
                await fetcher.fetch(PAGE_URL)
                clock.now += 2.0
                await fetcher.fetch(other)

        sleep.assert_awaited_once_with(pytest.approx(4.0))
        assert fetcher.stats()["request_count"] == 2

    async def test_retries_do_not_reenter_limiter(self, cache_store: CacheStore) -> None:
        clock = FakeClock()
        with respx.mock, patch("asyncio.sleep", new_callable=AsyncMock) as sleep:
            route = respx.post(API_URL).mock(
                side_effect=[httpx.Response(500), httpx.Response(500), _ok()]
            )
            async with httpx.AsyncClient() as client:
                fetcher = _fetcher(client, cache_store, rate_limit_per_minute=1, clock=clock)
                await fetcher.fetch(PAGE_URL)

        assert route.call_count == 3
        # Only the backoff delays; a limiter wait would be 60 seconds at 1 rpm
        assert [call.args[0] for call in sleep.await_args_list] == [2.0, 4.0]
        assert fetcher.limiter.request_count == 1
        assert fetcher.limiter.last_request_at == clock.now

    async def test_fetch_many_skips_failures(self, cache_store: CacheStore) -> None:
        good = "https://wahapedia.ru/wh40k10ed/factions/orks/"
        with respx.mock, patch("asyncio.sleep", new_callable=AsyncMock):
            respx.post(API_URL, json__url=PAGE_URL).mock(return_value=httpx.Response(500))
            respx.post(API_URL, json__url=good).mock(return_value=_ok())
            async with httpx.AsyncClient() as client:
                results = await _fetcher(client, cache_store).fetch_many([PAGE_URL, good])

        assert list(results) == [good]

    async def test_stats(self, cache_store: CacheStore) -> None:
        with respx.mock:
            respx.post(API_URL).mock(return_value=_ok())
            async with httpx.AsyncClient() as client:
                fetcher = _fetcher(client, cache_store, cache_dir="/tmp/c")
                await fetcher.fetch(PAGE_URL)
        assert fetcher.stats() == {"request_count": 1, "cache_dir": "/tmp/c"}


# ---------------------------------------------------------------------------
# URL liveness
# ---------------------------------------------------------------------------


class TestValidateUrls:
    async def test_reports_status_and_errors(self) -> None:
        urls = [
            "https://wahapedia.ru/ok",
            "https://wahapedia.ru/missing",
            "https://wahapedia.ru/down",
        ]
        with respx.mock:
            respx.head(urls[0]).mock(return_value=httpx.Response(200))
            respx.head(urls[1]).mock(return_value=httpx.Response(404))
            respx.head(urls[2]).mock(side_effect=httpx.ConnectError("refused"))
            async with httpx.AsyncClient() as client:
                checks = await validate_urls(client, urls, concurrency=2)

        assert [check.url for check in checks] == urls
        assert [check.ok for check in checks] == [True, False, False]
        assert checks[1].status_code == 404
        assert checks[2].error == "refused"
