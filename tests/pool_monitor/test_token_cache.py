"""
Tests for Token Metadata Cache.

============================================================
PURPOSE
============================================================
- Concurrent lookups of one address share a single request
- Entries expire after their lifetime
- Failures degrade to the cached value or the "Unknown" sentinel
- resolve() never raises

============================================================
"""

import asyncio
import dataclasses
from unittest.mock import AsyncMock, MagicMock

import pytest

from pool_monitor.exceptions import TokenResolutionDegraded, TransportError
from pool_monitor.token_cache import NOT_A_TOKEN_ERROR_CODE, TokenMetadataCache


TOKEN = "0x00000000000000000000000000000000000000aa"

TOKEN_INFO = {
    "address": TOKEN,
    "name": "Test Token",
    "symbol": "TT",
    "decimals": "4",
    "price": {"rate": 100.0, "currency": "USD"},
}


# ============================================================
# FIXTURES
# ============================================================

class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def transport():
    transport = MagicMock()
    transport.get_json = AsyncMock(return_value=TOKEN_INFO)
    return transport


@pytest.fixture
def handler():
    return MagicMock()


@pytest.fixture
def cache(transport, clock, handler):
    return TokenMetadataCache(
        transport,
        api_url="https://api.test/",
        api_key="key",
        lifetime_seconds=600,
        lock_wait_seconds=1.0,
        max_attempts=3,
        retry_delay=0,
        on_exception=handler,
        clock=clock,
    )


# ============================================================
# RESOLVE TESTS
# ============================================================

class TestResolve:
    """Tests for TokenMetadataCache.resolve."""

    @pytest.mark.asyncio
    async def test_fetches_token_info(self, cache, transport):
        token = await cache.resolve(TOKEN)

        assert token.name == "Test Token"
        assert token.symbol == "TT"
        assert token.decimals == 4
        assert token.rate == 100.0
        transport.get_json.assert_awaited_once_with(
            f"https://api.test/getTokenInfo/{TOKEN}",
            params={"apiKey": "key"},
        )

    @pytest.mark.asyncio
    async def test_price_false_means_no_rate(self, cache, transport):
        transport.get_json.return_value = {**TOKEN_INFO, "price": False}

        token = await cache.resolve(TOKEN)

        assert token.rate is None

    @pytest.mark.asyncio
    async def test_address_is_case_insensitive(self, cache, transport):
        await cache.resolve(TOKEN.upper().replace("0X", "0x"))
        await cache.resolve(TOKEN)

        assert transport.get_json.await_count == 1

    @pytest.mark.asyncio
    async def test_single_flight(self, cache, transport):
        async def slow_response(url, params=None):
            await asyncio.sleep(0.05)
            return TOKEN_INFO

        transport.get_json.side_effect = slow_response

        tokens = await asyncio.gather(*(cache.resolve(TOKEN) for _ in range(10)))

        assert transport.get_json.await_count == 1
        assert all(token == tokens[0] for token in tokens)
        assert cache.get_cache_stats()["in_flight"] == 0

    @pytest.mark.asyncio
    async def test_hit_within_lifetime(self, cache, transport, clock):
        await cache.resolve(TOKEN)
        clock.now += 600

        await cache.resolve(TOKEN)

        assert transport.get_json.await_count == 1
        stats = cache.get_cache_stats()
        assert stats["hits"] == 1
        assert stats["misses"] == 1

    @pytest.mark.asyncio
    async def test_hit_leaves_entry_unchanged(self, cache, clock):
        await cache.resolve(TOKEN)
        entry = cache._cache[TOKEN]
        before = dataclasses.asdict(entry)
        clock.now += 10

        await cache.resolve(TOKEN)
        await cache.resolve(TOKEN)

        assert cache._cache[TOKEN] is entry
        assert dataclasses.asdict(entry) == before
        assert cache.get_cache_stats()["hits"] == 2

    @pytest.mark.asyncio
    async def test_refetch_after_lifetime(self, cache, transport, clock):
        await cache.resolve(TOKEN)
        clock.now += 601
        transport.get_json.return_value = {**TOKEN_INFO, "price": {"rate": 120.0}}

        token = await cache.resolve(TOKEN)

        assert transport.get_json.await_count == 2
        assert token.rate == 120.0


# ============================================================
# DEGRADATION TESTS
# ============================================================

class TestDegradation:
    """Tests for failed lookups."""

    @pytest.mark.asyncio
    async def test_exhausted_retries_use_sentinel(self, cache, transport, handler):
        transport.get_json.side_effect = TransportError("boom", status_code=500)

        token = await cache.resolve(TOKEN)

        assert token.is_unknown
        assert token.name == "Unknown"
        assert token.decimals == 0
        assert token.rate is None
        assert transport.get_json.await_count == 3
        assert handler.call_count == 3
        error = handler.call_args.args[0]
        assert isinstance(error, TokenResolutionDegraded)
        assert error.token_address == TOKEN
        assert error.attempts == 3

    @pytest.mark.asyncio
    async def test_sentinel_is_cached(self, cache, transport):
        transport.get_json.side_effect = TransportError("boom")

        await cache.resolve(TOKEN)
        await cache.resolve(TOKEN)

        assert transport.get_json.await_count == 3
        assert cache.get_cached(TOKEN).is_unknown

    @pytest.mark.asyncio
    async def test_empty_response_counts_as_failure(self, cache, transport):
        transport.get_json.return_value = None

        token = await cache.resolve(TOKEN)

        assert token.is_unknown
        assert transport.get_json.await_count == 3

    @pytest.mark.asyncio
    async def test_recovers_on_later_attempt(self, cache, transport, handler):
        transport.get_json.side_effect = [TransportError("boom"), TOKEN_INFO]

        token = await cache.resolve(TOKEN)

        assert token.symbol == "TT"
        assert handler.call_count == 1

    @pytest.mark.asyncio
    async def test_not_a_token_contract(self, cache, transport, handler):
        transport.get_json.side_effect = TransportError(
            "Invalid address format",
            status_code=400,
            error_code=NOT_A_TOKEN_ERROR_CODE,
        )

        token = await cache.resolve(TOKEN)

        assert token.is_unknown
        assert transport.get_json.await_count == 1
        handler.assert_not_called()

    @pytest.mark.asyncio
    async def test_stale_value_after_failed_refresh(self, cache, transport, clock):
        await cache.resolve(TOKEN)
        clock.now += 700
        transport.get_json.side_effect = TransportError("boom")

        token = await cache.resolve(TOKEN)

        assert token.symbol == "TT"
        assert token.rate == 100.0
        assert transport.get_json.await_count == 4

        # fetched_at was refreshed, so the next call is a hit
        await cache.resolve(TOKEN)
        assert transport.get_json.await_count == 4

    @pytest.mark.asyncio
    async def test_lock_wait_timeout(self, transport, handler, clock):
        cache = TokenMetadataCache(
            transport,
            api_url="https://api.test",
            api_key="key",
            lock_wait_seconds=0.05,
            retry_delay=0,
            on_exception=handler,
            clock=clock,
        )

        async def slow_response(url, params=None):
            await asyncio.sleep(0.3)
            return TOKEN_INFO

        transport.get_json.side_effect = slow_response

        first, second = await asyncio.gather(cache.resolve(TOKEN), cache.resolve(TOKEN))

        assert first.symbol == "TT"
        assert second.is_unknown
        assert transport.get_json.await_count == 1
        error = handler.call_args.args[0]
        assert isinstance(error, TokenResolutionDegraded)

    @pytest.mark.asyncio
    async def test_async_handler(self, transport, clock):
        received = []

        async def on_exception(error):
            received.append(error)

        cache = TokenMetadataCache(
            transport,
            api_url="https://api.test",
            api_key="key",
            max_attempts=1,
            retry_delay=0,
            on_exception=on_exception,
            clock=clock,
        )
        transport.get_json.side_effect = TransportError("boom")

        await cache.resolve(TOKEN)

        assert len(received) == 1

    @pytest.mark.asyncio
    async def test_failing_handler_does_not_raise(self, cache, transport, handler):
        handler.side_effect = RuntimeError("listener bug")
        transport.get_json.side_effect = TransportError("boom")

        token = await cache.resolve(TOKEN)

        assert token.is_unknown


class TestCacheManagement:
    """Tests for cache introspection."""

    @pytest.mark.asyncio
    async def test_clear_cache(self, cache, transport):
        await cache.resolve(TOKEN)

        cache.clear_cache()

        assert cache.get_cached(TOKEN) is None
        assert cache.get_cache_stats()["entries"] == 0

    @pytest.mark.asyncio
    async def test_stats(self, cache):
        await cache.resolve(TOKEN)
        await cache.resolve(TOKEN)

        stats = cache.get_cache_stats()

        assert stats["entries"] == 1
        assert stats["fetches"] == 1
        assert stats["hit_rate_percent"] == 50.0
