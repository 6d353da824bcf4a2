"""
Token Metadata Cache - contract address -> {name, symbol, decimals, rate}.

Features:
- Time-to-live per entry
- Single-flight: concurrent lookups of one address share a single request
- Bounded retries with fallback to the last cached value or a sentinel
- Never raises to the caller; degradations go to the exception callback
"""

import asyncio
import logging
import time
from typing import Any, Callable, Optional

from pool_monitor.exceptions import TokenResolutionDegraded, TransportError
from pool_monitor.models import TokenCacheEntry, TokenInfo
from pool_monitor.schemas import TokenInfoPayload
from pool_monitor.transport import LedgerTransport


logger = logging.getLogger(__name__)


# Remote error code for "address is not a token contract"
NOT_A_TOKEN_ERROR_CODE = 150


class TokenMetadataCache:
    """
    Memoized token metadata lookups.

    Usage:
        cache = TokenMetadataCache(transport, api_url, api_key)
        token = await cache.resolve("0xdac17f958d2ee523a2206206994597c13d831ec7")
    """

    DEFAULT_LIFETIME = 600.0
    DEFAULT_LOCK_WAIT = 10.0
    MAX_ATTEMPTS = 3
    RETRY_DELAY = 1.0

    def __init__(
        self,
        transport: LedgerTransport,
        api_url: str,
        api_key: str,
        lifetime_seconds: float = DEFAULT_LIFETIME,
        lock_wait_seconds: float = DEFAULT_LOCK_WAIT,
        max_attempts: int = MAX_ATTEMPTS,
        retry_delay: float = RETRY_DELAY,
        on_exception: Optional[Callable[[Exception], Any]] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._transport = transport
        self._api_url = api_url.rstrip("/")
        self._api_key = api_key
        self._lifetime = lifetime_seconds
        self._lock_wait = lock_wait_seconds
        self._max_attempts = max(1, max_attempts)
        self._retry_delay = retry_delay
        self._on_exception = on_exception
        self._clock = clock

        self._cache: dict[str, TokenCacheEntry] = {}
        self._inflight: dict[str, asyncio.Future] = {}

        # Stats
        self._cache_hits = 0
        self._cache_misses = 0
        self._fetches = 0

    def set_exception_handler(self, handler: Optional[Callable[[Exception], Any]]) -> None:
        self._on_exception = handler

    async def resolve(self, address: str) -> TokenInfo:
        """Return token metadata for ``address``; never raises."""
        address = address.lower()

        pending = self._inflight.get(address)
        if pending is not None:
            return await self._wait_for(address, pending)

        entry = self._cache.get(address)
        if entry is not None and not entry.is_expired(self._clock(), self._lifetime):
            self._cache_hits += 1
            logger.debug(f"[token_cache] Cache hit for {address}")
            return entry.token

        self._cache_misses += 1
        future = asyncio.get_running_loop().create_future()
        self._inflight[address] = future
        try:
            token = await self._load(address)
            future.set_result(token)
            return token
        finally:
            if not future.done():
                future.cancel()
            self._inflight.pop(address, None)

    async def _wait_for(self, address: str, pending: asyncio.Future) -> TokenInfo:
        """Wait on another caller's in-flight lookup, bounded by the lock wait."""
        logger.debug(f"[token_cache] Waiting for in-flight lookup of {address}")
        try:
            return await asyncio.wait_for(asyncio.shield(pending), timeout=self._lock_wait)
        except asyncio.TimeoutError:
            entry = self._cache.get(address)
            fallback = entry.token if entry is not None else TokenInfo.unknown(address)
            await self._report(TokenResolutionDegraded(
                f"Error retrieving locked token {address}, \"{fallback.name}\" used",
                token_address=address,
            ))
            return fallback

    async def _load(self, address: str) -> TokenInfo:
        """Fetch with retries, store and return the result or a fallback."""
        last_error: Optional[Exception] = None

        for attempt in range(1, self._max_attempts + 1):
            try:
                token = await self._fetch(address)
            except TransportError as e:
                if e.error_code == NOT_A_TOKEN_ERROR_CODE:
                    logger.info(f"[token_cache] Address {address} is not a token contract")
                    return self._store(address, TokenInfo.unknown(address))
                last_error = e
            except Exception as e:
                last_error = e
            else:
                if token is not None:
                    logger.info(f"[token_cache] Token {token.name} successfully loaded")
                    return self._store(address, token)
                logger.warning(f"[token_cache] No data loaded for token {address}")
                last_error = None

            await self._report(TokenResolutionDegraded(
                f"Token {address} lookup failed (attempt {attempt}/{self._max_attempts})",
                token_address=address,
                attempts=attempt,
                original_error=last_error,
            ))
            if attempt < self._max_attempts:
                await asyncio.sleep(self._retry_delay)

        entry = self._cache.get(address)
        if entry is not None:
            # Serve the stale value for another lifetime
            entry.fetched_at = self._clock()
            logger.warning(f"[token_cache] Using stale metadata for {address}")
            return entry.token

        logger.warning(
            f"[token_cache] Cannot get token {address} info after "
            f"{self._max_attempts} attempts, \"Unknown\" used"
        )
        return self._store(address, TokenInfo.unknown(address))

    async def _fetch(self, address: str) -> Optional[TokenInfo]:
        self._fetches += 1
        url = f"{self._api_url}/getTokenInfo/{address}"
        data = await self._transport.get_json(url, params={"apiKey": self._api_key})
        if not data:
            return None
        return TokenInfoPayload.model_validate(data).to_token(address)

    def _store(self, address: str, token: TokenInfo) -> TokenInfo:
        self._cache[address] = TokenCacheEntry(token=token, fetched_at=self._clock())
        return token

    async def _report(self, error: Exception) -> None:
        logger.warning(f"[token_cache] {error}")
        if self._on_exception is None:
            return
        try:
            result = self._on_exception(error)
            if asyncio.iscoroutine(result):
                await result
        except Exception as e:
            logger.error(f"[token_cache] Exception handler error: {e}")

    # ─────────────────────────────────────────────────────────────
    # Introspection
    # ─────────────────────────────────────────────────────────────

    def get_cached(self, address: str) -> Optional[TokenInfo]:
        entry = self._cache.get(address.lower())
        return entry.token if entry else None

    def clear_cache(self) -> None:
        """Clear all cache entries."""
        self._cache.clear()
        logger.info("[token_cache] Cache cleared")

    def get_cache_stats(self) -> dict[str, Any]:
        """Get cache statistics."""
        total_requests = self._cache_hits + self._cache_misses
        hit_rate = (self._cache_hits / total_requests * 100) if total_requests > 0 else 0

        return {
            "entries": len(self._cache),
            "hits": self._cache_hits,
            "misses": self._cache_misses,
            "fetches": self._fetches,
            "in_flight": len(self._inflight),
            "hit_rate_percent": round(hit_rate, 2),
        }
