"""
Update Fetcher - retrieves pool deltas from the Ethplorer API.

The lookback ``period`` sent with every request is

    min(max(period, now - since_ts, now - checkpoint.last_ts), period_ceiling)

where a zero ``since_ts`` or ``last_ts`` is ignored.

The fetcher does not retry; a failed request surfaces as ``FetchError`` and
the scheduler counts it.
"""

import logging
import time
from typing import Any, Callable, Optional

from pydantic import ValidationError

from pool_monitor.checkpoint import CheckpointStore
from pool_monitor.config import MonitorConfig
from pool_monitor.exceptions import (
    FetchError,
    NoPoolConfigured,
    TransportError,
    UnknownApiMethod,
)
from pool_monitor.models import RawUpdate
from pool_monitor.schemas import PoolEntriesPayload, PoolUpdatesPayload
from pool_monitor.transport import LedgerTransport


logger = logging.getLogger(__name__)


# Millisecond timestamps are above this value
MS_TIMESTAMP_THRESHOLD = 10_000_000_000


class UpdateFetcher:
    """Reads pool updates since a checkpoint."""

    UPDATE_METHODS = (
        "getPoolLastTransactions",
        "getPoolLastOperations",
        "getPoolUpdates",
    )

    def __init__(
        self,
        config: MonitorConfig,
        transport: LedgerTransport,
        checkpoint: CheckpointStore,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._config = config
        self._transport = transport
        self._checkpoint = checkpoint
        self._clock = clock

    def lookback_period(self, since_ts: float = 0) -> int:
        """Seconds of history to request."""
        if since_ts > MS_TIMESTAMP_THRESHOLD:
            since_ts /= 1000
        now = self._clock()
        since_gap = int(now - since_ts) if since_ts else 0
        checkpoint_ts = self._checkpoint.last_ts
        checkpoint_gap = int(now - checkpoint_ts) if checkpoint_ts else 0
        period = max(self._config.period, since_gap, checkpoint_gap)
        return min(period, self._config.period_ceiling)

    async def fetch(self, since_ts: float = 0) -> RawUpdate:
        """Fetch transactions, operations and the last solid block."""
        return await self.get_pool_updates(since_ts)

    async def get_pool_updates(self, since_ts: float = 0) -> RawUpdate:
        url, data = await self._get_updates("getPoolUpdates", since_ts)
        if not data:
            raise FetchError("Can not get last pool updates", request_url=url)
        try:
            payload = PoolUpdatesPayload.model_validate(data)
        except ValidationError as e:
            raise FetchError(
                "Malformed pool updates response",
                request_url=url,
                original_error=e,
            )
        update = payload.to_update()
        logger.debug(
            f"[fetcher] Got updates for {len(update.transactions)} tx addresses, "
            f"{len(update.operations)} op addresses"
        )
        return update

    async def get_transactions(self, since_ts: float = 0) -> dict[str, list[dict[str, Any]]]:
        """Last transactions of every pool address."""
        url, data = await self._get_updates("getPoolLastTransactions", since_ts)
        return self._entries(url, data)

    async def get_operations(self, since_ts: float = 0) -> dict[str, list[dict[str, Any]]]:
        """Last token operations of every pool address."""
        url, data = await self._get_updates("getPoolLastOperations", since_ts)
        return self._entries(url, data)

    def _entries(self, url: str, data: Any) -> dict[str, list[dict[str, Any]]]:
        try:
            return PoolEntriesPayload.from_response(data).entries
        except ValidationError as e:
            raise FetchError(
                "Malformed pool entries response",
                request_url=url,
                original_error=e,
            )

    async def _get_updates(self, method: str, since_ts: float) -> tuple[str, Optional[Any]]:
        if method not in self.UPDATE_METHODS:
            raise UnknownApiMethod(method)
        pool_id = self._config.pool_id
        if not pool_id:
            raise NoPoolConfigured()

        period = self.lookback_period(since_ts)
        url = f"{self._config.monitor}/{method}/{pool_id}"
        params = {"apiKey": self._config.api_key, "period": period}
        logger.debug(f"[fetcher] {method} period={period}s")
        try:
            data = await self._transport.get_json(url, params=params)
        except TransportError as e:
            raise FetchError(
                f"Request failed: {e.message}",
                request_url=url,
                original_error=e,
                context={"method": method, "period": period},
            )
        return url, data
