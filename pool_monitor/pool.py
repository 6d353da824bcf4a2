"""
Pool Manager - membership of the watched pool on the Ethplorer API.
"""

import logging
from typing import Any, Iterable, Optional

from pydantic import ValidationError

from pool_monitor.config import MonitorConfig
from pool_monitor.exceptions import (
    NoPoolConfigured,
    PoolMonitorError,
    TransportError,
    UnknownApiMethod,
)
from pool_monitor.schemas import CreatePoolPayload, PoolAddressesPayload
from pool_monitor.transport import LedgerTransport


logger = logging.getLogger(__name__)


class PoolManager:
    """Creates and deletes pools and edits their address lists."""

    POST_METHODS = (
        "createPool",
        "deletePool",
        "addPoolAddresses",
        "deletePoolAddresses",
        "clearPoolAddresses",
    )

    def __init__(self, config: MonitorConfig, transport: LedgerTransport) -> None:
        self._config = config
        self._transport = transport

    @property
    def pool_id(self) -> Optional[str]:
        return self._config.pool_id

    async def create_pool(self, addresses: Iterable[str] = ()) -> str:
        """Create a pool, make it the configured one and return its id."""
        result = await self._post("createPool", addresses=list(addresses))
        try:
            pool_id = CreatePoolPayload.model_validate(result or {}).pool_id
        except ValidationError as e:
            raise PoolMonitorError("createPool returned no poolId", original_error=e)
        self._config.pool_id = pool_id
        logger.info(f"[pool] Created pool {pool_id}")
        return pool_id

    async def delete_pool(self) -> bool:
        await self._post("deletePool")
        logger.info(f"[pool] Deleted pool {self._config.pool_id}")
        return True

    async def get_addresses(self) -> list[str]:
        """Addresses currently in the pool."""
        pool_id = self._require_pool()
        url = f"{self._config.monitor}/getPoolAddresses/{pool_id}"
        try:
            data = await self._transport.get_json(url, params={"apiKey": self._config.api_key})
        except TransportError as e:
            raise PoolMonitorError(f"{url} Request failed: {e.message}", original_error=e)
        if not data:
            return []
        return PoolAddressesPayload.model_validate(data).addresses

    async def add_addresses(self, addresses: Iterable[str]) -> bool:
        addresses = list(addresses)
        if not addresses:
            return False
        await self._post("addPoolAddresses", addresses=addresses)
        return True

    async def remove_addresses(self, addresses: Iterable[str]) -> bool:
        addresses = list(addresses)
        if not addresses:
            return False
        await self._post("deletePoolAddresses", addresses=addresses)
        return True

    async def remove_all_addresses(self) -> bool:
        await self._post("clearPoolAddresses")
        return True

    def _require_pool(self) -> str:
        if not self._config.pool_id:
            raise NoPoolConfigured()
        return self._config.pool_id

    async def _post(self, method: str, addresses: Optional[list[str]] = None) -> Any:
        if method not in self.POST_METHODS:
            raise UnknownApiMethod(method)

        fields: dict[str, Any] = {"apiKey": self._config.api_key}
        if method != "createPool":
            fields["poolId"] = self._require_pool()
        if addresses:
            fields["addresses"] = ",".join(addresses)

        url = f"{self._config.monitor}/{method}"
        try:
            return await self._transport.post_form(url, fields)
        except TransportError as e:
            if e.error_code is not None:
                logger.warning(f"[pool] Monitor API Error [code {e.error_code}]: {e.message}")
            raise PoolMonitorError(f"{url} POST Request failed: {e.message}", original_error=e)
