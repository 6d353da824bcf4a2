"""
Pydantic schemas for Ethplorer API payloads.
"""

from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from pool_monitor.models import LastSolidBlock, RawUpdate, TokenInfo


# =======================
# TOKEN INFO
# =======================

class PricePayload(BaseModel):
    model_config = ConfigDict(extra="allow")

    rate: Optional[float] = None


class TokenInfoPayload(BaseModel):
    """Response of ``GET {api}/getTokenInfo/{address}``."""
    model_config = ConfigDict(extra="allow")

    name: Optional[str] = None
    symbol: Optional[str] = None
    decimals: Optional[int] = None
    # The API sends ``false`` for tokens without a price
    price: Union[PricePayload, bool, None] = None

    @field_validator("decimals", mode="before")
    @classmethod
    def _empty_decimals(cls, value: Any) -> Any:
        if value == "":
            return None
        return value

    @property
    def rate(self) -> Optional[float]:
        if isinstance(self.price, PricePayload) and self.price.rate:
            return self.price.rate
        return None

    def to_token(self, address: str) -> TokenInfo:
        return TokenInfo(
            address=address,
            name=self.name or "Unknown",
            symbol=self.symbol or "Unknown",
            decimals=self.decimals,
            rate=self.rate,
        )


# =======================
# POOL UPDATES
# =======================

class LastSolidBlockPayload(BaseModel):
    model_config = ConfigDict(extra="allow")

    block: int
    timestamp: Optional[int] = None


def _map_or_empty(value: Any) -> Any:
    # PHP backends encode an empty map as []
    if value is None or value == []:
        return {}
    return value


class PoolUpdatesPayload(BaseModel):
    """Response of ``GET {monitor}/getPoolUpdates/{poolId}``."""
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    transactions: Dict[str, List[Dict[str, Any]]] = Field(default_factory=dict)
    operations: Dict[str, List[Dict[str, Any]]] = Field(default_factory=dict)
    last_solid_block: Optional[LastSolidBlockPayload] = Field(default=None, alias="lastSolidBlock")

    @field_validator("transactions", "operations", mode="before")
    @classmethod
    def _normalize_maps(cls, value: Any) -> Any:
        return _map_or_empty(value)

    @field_validator("last_solid_block", mode="before")
    @classmethod
    def _empty_block(cls, value: Any) -> Any:
        if not value:
            return None
        return value

    def to_update(self) -> RawUpdate:
        lsb = None
        if self.last_solid_block is not None:
            lsb = LastSolidBlock(
                block=self.last_solid_block.block,
                timestamp=self.last_solid_block.timestamp or 0,
            )
        return RawUpdate(
            transactions=dict(self.transactions),
            operations=dict(self.operations),
            last_solid_block=lsb,
        )


class PoolEntriesPayload(BaseModel):
    """
    Response of ``getPoolLastTransactions`` / ``getPoolLastOperations``:
    a map of address to raw entries.
    """
    model_config = ConfigDict(extra="forbid")

    entries: Dict[str, List[Dict[str, Any]]] = Field(default_factory=dict)

    @classmethod
    def from_response(cls, data: Any) -> "PoolEntriesPayload":
        return cls(entries=_map_or_empty(data))


class PoolAddressesPayload(BaseModel):
    """Response of ``GET {monitor}/getPoolAddresses/{poolId}``."""
    model_config = ConfigDict(extra="allow")

    addresses: List[str] = Field(default_factory=list)

    @field_validator("addresses", mode="before")
    @classmethod
    def _null_addresses(cls, value: Any) -> Any:
        return value or []


class CreatePoolPayload(BaseModel):
    """Response of ``POST {monitor}/createPool``."""
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    pool_id: str = Field(alias="poolId")
