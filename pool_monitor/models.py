"""
Pool Monitor Data Models - Checkpoint, token metadata and emitted events.

Only the checkpoint and the token cache outlive a polling cycle; raw updates
and normalized events are built, published and dropped within one cycle.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Optional


# Ethereum pseudo-token address, used to look up the ETH rate
ETH_ADDRESS = "0x0000000000000000000000000000000000000000"


class Network(str, Enum):
    """Known Ethplorer deployments."""
    MAINNET = "mainnet"
    KOVAN = "kovan"
    CUSTOM = "custom"


class EventType(str, Enum):
    """Kinds of normalized events."""
    TRANSACTION = "transaction"
    OPERATION = "operation"


class WatchState(str, Enum):
    """Poll scheduler lifecycle state."""
    IDLE = "idle"
    WATCHING = "watching"
    UNWATCHED = "unwatched"


class Signal(str, Enum):
    """Signals published by the scheduler to its sink."""
    WATCHED = "watched"
    DATA = "data"
    STATE_CHANGED = "state_changed"
    EXCEPTION = "exception"
    UNWATCHED = "unwatched"


@dataclass(frozen=True)
class NetworkEndpoints:
    """Base URIs of the token-info API and the pool monitor API."""
    api: str
    monitor: str


@dataclass(frozen=True)
class TokenInfo:
    """Resolved token metadata."""
    address: str
    name: str
    symbol: str
    decimals: Optional[int] = None
    rate: Optional[float] = None

    @classmethod
    def unknown(cls, address: str) -> "TokenInfo":
        """Sentinel used when resolution fails or times out."""
        return cls(address=address, name="Unknown", symbol="Unknown", decimals=0, rate=None)

    @property
    def is_unknown(self) -> bool:
        return self.name == "Unknown" and self.symbol == "Unknown"

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "address": self.address,
            "name": self.name,
            "symbol": self.symbol,
            "decimals": self.decimals,
            "rate": self.rate,
        }


@dataclass
class TokenCacheEntry:
    """Cache entry for token metadata; only fetched_at is ever updated."""
    token: TokenInfo
    fetched_at: float

    def age_seconds(self, now: float) -> float:
        return now - self.fetched_at

    def is_expired(self, now: float, lifetime_seconds: float) -> bool:
        return self.age_seconds(now) > lifetime_seconds


@dataclass(frozen=True)
class LastSolidBlock:
    """Highest block the remote service considers stable."""
    block: int
    timestamp: int


@dataclass
class RawUpdate:
    """Unit of data returned by one fetch."""
    transactions: dict[str, list[dict[str, Any]]] = field(default_factory=dict)
    operations: dict[str, list[dict[str, Any]]] = field(default_factory=dict)
    last_solid_block: Optional[LastSolidBlock] = None

    def is_empty(self) -> bool:
        return not any(self.transactions.values()) and not any(self.operations.values())

    def contract_addresses(self) -> set[str]:
        """Distinct (lower-cased) contracts touched by operations."""
        return {
            op["contract"].lower()
            for ops in self.operations.values()
            for op in ops
            if op.get("contract")
        }


@dataclass
class Checkpoint:
    """
    Durable marker of watching progress.

    ``processed_blocks`` only holds blocks above ``last_block``; everything at
    or below ``last_block`` counts as processed.
    """
    last_block: int = 0
    last_ts: int = 0
    processed_blocks: set[int] = field(default_factory=set)

    def copy(self) -> "Checkpoint":
        return Checkpoint(
            last_block=self.last_block,
            last_ts=self.last_ts,
            processed_blocks=set(self.processed_blocks),
        )

    def to_dict(self) -> dict[str, Any]:
        """Persisted layout: ``{lastBlock, lastTs, blocks: {n: true}}``."""
        return {
            "lastBlock": self.last_block,
            "lastTs": self.last_ts,
            "blocks": {str(block): True for block in sorted(self.processed_blocks)},
        }


@dataclass(frozen=True)
class NormalizedEvent:
    """A transaction or token operation ready to publish."""
    id: str
    address: str
    type: EventType
    block_number: int
    payload: dict[str, Any]
    usd_value: Optional[float] = None
    value: Optional[Decimal] = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "address": self.address,
            "type": self.type.value,
            "block_number": self.block_number,
            "usd_value": self.usd_value,
            "value": format(self.value, "f") if self.value is not None else None,
            "data": self.payload,
        }


@dataclass
class CycleResult:
    """Outcome of one polling cycle."""
    started_at: float
    completed_at: Optional[float] = None
    events_fetched: int = 0
    events_emitted: int = 0
    events_skipped: int = 0
    checkpoint_advanced: bool = False
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None

    @property
    def duration_seconds(self) -> float:
        if self.completed_at is None:
            return 0.0
        return self.completed_at - self.started_at

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        return {
            "events_fetched": self.events_fetched,
            "events_emitted": self.events_emitted,
            "events_skipped": self.events_skipped,
            "checkpoint_advanced": self.checkpoint_advanced,
            "duration_seconds": round(self.duration_seconds, 3),
            "error": self.error,
        }
