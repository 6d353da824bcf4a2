"""
Pool Monitor Package - watches a pool of addresses on the Ethplorer bulk monitor API.

Polls the monitor for new transactions and token operations, enriches them
with token metadata and USD values, and publishes each event exactly once
together with a resumable checkpoint.

Features:
- Incremental polling with a persisted checkpoint
- Single-flight token metadata cache with time-to-live
- Exact decimal amounts and USD values
- Consecutive-error threshold that stops watching

Quick Start:
    from pool_monitor import MonitorConfig, PoolScheduler, Signal

    async def watch_pool():
        config = MonitorConfig(api_key="...", pool_id="...", interval=30)
        scheduler = PoolScheduler(config)

        scheduler.on(Signal.DATA, lambda event: print(event.to_dict()))
        scheduler.on(Signal.STATE_CHANGED, lambda cp: save(cp.to_dict()))

        await scheduler.watch()

Signals:
- watched: first successful cycle of a watch session
- data: one NormalizedEvent
- state_changed: Checkpoint after it advanced
- exception: failed cycle or degraded token lookup
- unwatched: watching stopped
"""

from pool_monitor.app import MonitorApp
from pool_monitor.checkpoint import CheckpointStore, checkpoint_from_dict
from pool_monitor.config import KNOWN_NETWORKS, MonitorConfig
from pool_monitor.dedup import DedupFilter, make_event_id
from pool_monitor.exceptions import (
    AlreadyWatching,
    ConfigurationError,
    FetchError,
    InvalidCheckpoint,
    MissingApiKey,
    MissingCustomURI,
    NoPoolConfigured,
    PoolMonitorError,
    TokenResolutionDegraded,
    TransportError,
    UnknownApiMethod,
    UnknownNetwork,
)
from pool_monitor.fetcher import UpdateFetcher
from pool_monitor.models import (
    ETH_ADDRESS,
    Checkpoint,
    CycleResult,
    EventType,
    LastSolidBlock,
    Network,
    NormalizedEvent,
    RawUpdate,
    Signal,
    TokenInfo,
    WatchState,
)
from pool_monitor.normalizer import EventNormalizer
from pool_monitor.pool import PoolManager
from pool_monitor.scheduler import PoolScheduler
from pool_monitor.sink import EventSink
from pool_monitor.token_cache import TokenMetadataCache
from pool_monitor.transport import LedgerTransport


__version__ = "1.0.0"

__all__ = [
    # Scheduler
    "PoolScheduler",
    "MonitorApp",
    "PoolManager",

    # Components
    "CheckpointStore",
    "checkpoint_from_dict",
    "DedupFilter",
    "make_event_id",
    "EventNormalizer",
    "EventSink",
    "TokenMetadataCache",
    "UpdateFetcher",
    "LedgerTransport",

    # Config
    "MonitorConfig",
    "KNOWN_NETWORKS",

    # Models
    "ETH_ADDRESS",
    "Checkpoint",
    "CycleResult",
    "EventType",
    "LastSolidBlock",
    "Network",
    "NormalizedEvent",
    "RawUpdate",
    "Signal",
    "TokenInfo",
    "WatchState",

    # Exceptions
    "PoolMonitorError",
    "ConfigurationError",
    "UnknownNetwork",
    "MissingCustomURI",
    "MissingApiKey",
    "NoPoolConfigured",
    "AlreadyWatching",
    "InvalidCheckpoint",
    "UnknownApiMethod",
    "TransportError",
    "FetchError",
    "TokenResolutionDegraded",
]
