"""
Pool Monitor Configuration.

============================================================
OPTIONS
============================================================
api_key                  Ethplorer API key (required)
pool_id                  Pool to watch (None until a pool is created)
network                  mainnet | kovan | custom
api / monitor            Base URIs, required for the custom network
period                   Minimum lookback window per fetch (seconds)
period_ceiling           Maximum lookback window per fetch (seconds)
interval                 Delay between polling cycles (seconds)
max_error_count          Consecutive failed cycles before unwatch (0 = never)
cache_lock_check_limit   Lock-wait polls before a token waiter gives up
cache_lock_check_delay   Delay of one lock-wait poll (seconds)
tokens_cache_lifetime    Token metadata time-to-live (milliseconds)
request_timeout          Timeout of a single HTTP request (milliseconds)
watch_failed             Also emit unsuccessful transactions
token_fetch_attempts     Token-info attempts before falling back
token_retry_delay        Delay between token-info attempts (seconds)

============================================================
"""

import logging
import os
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping, Optional

from dotenv import load_dotenv

from pool_monitor.exceptions import (
    ConfigurationError,
    MissingCustomURI,
    UnknownNetwork,
)
from pool_monitor.models import Network, NetworkEndpoints


logger = logging.getLogger(__name__)


KNOWN_NETWORKS: Mapping[Network, Optional[NetworkEndpoints]] = MappingProxyType({
    Network.MAINNET: NetworkEndpoints(
        api="https://api.ethplorer.io",
        monitor="https://api-mon.ethplorer.io",
    ),
    Network.KOVAN: NetworkEndpoints(
        api="https://kovan-api.ethplorer.io",
        monitor="https://kovan-api-mon.ethplorer.io",
    ),
    Network.CUSTOM: None,
})

ENV_PREFIX = "POOL_MONITOR_"


def _env_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class MonitorConfig:
    """Validated configuration for one monitor instance."""

    api_key: str
    pool_id: Optional[str] = None
    network: str = Network.MAINNET.value
    api: Optional[str] = None
    monitor: Optional[str] = None

    # Polling
    period: int = 300
    period_ceiling: int = 360000
    interval: float = 60
    max_error_count: int = 0

    # Token cache
    cache_lock_check_limit: int = 100
    cache_lock_check_delay: float = 0.1
    tokens_cache_lifetime: int = 600000
    token_fetch_attempts: int = 3
    token_retry_delay: float = 1.0

    # Transport
    request_timeout: int = 30000

    watch_failed: bool = False

    endpoints: NetworkEndpoints = field(init=False, repr=False)

    def __post_init__(self) -> None:
        try:
            network = Network(self.network)
        except ValueError:
            raise UnknownNetwork(self.network)

        defaults = KNOWN_NETWORKS[network]
        if defaults is not None:
            self.api = defaults.api
            self.monitor = defaults.monitor
        if not self.api:
            raise MissingCustomURI("api")
        if not self.monitor:
            raise MissingCustomURI("monitor")

        self.network = network.value
        self.api = self.api.rstrip("/")
        self.monitor = self.monitor.rstrip("/")
        self.endpoints = NetworkEndpoints(api=self.api, monitor=self.monitor)
        self.validate()

    def validate(self) -> None:
        """Validate numeric options."""
        non_negative = (
            "period",
            "period_ceiling",
            "interval",
            "max_error_count",
            "cache_lock_check_delay",
            "tokens_cache_lifetime",
            "token_retry_delay",
        )
        for name in non_negative:
            if getattr(self, name) < 0:
                raise ConfigurationError(f"{name} must be non-negative", config_key=name)
        positive = ("cache_lock_check_limit", "token_fetch_attempts", "request_timeout")
        for name in positive:
            if getattr(self, name) < 1:
                raise ConfigurationError(f"{name} must be at least 1", config_key=name)
        if self.period_ceiling < self.period:
            raise ConfigurationError(
                "period_ceiling must not be lower than period",
                config_key="period_ceiling",
            )

    @property
    def request_timeout_seconds(self) -> float:
        return self.request_timeout / 1000

    @property
    def tokens_cache_lifetime_seconds(self) -> float:
        return self.tokens_cache_lifetime / 1000

    @property
    def lock_wait_seconds(self) -> float:
        """Upper bound a token waiter spends on an in-flight lookup."""
        return self.cache_lock_check_limit * self.cache_lock_check_delay

    @classmethod
    def from_env(cls, dotenv_path: Optional[str] = None, **overrides: Any) -> "MonitorConfig":
        """
        Build a config from ``POOL_MONITOR_*`` environment variables.

        A ``.env`` file is loaded first; explicit keyword overrides win.
        """
        load_dotenv(dotenv_path)

        casts = {
            "api_key": str,
            "pool_id": str,
            "network": str,
            "api": str,
            "monitor": str,
            "period": int,
            "period_ceiling": int,
            "interval": float,
            "max_error_count": int,
            "cache_lock_check_limit": int,
            "cache_lock_check_delay": float,
            "tokens_cache_lifetime": int,
            "token_fetch_attempts": int,
            "token_retry_delay": float,
            "request_timeout": int,
            "watch_failed": _env_bool,
        }
        values: dict[str, Any] = {}
        for name, cast in casts.items():
            raw = os.environ.get(f"{ENV_PREFIX}{name.upper()}")
            if raw is None or raw == "":
                continue
            try:
                values[name] = cast(raw)
            except ValueError as e:
                raise ConfigurationError(
                    f"Invalid value for {ENV_PREFIX}{name.upper()}: {raw!r}",
                    config_key=name,
                    original_error=e,
                )
        values.update(overrides)
        values.setdefault("api_key", "")
        logger.debug(f"[config] Loaded options from environment: {sorted(values)}")
        return cls(**values)
