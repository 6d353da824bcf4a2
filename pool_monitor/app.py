"""
Monitor App - pool monitor with its state kept in a local JSON file.

The state file holds ``{"poolId": ..., "checkpoint": {...}}``. A pool is
created on first use, the checkpoint is restored before watching and saved
on every ``state_changed`` signal.
"""

import json
import logging
import tempfile
from pathlib import Path
from typing import Any, Callable, Iterable, Optional, Union

from pool_monitor.config import MonitorConfig
from pool_monitor.exceptions import InvalidCheckpoint, MissingApiKey
from pool_monitor.models import Checkpoint, Signal, WatchState
from pool_monitor.pool import PoolManager
from pool_monitor.scheduler import PoolScheduler
from pool_monitor.transport import LedgerTransport


logger = logging.getLogger(__name__)


DEFAULT_STATE_FILE = Path(tempfile.gettempdir()) / "poolMonitorState.json"


class MonitorApp:
    """
    Ready-to-run monitor.

    Usage:
        app = MonitorApp(MonitorConfig.from_env())
        await app.init(["0x..."])
        await app.watch(on_data)
    """

    def __init__(
        self,
        config: MonitorConfig,
        state_file: Union[str, Path, None] = None,
        transport: Optional[LedgerTransport] = None,
    ) -> None:
        if not config.api_key:
            raise MissingApiKey()

        self._config = config
        self._state_file = Path(state_file) if state_file else DEFAULT_STATE_FILE
        self._transport = transport or LedgerTransport(timeout=config.request_timeout_seconds)
        self._owns_transport = transport is None

        self.scheduler = PoolScheduler(config, transport=self._transport)
        self.pool = PoolManager(config, self._transport)

        self._state: dict[str, Any] = {"poolId": config.pool_id or None, "checkpoint": None}
        self._initialized = False

        self.restore_state()

    @property
    def state(self) -> dict[str, Any]:
        return dict(self._state)

    @property
    def state_file(self) -> Path:
        return self._state_file

    # ─────────────────────────────────────────────────────────────
    # State file
    # ─────────────────────────────────────────────────────────────

    def save_state(self) -> None:
        """Write the app state to the state file."""
        self._state_file.parent.mkdir(parents=True, exist_ok=True)
        with open(self._state_file, "w") as f:
            json.dump(self._state, f)

    def restore_state(self) -> None:
        """Read the app state from the state file, if there is one."""
        if not self._state_file.exists():
            return
        try:
            with open(self._state_file, "r") as f:
                data = json.load(f)
        except ValueError as e:
            logger.warning(f"[app] Ignoring unreadable state file {self._state_file}: {e}")
            return
        if not isinstance(data, dict):
            logger.warning(f"[app] Ignoring malformed state file {self._state_file}")
            return
        self._state.update(data)
        if self._state.get("poolId"):
            self._config.pool_id = self._state["poolId"]

    def _on_state_changed(self, checkpoint: Checkpoint) -> None:
        self._state["checkpoint"] = checkpoint.to_dict()
        self.save_state()

    # ─────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────

    async def init(self, addresses: Optional[Iterable[str]] = None) -> None:
        """Create the pool if none is stored and add ``addresses`` to it."""
        if self._initialized:
            return
        if not self._state.get("poolId"):
            self._state["poolId"] = await self.pool.create_pool()
            self.save_state()
        self._config.pool_id = self._state["poolId"]
        if addresses:
            await self.pool.add_addresses(addresses)
        self._initialized = True

    async def watch(self, callback: Optional[Callable[..., Any]] = None) -> None:
        """
        Start watching; ``callback`` receives every data event.

        Also restarts a scheduler that stopped itself after too many
        failed cycles.
        """
        if self.scheduler.is_watching:
            return

        await self.init()

        saved = self._state.get("checkpoint")
        if saved and self.scheduler.state == WatchState.IDLE:
            try:
                self.scheduler.restore_state(saved)
            except InvalidCheckpoint as e:
                logger.warning(f"[app] Discarding saved checkpoint: {e}")

        sink = self.scheduler.sink
        if callback is not None:
            sink.off(Signal.DATA, callback)
            sink.on(Signal.DATA, callback)
        sink.off(Signal.STATE_CHANGED, self._on_state_changed)
        sink.on(Signal.STATE_CHANGED, self._on_state_changed)

        await self.scheduler.watch()

    async def unwatch(self) -> None:
        """Remove all listeners and stop watching."""
        self.scheduler.sink.remove_all_listeners()
        await self.scheduler.unwatch()

    async def close(self) -> None:
        await self.unwatch()
        await self.scheduler.close()
        if self._owns_transport:
            await self._transport.close()
