"""
Poll Scheduler - drives the watch cycle and owns the failure policy.

============================================================
CYCLE
============================================================
1. Fetch updates since the last checkpoint
2. Normalize (token lookups fan out per distinct contract)
3. Drop events already emitted (dedup filter)
4. Advance the checkpoint if new blocks were seen or the
   last solid block moved
5. Publish queued ``data`` events
6. Publish ``state_changed`` if the checkpoint advanced

============================================================
STATES
============================================================
IDLE -> WATCHING -> UNWATCHED, and UNWATCHED -> WATCHING on a new
watch() call. Cycles never overlap. unwatch() stops future cycles but
lets an in-flight cycle finish.

A failed cycle increments the consecutive-error counter and publishes
``exception``; reaching ``max_error_count`` (when > 0) unwatches.

============================================================
"""

import asyncio
import logging
import time
from typing import Any, Callable, Optional, Union

from pool_monitor.checkpoint import CheckpointStore
from pool_monitor.config import MonitorConfig
from pool_monitor.dedup import DedupFilter
from pool_monitor.exceptions import AlreadyWatching, NoPoolConfigured
from pool_monitor.fetcher import UpdateFetcher
from pool_monitor.models import (
    Checkpoint,
    CycleResult,
    NormalizedEvent,
    Signal,
    WatchState,
)
from pool_monitor.normalizer import EventNormalizer
from pool_monitor.sink import EventSink, Listener
from pool_monitor.token_cache import TokenMetadataCache
from pool_monitor.transport import LedgerTransport


logger = logging.getLogger(__name__)


class PoolScheduler:
    """
    Watches a pool and publishes normalized events.

    Usage:
        config = MonitorConfig(api_key="...", pool_id="...")
        scheduler = PoolScheduler(config)
        scheduler.on(Signal.DATA, print)
        scheduler.on(Signal.STATE_CHANGED, persist)
        await scheduler.watch()
        ...
        await scheduler.close()
    """

    def __init__(
        self,
        config: MonitorConfig,
        transport: Optional[LedgerTransport] = None,
        sink: Optional[EventSink] = None,
        token_cache: Optional[TokenMetadataCache] = None,
        checkpoint: Optional[CheckpointStore] = None,
        dedup: Optional[DedupFilter] = None,
        fetcher: Optional[UpdateFetcher] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._config = config
        self._clock = clock

        self._owns_transport = transport is None
        self._transport = transport or LedgerTransport(timeout=config.request_timeout_seconds)
        self.sink = sink or EventSink()
        self._checkpoint = checkpoint or CheckpointStore()
        self._dedup = dedup or DedupFilter()

        self._tokens = token_cache or TokenMetadataCache(
            self._transport,
            api_url=config.api,
            api_key=config.api_key,
            lifetime_seconds=config.tokens_cache_lifetime_seconds,
            lock_wait_seconds=config.lock_wait_seconds,
            max_attempts=config.token_fetch_attempts,
            retry_delay=config.token_retry_delay,
        )
        self._tokens.set_exception_handler(self._on_token_exception)

        self._fetcher = fetcher or UpdateFetcher(config, self._transport, self._checkpoint, clock=clock)
        self._normalizer = EventNormalizer(
            self._tokens,
            self._checkpoint,
            watch_failed=config.watch_failed,
        )

        # Watch state
        self._state = WatchState.IDLE
        self._errors = 0
        self._resume_ts: float = 0
        self._watched_emitted = False
        self._stop_event: Optional[asyncio.Event] = None
        self._task: Optional[asyncio.Task] = None
        self._cycle_lock = asyncio.Lock()
        self._last_result: Optional[CycleResult] = None

    # ─────────────────────────────────────────────────────────────
    # Properties
    # ─────────────────────────────────────────────────────────────

    @property
    def config(self) -> MonitorConfig:
        return self._config

    @property
    def state(self) -> WatchState:
        return self._state

    @property
    def is_watching(self) -> bool:
        return self._state == WatchState.WATCHING

    @property
    def error_count(self) -> int:
        return self._errors

    @property
    def checkpoint(self) -> Checkpoint:
        return self._checkpoint.current()

    @property
    def token_cache(self) -> TokenMetadataCache:
        return self._tokens

    @property
    def dedup(self) -> DedupFilter:
        return self._dedup

    @property
    def fetcher(self) -> UpdateFetcher:
        return self._fetcher

    @property
    def last_result(self) -> Optional[CycleResult]:
        return self._last_result

    def on(self, signal: Union[Signal, str], listener: Listener) -> None:
        """Shortcut for ``self.sink.on``."""
        self.sink.on(signal, listener)

    # ─────────────────────────────────────────────────────────────
    # Checkpoint
    # ─────────────────────────────────────────────────────────────

    def save_state(self) -> dict[str, Any]:
        """Checkpoint in its persisted layout."""
        return self._checkpoint.current().to_dict()

    def restore_state(self, blob: Any) -> Checkpoint:
        """
        Restore a persisted checkpoint.

        The next fetch looks back at least to the restored ``lastTs``.
        """
        snapshot = self._checkpoint.restore(blob)
        self._resume_ts = snapshot.last_ts
        return snapshot

    # ─────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────

    async def watch(self) -> None:
        """
        Start watching.

        Runs the first cycle before returning, then keeps polling every
        ``interval`` seconds in a background task.

        Raises:
            NoPoolConfigured: no pool id is configured
            AlreadyWatching: already in the WATCHING state
        """
        if not self._config.pool_id:
            raise NoPoolConfigured()
        if self._state == WatchState.WATCHING:
            raise AlreadyWatching()

        self._state = WatchState.WATCHING
        self._watched_emitted = False
        self._errors = 0
        stop_event = asyncio.Event()
        self._stop_event = stop_event
        logger.info(f"[scheduler] Watching pool {self._config.pool_id}")

        await self._tick(stop_event)

        if not stop_event.is_set():
            self._task = asyncio.create_task(self._run_loop(stop_event))

    async def unwatch(self) -> None:
        """Stop scheduling cycles; an in-flight cycle still completes."""
        if self._state != WatchState.WATCHING:
            return
        self._state = WatchState.UNWATCHED
        self._resume_ts = self._clock()
        if self._stop_event is not None:
            self._stop_event.set()
        logger.info(f"[scheduler] Stopped watching pool {self._config.pool_id}")
        await self.sink.emit(Signal.UNWATCHED)

    async def close(self) -> None:
        """Unwatch, wait for the polling task and release the transport."""
        await self.unwatch()
        if self._task is not None and self._task is not asyncio.current_task():
            await self._task
        self._task = None
        if self._owns_transport:
            await self._transport.close()

    async def __aenter__(self) -> "PoolScheduler":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def _run_loop(self, stop_event: asyncio.Event) -> None:
        """Polling loop of one watch session."""
        while not stop_event.is_set():
            logger.debug(
                f"[scheduler] Wait for {self._config.interval} seconds before new updates check..."
            )
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self._config.interval)
            except asyncio.TimeoutError:
                pass
            if stop_event.is_set():
                break
            await self._tick(stop_event)

    # ─────────────────────────────────────────────────────────────
    # Cycle
    # ─────────────────────────────────────────────────────────────

    def _is_current(self, stop_event: Optional[asyncio.Event]) -> bool:
        """False for a cycle of a session that was unwatched meanwhile."""
        if stop_event is None:
            return True
        return stop_event is self._stop_event and not stop_event.is_set()

    async def _tick(self, stop_event: Optional[asyncio.Event] = None) -> Optional[CycleResult]:
        """Run one cycle and apply the failure policy of its session."""
        try:
            result = await self.run_cycle()
        except Exception as e:
            await self._on_cycle_error(e, stop_event)
            return None

        if not self._is_current(stop_event):
            return result

        self._errors = 0
        if self._state == WatchState.WATCHING and not self._watched_emitted:
            self._watched_emitted = True
            await self.sink.emit(Signal.WATCHED)
        return result

    async def _on_cycle_error(
        self,
        error: Exception,
        stop_event: Optional[asyncio.Event] = None,
    ) -> None:
        self._last_result = CycleResult(
            started_at=self._clock(),
            completed_at=self._clock(),
            error=str(error),
        )
        if not self._is_current(stop_event):
            logger.warning(f"[scheduler] Cycle of a stopped session failed: {error}")
            await self.sink.emit(Signal.EXCEPTION, error)
            return

        self._errors += 1
        logger.warning(f"[scheduler] Cycle failed ({self._errors} in a row): {error}")
        await self.sink.emit(Signal.EXCEPTION, error)

        max_errors = self._config.max_error_count
        if max_errors > 0 and self._errors >= max_errors:
            logger.error(f"[scheduler] {self._errors} consecutive failed cycles, unwatching")
            self._errors = 0
            await self.unwatch()

    async def run_cycle(self) -> CycleResult:
        """
        Run a single fetch/normalize/dedup/advance/emit cycle.

        Errors propagate to the caller; the polling loop counts them.
        """
        async with self._cycle_lock:
            result = await self._cycle()
        self._last_result = result
        return result

    async def _cycle(self) -> CycleResult:
        result = CycleResult(started_at=self._clock())

        update = await self._fetcher.fetch(self._resume_ts)
        events = await self._normalizer.normalize(update)
        result.events_fetched = len(events)

        queued: list[NormalizedEvent] = []
        queued_ids: set[str] = set()
        touched_blocks: set[int] = set()
        for event in events:
            if event.id in queued_ids or not self._dedup.should_emit(event.id):
                result.events_skipped += 1
                continue
            queued_ids.add(event.id)
            queued.append(event)
            touched_blocks.add(event.block_number)

        current = self._checkpoint.current()
        lsb = update.last_solid_block
        lsb_changed = lsb is not None and bool(lsb.timestamp) and lsb.block > current.last_block

        snapshot: Optional[Checkpoint] = None
        if lsb_changed or touched_blocks:
            snapshot = self._checkpoint.advance(
                lsb.block if lsb_changed else current.last_block,
                lsb.timestamp if lsb_changed else current.last_ts,
                touched_blocks,
            )
            self._dedup.prune(snapshot.last_block)
            self._resume_ts = 0
            result.checkpoint_advanced = True

        if queued:
            logger.info(f"[scheduler] Firing {len(queued)} events...")
            for event in queued:
                self._dedup.mark_emitted(event.id, event.block_number)
                await self.sink.emit(Signal.DATA, event)
        else:
            logger.debug("[scheduler] No new events found")

        if snapshot is not None:
            await self.sink.emit(Signal.STATE_CHANGED, snapshot)

        result.events_emitted = len(queued)
        result.completed_at = self._clock()
        logger.debug(f"[scheduler] Cycle complete: {result.to_dict()}")
        return result

    async def _on_token_exception(self, error: Exception) -> None:
        await self.sink.emit(Signal.EXCEPTION, error)
