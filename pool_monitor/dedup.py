"""
Dedup Filter - suppresses re-emission of already published events.
"""

import logging
from typing import Optional

from pool_monitor.models import EventType


logger = logging.getLogger(__name__)


def make_event_id(
    event_type: EventType,
    address: str,
    tx_hash: str,
    priority: Optional[int] = None,
) -> str:
    """
    Deterministic identity of an event.

    Operations include their priority so several operations of one
    transaction stay distinct.
    """
    parts = [EventType(event_type).value, str(address), str(tx_hash)]
    if priority is not None:
        parts.append(str(priority))
    return "-".join(parts)


class DedupFilter:
    """Maps emitted event ids to their block number until the checkpoint passes them."""

    def __init__(self) -> None:
        self._emitted: dict[str, int] = {}

    def should_emit(self, event_id: str) -> bool:
        return event_id not in self._emitted

    def mark_emitted(self, event_id: str, block_number: int) -> None:
        self._emitted[event_id] = int(block_number)

    def prune(self, last_block: int) -> int:
        """Forget events at or below ``last_block``; returns how many were dropped."""
        stale = [key for key, block in self._emitted.items() if block <= last_block]
        for key in stale:
            del self._emitted[key]
        if stale:
            logger.debug(f"[dedup] Pruned {len(stale)} events up to block {last_block}")
        return len(stale)

    def clear(self) -> None:
        self._emitted.clear()

    def __contains__(self, event_id: str) -> bool:
        return event_id in self._emitted

    def __len__(self) -> int:
        return len(self._emitted)
