"""
Checkpoint Store - watching progress that survives restarts.

A block is considered processed when it is at or below ``last_block`` or when
it was explicitly marked (events seen above the last solid block). Marked
blocks are pruned as soon as ``last_block`` passes them.
"""

import logging
from typing import Any, Iterable, Optional

from pool_monitor.exceptions import InvalidCheckpoint
from pool_monitor.models import Checkpoint


logger = logging.getLogger(__name__)


# Keys written by older client versions
LEGACY_KEYS = ("blocksTx", "blocksOp")


def _as_block_number(value: Any, blob: Any) -> int:
    if isinstance(value, bool):
        raise InvalidCheckpoint(f"Invalid block number {value!r}", blob=blob)
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise InvalidCheckpoint(f"Invalid block number {value!r}", blob=blob)
    if number < 0:
        raise InvalidCheckpoint(f"Invalid block number {value!r}", blob=blob)
    return number


def checkpoint_from_dict(blob: Any) -> Checkpoint:
    """
    Parse the persisted layout ``{lastBlock, lastTs, blocks: {n: true}}``.

    Legacy ``blocksTx``/``blocksOp`` keys are ignored. Raises
    ``InvalidCheckpoint`` when ``lastBlock`` is missing or not a number.
    """
    if not isinstance(blob, dict) or blob.get("lastBlock") is None:
        raise InvalidCheckpoint(blob=blob)

    data = {key: value for key, value in blob.items() if key not in LEGACY_KEYS}

    last_block = _as_block_number(data["lastBlock"], blob)
    last_ts = _as_block_number(data.get("lastTs") or 0, blob)

    blocks = data.get("blocks") or {}
    if isinstance(blocks, dict):
        marked = [key for key, flag in blocks.items() if flag]
    elif isinstance(blocks, list):
        marked = list(blocks)
    else:
        raise InvalidCheckpoint(f"Invalid blocks map {blocks!r}", blob=blob)

    processed = {_as_block_number(key, blob) for key in marked}
    return Checkpoint(last_block=last_block, last_ts=last_ts, processed_blocks=processed)


class CheckpointStore:
    """Holds ``{last_block, last_ts, processed_blocks}``."""

    def __init__(self, checkpoint: Optional[Checkpoint] = None) -> None:
        self._checkpoint = checkpoint.copy() if checkpoint else Checkpoint()

    @property
    def last_block(self) -> int:
        return self._checkpoint.last_block

    @property
    def last_ts(self) -> int:
        return self._checkpoint.last_ts

    def current(self) -> Checkpoint:
        """Snapshot of the checkpoint."""
        return self._checkpoint.copy()

    def restore(self, blob: Any) -> Checkpoint:
        """
        Replace the checkpoint with a persisted one.

        Refuses to move ``last_block`` backwards once it has been set.
        """
        checkpoint = checkpoint_from_dict(blob)
        if checkpoint.last_block < self._checkpoint.last_block:
            raise InvalidCheckpoint(
                f"Checkpoint block {checkpoint.last_block} is behind "
                f"current block {self._checkpoint.last_block}",
                blob=blob,
            )
        self._checkpoint = checkpoint
        self._prune()
        logger.info(
            f"[checkpoint] Restored at block {checkpoint.last_block} "
            f"({len(checkpoint.processed_blocks)} pending blocks)"
        )
        return self.current()

    def is_processed(self, block_number: int) -> bool:
        return (
            block_number <= self._checkpoint.last_block
            or block_number in self._checkpoint.processed_blocks
        )

    def advance(
        self,
        new_block: int,
        new_ts: int,
        touched_blocks: Iterable[int] = (),
    ) -> Checkpoint:
        """
        Record confirmed progress and return the new snapshot.

        ``last_block`` never decreases; touched blocks are marked processed and
        then everything at or below ``last_block`` is pruned.
        """
        checkpoint = self._checkpoint
        previous = checkpoint.last_block
        checkpoint.last_block = max(previous, int(new_block))
        checkpoint.last_ts = int(new_ts)
        checkpoint.processed_blocks.update(int(block) for block in touched_blocks)
        self._prune()

        if checkpoint.last_block != previous:
            logger.debug(f"[checkpoint] Advanced from block {previous} to {checkpoint.last_block}")
        return self.current()

    def _prune(self) -> None:
        last_block = self._checkpoint.last_block
        self._checkpoint.processed_blocks = {
            block for block in self._checkpoint.processed_blocks if block > last_block
        }
