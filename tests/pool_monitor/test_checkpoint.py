"""
Tests for Checkpoint Store and Dedup Filter.

============================================================
PURPOSE
============================================================
- last_block never moves backwards
- Restore accepts the persisted layout and rejects malformed blobs
- Processed blocks are pruned once last_block passes them
- Emitted event ids are remembered until their block is confirmed

============================================================
"""

import pytest

from pool_monitor.checkpoint import CheckpointStore, checkpoint_from_dict
from pool_monitor.dedup import DedupFilter, make_event_id
from pool_monitor.exceptions import InvalidCheckpoint
from pool_monitor.models import Checkpoint, EventType


# ============================================================
# FIXTURES
# ============================================================

@pytest.fixture
def store():
    """Store positioned at block 100."""
    return CheckpointStore(Checkpoint(last_block=100, last_ts=1_600_000_000))


# ============================================================
# PARSING TESTS
# ============================================================

class TestCheckpointFromDict:
    """Tests for checkpoint_from_dict."""

    def test_parses_persisted_layout(self):
        checkpoint = checkpoint_from_dict({
            "lastBlock": 10,
            "lastTs": 1_600_000_000,
            "blocks": {"11": True, "12": True, "13": False},
        })

        assert checkpoint.last_block == 10
        assert checkpoint.last_ts == 1_600_000_000
        assert checkpoint.processed_blocks == {11, 12}

    def test_ignores_legacy_keys(self):
        checkpoint = checkpoint_from_dict({
            "lastBlock": 10,
            "lastTs": 5,
            "blocksTx": {"11": True},
            "blocksOp": {"12": True},
        })

        assert checkpoint.processed_blocks == set()

    def test_accepts_block_list(self):
        checkpoint = checkpoint_from_dict({"lastBlock": 1, "blocks": [2, 3]})

        assert checkpoint.processed_blocks == {2, 3}
        assert checkpoint.last_ts == 0

    @pytest.mark.parametrize("blob", [
        None,
        "state",
        [],
        {},
        {"lastTs": 5},
        {"lastBlock": None},
        {"lastBlock": "abc"},
        {"lastBlock": -1},
        {"lastBlock": 1, "blocks": "11"},
    ])
    def test_rejects_malformed_blob(self, blob):
        with pytest.raises(InvalidCheckpoint):
            checkpoint_from_dict(blob)

    def test_round_trips_to_dict(self):
        original = Checkpoint(last_block=7, last_ts=9, processed_blocks={8, 10})

        assert checkpoint_from_dict(original.to_dict()) == original


# ============================================================
# STORE TESTS
# ============================================================

class TestCheckpointStore:
    """Tests for CheckpointStore."""

    def test_starts_empty(self):
        store = CheckpointStore()

        assert store.last_block == 0
        assert store.current() == Checkpoint()

    def test_current_is_a_snapshot(self, store):
        snapshot = store.current()
        snapshot.processed_blocks.add(500)
        snapshot.last_block = 1

        assert store.last_block == 100
        assert not store.is_processed(500)

    def test_is_processed(self, store):
        store.advance(100, 1_600_000_100, touched_blocks=[105])

        assert store.is_processed(99)
        assert store.is_processed(100)
        assert store.is_processed(105)
        assert not store.is_processed(101)
        assert not store.is_processed(106)

    def test_advance_never_moves_backwards(self, store):
        snapshot = store.advance(90, 1_600_000_050)

        assert snapshot.last_block == 100
        assert snapshot.last_ts == 1_600_000_050

    def test_advance_prunes_confirmed_blocks(self, store):
        store.advance(100, 1, touched_blocks=[101, 102, 110])
        snapshot = store.advance(105, 2)

        assert snapshot.last_block == 105
        assert snapshot.processed_blocks == {110}

    def test_advance_drops_touched_blocks_at_or_below_last_block(self, store):
        snapshot = store.advance(120, 3, touched_blocks=[110, 120, 121])

        assert snapshot.processed_blocks == {121}

    def test_restore(self):
        store = CheckpointStore()

        snapshot = store.restore({"lastBlock": 50, "lastTs": 7, "blocks": {"40": True, "51": True}})

        assert snapshot.last_block == 50
        assert snapshot.processed_blocks == {51}
        assert store.is_processed(51)

    def test_restore_rejects_missing_last_block(self, store):
        with pytest.raises(InvalidCheckpoint):
            store.restore({"lastTs": 1})

        assert store.last_block == 100

    def test_restore_refuses_rewind(self, store):
        with pytest.raises(InvalidCheckpoint, match="behind"):
            store.restore({"lastBlock": 99})

        assert store.last_block == 100

    def test_restore_same_block_is_allowed(self, store):
        snapshot = store.restore({"lastBlock": 100, "lastTs": 5})

        assert snapshot.last_ts == 5


# ============================================================
# DEDUP TESTS
# ============================================================

class TestMakeEventId:
    """Tests for make_event_id."""

    def test_transaction_id(self):
        assert make_event_id(EventType.TRANSACTION, "0xa1", "0xh1") == "transaction-0xa1-0xh1"

    def test_operation_id_includes_priority(self):
        first = make_event_id(EventType.OPERATION, "0xa1", "0xh1", 0)
        second = make_event_id(EventType.OPERATION, "0xa1", "0xh1", 1)

        assert first == "operation-0xa1-0xh1-0"
        assert first != second

    def test_accepts_plain_string_type(self):
        assert make_event_id("operation", "0xa1", "0xh1", 2) == "operation-0xa1-0xh1-2"


class TestDedupFilter:
    """Tests for DedupFilter."""

    def test_emits_once(self):
        dedup = DedupFilter()

        assert dedup.should_emit("a")
        dedup.mark_emitted("a", 10)

        assert not dedup.should_emit("a")
        assert "a" in dedup
        assert len(dedup) == 1

    def test_prune_forgets_confirmed_blocks(self):
        dedup = DedupFilter()
        dedup.mark_emitted("a", 10)
        dedup.mark_emitted("b", 11)
        dedup.mark_emitted("c", 12)

        dropped = dedup.prune(11)

        assert dropped == 2
        assert dedup.should_emit("a")
        assert dedup.should_emit("b")
        assert not dedup.should_emit("c")

    def test_clear(self):
        dedup = DedupFilter()
        dedup.mark_emitted("a", 10)

        dedup.clear()

        assert len(dedup) == 0
