"""Tests for conflict resolution policy."""

import pytest
from datetime import datetime, timedelta, timezone

from pocketstore.sync.resolver import (
    Action,
    PointerSnapshot,
    local_dominates,
    remote_dominates,
    resolve,
)

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def snapshot(hash_char: str, clock: int, minutes: int = 0, ancestors=()) -> PointerSnapshot:
    return PointerSnapshot(
        id="project_aaaaaaaaaaaa",
        hash=hash_char * 64,
        logical_clock=clock,
        last_modified=NOW + timedelta(minutes=minutes),
        ancestors=tuple(a * 64 for a in ancestors),
    )


class TestResolve:
    """Tests for the recommendation."""

    def test_remote_only_imports(self):
        """Test that a remote-only pointer is imported."""
        rec = resolve(None, snapshot("a", 1))
        assert rec.action is Action.IMPORT
        assert rec.keep == "remote"

    def test_local_only_skips(self):
        """Test that nothing incoming means skip."""
        assert resolve(snapshot("a", 1), None).action is Action.SKIP

    def test_identical_hashes_skip(self):
        """Test that equal content needs no action."""
        assert resolve(snapshot("a", 2), snapshot("a", 3)).action is Action.SKIP

    def test_newer_remote_overwrites(self):
        """Test that a newer remote copy is recommended."""
        rec = resolve(snapshot("a", 2, minutes=0), snapshot("b", 2, minutes=5))
        assert rec.action is Action.OVERWRITE
        assert rec.keep == "remote"
        assert "newer" in rec.reason

    def test_newer_local_skips(self):
        """Test that a newer local copy is kept."""
        rec = resolve(snapshot("a", 2, minutes=5), snapshot("b", 2, minutes=0))
        assert rec.action is Action.SKIP
        assert rec.keep == "local"

    def test_tie_keeps_local(self):
        """Test that equal timestamps keep local."""
        rec = resolve(snapshot("a", 2), snapshot("b", 2))
        assert rec.action is Action.SKIP
        assert rec.keep == "local"

    def test_timestamp_not_clock_decides(self):
        """Test that recommendation ignores clocks."""
        rec = resolve(snapshot("a", 9, minutes=0), snapshot("b", 2, minutes=1))
        assert rec.action is Action.OVERWRITE

    def test_neither_side_raises(self):
        """Test that resolve needs at least one side."""
        with pytest.raises(ValueError):
            resolve(None, None)


class TestDominance:
    """Tests for the causality rule."""

    def test_local_dominates_with_known_remote(self):
        """Test that a remote hash in local history with a lower clock is an ancestor."""
        local = snapshot("b", 3)
        remote = snapshot("a", 1)
        assert local_dominates(local, remote, {"a" * 64, "b" * 64})

    def test_local_does_not_dominate_unknown_remote(self):
        """Test that an unseen remote hash is not trusted."""
        assert not local_dominates(snapshot("b", 3), snapshot("c", 1), {"a" * 64})

    def test_local_does_not_dominate_equal_clock(self):
        """Test that equal clocks never dominate."""
        assert not local_dominates(snapshot("b", 2), snapshot("a", 2), {"a" * 64})

    def test_remote_dominates_with_ancestry(self):
        """Test that a remote record listing the local hash dominates."""
        assert remote_dominates(snapshot("a", 1), snapshot("b", 2, ancestors=("a",)))

    def test_remote_does_not_dominate_without_ancestry(self):
        """Test that concurrent remote edits are not trusted."""
        assert not remote_dominates(snapshot("c", 2), snapshot("b", 3, ancestors=("a",)))

    def test_local_dominates_last_synced_remote(self):
        """Test that a remote still at the last synced hash is an ancestor."""
        assert local_dominates(snapshot("b", 14), snapshot("a", 2), set(), synced_hash="a" * 64)
        assert not local_dominates(snapshot("b", 14), snapshot("c", 2), set(), synced_hash="a" * 64)

    def test_remote_dominates_unchanged_local(self):
        """Test that a local copy untouched since the last sync is an ancestor."""
        assert remote_dominates(snapshot("a", 2), snapshot("b", 14), synced_hash="a" * 64)
        assert not remote_dominates(snapshot("c", 2), snapshot("b", 14), synced_hash="a" * 64)

    def test_synced_hash_needs_clock_order(self):
        """Test that the synced hash never overrides the clock comparison."""
        assert not remote_dominates(snapshot("a", 3), snapshot("b", 3), synced_hash="a" * 64)
        assert not local_dominates(snapshot("b", 3), snapshot("a", 3), set(), synced_hash="a" * 64)

    def test_to_dict(self):
        """Test serialization of a snapshot."""
        d = snapshot("a", 4).to_dict()
        assert d["logical_clock"] == 4
        assert d["last_modified"] == NOW.isoformat()
