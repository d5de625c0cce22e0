"""Tests for the snapshot store layout."""

import pytest

from leakfairy.core.errors import FilesystemError
from leakfairy.heap.store import SnapshotStore


class TestSnapshotStore:

    def test_layout(self, tmp_path):
        store = SnapshotStore(tmp_path)

        assert store.current_dir == tmp_path / "data" / "cur"
        assert store.snapshot_path(1) == tmp_path / "data" / "cur" / "s1.heapsnapshot"
        assert store.snapshot_path(12).name == "s12.heapsnapshot"

    def test_snapshot_index_starts_at_one(self, tmp_path):
        with pytest.raises(ValueError):
            SnapshotStore(tmp_path).snapshot_path(0)

    def test_ensure_is_idempotent(self, tmp_path):
        store = SnapshotStore(tmp_path / "store")

        assert store.ensure() == store.current_dir
        assert store.ensure() == store.current_dir
        assert store.current_dir.is_dir()

    def test_ensure_wraps_os_errors(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("not a directory")

        with pytest.raises(FilesystemError):
            SnapshotStore(blocker).ensure()

    def test_snapshots_sorted_numerically(self, tmp_path):
        store = SnapshotStore(tmp_path)
        store.ensure()
        for name in ("s10.heapsnapshot", "s2.heapsnapshot", "s1.heapsnapshot",
                     ".s3.heapsnapshot.abc.tmp", "notes.txt"):
            (store.current_dir / name).write_text("{}")

        assert [p.name for p in store.snapshots()] == [
            "s1.heapsnapshot", "s2.heapsnapshot", "s10.heapsnapshot"]

    def test_snapshots_of_missing_store(self, tmp_path):
        assert SnapshotStore(tmp_path / "nothing").snapshots() == []

    def test_next_snapshot_path(self, tmp_path):
        store = SnapshotStore(tmp_path)
        assert store.next_snapshot_path() == store.snapshot_path(1)

        store.ensure()
        store.snapshot_path(1).write_text("{}")
        store.snapshot_path(2).write_text("{}")

        assert store.next_snapshot_path() == store.snapshot_path(3)

    def test_reset_clears_stale_snapshots(self, tmp_path):
        store = SnapshotStore(tmp_path)
        store.ensure()
        store.snapshot_path(1).write_text("{}")
        (tmp_path / "keep.txt").write_text("outside the current directory")

        store.reset()

        assert store.current_dir.is_dir()
        assert store.snapshots() == []
        assert (tmp_path / "keep.txt").exists()

    def test_repr(self, tmp_path):
        assert repr(SnapshotStore(tmp_path)) == f"SnapshotStore({str(tmp_path)!r})"
