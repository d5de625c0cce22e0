"""Heap snapshot capture and storage."""

from .gc import force_gc
from .snapshot import HeapSnapshotCapturer, SnapshotChunkBuffer, capture_heap_snapshot
from .store import SnapshotStore

__all__ = ["force_gc", "HeapSnapshotCapturer", "SnapshotChunkBuffer",
           "capture_heap_snapshot", "SnapshotStore"]
