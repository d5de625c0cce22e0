"""Leak analysis over heap snapshot stores."""

from .leaks import (LeakAnalyzer, LeakReport, LeakTrace, RetainedObjectAnalyzer,
                    SnapshotStoreReader, analyze)

__all__ = ["LeakAnalyzer", "LeakReport", "LeakTrace", "RetainedObjectAnalyzer",
           "SnapshotStoreReader", "analyze"]
