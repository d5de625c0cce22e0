"""Leak analysis over a snapshot store."""

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple, Union

from ..core.errors import AnalysisError
from ..heap.store import SnapshotStore
from .heap_graph import HeapGraph, HeapNode

logger = logging.getLogger(__name__)

LeakFilter = Callable[[HeapNode], bool]

MAX_TRACES = 100


class LeakTrace:
    """One retained object and the shortest path keeping it alive."""

    def __init__(self, node_id: int, name: str, node_type: str, self_size: int,
                 path: Sequence[Tuple[str, str]]):
        self.node_id = node_id
        self.name = name
        self.type = node_type
        self.self_size = self_size
        self.path = tuple(path)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "node_id": self.node_id,
            "name": self.name,
            "type": self.type,
            "self_size": self.self_size,
            "retainer_path": [{"edge": edge, "node": node} for edge, node in self.path],
        }

    def __str__(self) -> str:
        hops = "".join(f" --{edge}--> [{node}]" for edge, node in self.path)
        return f"[(root)]{hops} @{self.node_id} ({self.self_size} bytes)"

    def __repr__(self) -> str:
        return f"LeakTrace(node_id={self.node_id}, name={self.name!r})"


class LeakReport:
    """Read-only, ordered collection of leak traces."""

    def __init__(self, traces: Sequence[LeakTrace] = ()):
        self._traces = tuple(traces)

    def __iter__(self) -> Iterator[LeakTrace]:
        return iter(self._traces)

    def __len__(self) -> int:
        return len(self._traces)

    def __bool__(self) -> bool:
        return bool(self._traces)

    def __getitem__(self, index: int) -> LeakTrace:
        return self._traces[index]

    def to_dict(self) -> Dict[str, Any]:
        return {"count": len(self._traces), "leaks": [t.to_dict() for t in self._traces]}

    def __repr__(self) -> str:
        return f"LeakReport({len(self._traces)} leaks)"


class SnapshotStoreReader:
    """Read access to the snapshots of a store, in sequence order."""

    def __init__(self, store: SnapshotStore):
        self.store = store
        self.snapshot_paths: List[Path] = store.snapshots()
        if len(self.snapshot_paths) < 2:
            raise AnalysisError(
                f"Need at least two snapshots in {store.current_dir}, "
                f"found {len(self.snapshot_paths)}"
            )

    @classmethod
    def from_path(cls, store_root: Union[str, Path]) -> "SnapshotStoreReader":
        return cls(SnapshotStore(store_root))

    @property
    def baseline_path(self) -> Path:
        return self.snapshot_paths[0]

    @property
    def final_path(self) -> Path:
        return self.snapshot_paths[-1]


class LeakAnalyzer(ABC):
    """Computes a leak report from the snapshots of a store."""

    @abstractmethod
    def find_leaks(self, reader: SnapshotStoreReader) -> LeakReport:
        raise NotImplementedError


def detached_dom_filter(node: HeapNode) -> bool:
    """Default leak filter: DOM nodes removed from the document but still retained."""
    return node.is_detached


class RetainedObjectAnalyzer(LeakAnalyzer):
    """Reports objects alive in both the first and the last snapshot.

    V8 keeps object ids stable across snapshots of the same heap, so an id
    present in both means the object survived the whole interaction window.
    Among those, objects accepted by ``leak_filter`` and still strongly
    reachable are leaks. Objects only reachable through another reported
    leak are folded into it.
    """

    def __init__(self, leak_filter: Optional[LeakFilter] = None, max_traces: int = MAX_TRACES):
        self.leak_filter = leak_filter or detached_dom_filter
        self.max_traces = max_traces

    def find_leaks(self, reader: SnapshotStoreReader) -> LeakReport:
        baseline = HeapGraph.from_file(reader.baseline_path)
        final = HeapGraph.from_file(reader.final_path)
        logger.debug(f"Baseline {len(baseline)} nodes, final {len(final)} nodes")

        candidates = [node for node in final if node.id in baseline and self.leak_filter(node)]
        candidate_ids = {node.id for node in candidates}

        traces = []
        for node in candidates:
            path = final.retainer_path(node)
            if path is None:
                # Not strongly reachable: the next GC takes it
                continue
            if any(step.id in candidate_ids for _, step in path[:-1]):
                continue
            traces.append(LeakTrace(
                node_id=node.id,
                name=node.name,
                node_type=node.type,
                self_size=node.self_size,
                path=[(edge, step.name) for edge, step in path],
            ))

        traces.sort(key=lambda t: (-t.self_size, t.node_id))
        if len(traces) > self.max_traces:
            logger.warning(f"{len(traces)} leaks found, keeping the {self.max_traces} largest")
            traces = traces[:self.max_traces]
        return LeakReport(traces)


def analyze(store_path: Union[str, Path], analyzer: Optional[LeakAnalyzer] = None) -> LeakReport:
    """Run ``analyzer`` (default RetainedObjectAnalyzer) over the store at ``store_path``."""
    reader = SnapshotStoreReader.from_path(store_path)
    analyzer = analyzer or RetainedObjectAnalyzer()
    logger.info(f"Analyzing {len(reader.snapshot_paths)} snapshots in {reader.store.current_dir}")
    try:
        report = analyzer.find_leaks(reader)
    except AnalysisError:
        raise
    except Exception as e:
        raise AnalysisError(f"Leak analysis failed: {e}") from e
    logger.info(f"Leak analysis found {len(report)} leak(s)")
    return report
