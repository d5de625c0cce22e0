"""V8 heap snapshot parsing.

A ``.heapsnapshot`` file is a JSON document with flat integer arrays for
nodes and edges plus a string table. ``snapshot.meta`` names the fields of
each node and edge record; node type and edge type fields are indices into
the type name lists of the meta block. Edges are stored node by node, each
node owning the next ``edge_count`` edge records.
"""

import json
import logging
from collections import deque
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple, Union

from ..core.errors import AnalysisError

logger = logging.getLogger(__name__)

DETACHED = 2
# Edges that do not keep their target alive
NON_RETAINING_EDGE_TYPES = frozenset({"weak"})


class HeapNode:
    """One object of a heap snapshot."""

    __slots__ = ("index", "id", "type", "name", "self_size", "detachedness")

    def __init__(self, index: int, node_id: int, node_type: str, name: str,
                 self_size: int, detachedness: int = 0):
        self.index = index
        self.id = node_id
        self.type = node_type
        self.name = name
        self.self_size = self_size
        self.detachedness = detachedness

    @property
    def is_detached(self) -> bool:
        return self.detachedness == DETACHED or self.name.startswith("Detached ")

    def __repr__(self) -> str:
        return f"HeapNode(id={self.id}, type={self.type!r}, name={self.name!r})"


class HeapEdge:
    """Reference from one node to another."""

    __slots__ = ("type", "name", "from_index", "to_index")

    def __init__(self, edge_type: str, name: str, from_index: int, to_index: int):
        self.type = edge_type
        self.name = name
        self.from_index = from_index
        self.to_index = to_index


class HeapGraph:
    """Object graph of one heap snapshot, root at node index 0."""

    def __init__(self, nodes: List[HeapNode], edges: List[List[HeapEdge]]):
        self.nodes = nodes
        self.edges = edges
        self._by_id: Dict[int, HeapNode] = {node.id: node for node in nodes}
        self._parents: Optional[Dict[int, Tuple[int, HeapEdge]]] = None

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "HeapGraph":
        path = Path(path)
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        except OSError as e:
            raise AnalysisError(f"Cannot read heap snapshot {path}: {e}") from e
        except json.JSONDecodeError as e:
            raise AnalysisError(f"Heap snapshot {path} is not valid JSON: {e}") from e
        logger.debug(f"Parsing heap snapshot {path}")
        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HeapGraph":
        try:
            return cls._parse(data)
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise AnalysisError(f"Malformed heap snapshot: {e!r}") from e

    @classmethod
    def _parse(cls, data: Dict[str, Any]) -> "HeapGraph":
        meta = data["snapshot"]["meta"]
        strings = data["strings"]
        raw_nodes = data["nodes"]
        raw_edges = data["edges"]

        node_fields = meta["node_fields"]
        node_field_count = len(node_fields)
        node_type_ix = node_fields.index("type")
        node_name_ix = node_fields.index("name")
        node_id_ix = node_fields.index("id")
        node_size_ix = node_fields.index("self_size")
        node_edge_count_ix = node_fields.index("edge_count")
        node_detached_ix = node_fields.index("detachedness") if "detachedness" in node_fields else None
        node_type_strings = meta["node_types"][node_type_ix]

        edge_fields = meta["edge_fields"]
        edge_field_count = len(edge_fields)
        edge_type_ix = edge_fields.index("type")
        edge_name_ix = edge_fields.index("name_or_index")
        edge_to_ix = edge_fields.index("to_node")
        edge_type_strings = meta["edge_types"][edge_type_ix]

        if len(raw_nodes) % node_field_count:
            raise ValueError("node array length is not a multiple of the node field count")

        nodes: List[HeapNode] = []
        for offset in range(0, len(raw_nodes), node_field_count):
            nodes.append(HeapNode(
                index=offset // node_field_count,
                node_id=raw_nodes[offset + node_id_ix],
                node_type=node_type_strings[raw_nodes[offset + node_type_ix]],
                name=strings[raw_nodes[offset + node_name_ix]],
                self_size=raw_nodes[offset + node_size_ix],
                detachedness=(raw_nodes[offset + node_detached_ix]
                              if node_detached_ix is not None else 0),
            ))

        edges: List[List[HeapEdge]] = []
        edge_offset = 0
        for node in nodes:
            edge_count = raw_nodes[node.index * node_field_count + node_edge_count_ix]
            node_edges = []
            for _ in range(edge_count):
                edge_type = edge_type_strings[raw_edges[edge_offset + edge_type_ix]]
                name_or_index = raw_edges[edge_offset + edge_name_ix]
                # element and hidden edges carry an index, the others a string table entry
                if edge_type in ("element", "hidden"):
                    name = str(name_or_index)
                else:
                    name = strings[name_or_index]
                # to_node is an offset into the flat node array
                to_index = raw_edges[edge_offset + edge_to_ix] // node_field_count
                node_edges.append(HeapEdge(edge_type, name, node.index, to_index))
                edge_offset += edge_field_count
            edges.append(node_edges)

        if edge_offset != len(raw_edges):
            raise ValueError("edge counts do not match the edge array length")

        return cls(nodes, edges)

    def __len__(self) -> int:
        return len(self.nodes)

    def __iter__(self) -> Iterator[HeapNode]:
        return iter(self.nodes)

    def get(self, node_id: int) -> Optional[HeapNode]:
        return self._by_id.get(node_id)

    def __contains__(self, node_id: int) -> bool:
        return node_id in self._by_id

    def _shortest_path_tree(self) -> Dict[int, Tuple[int, HeapEdge]]:
        """Breadth-first parents over retaining edges, starting at the root."""
        if self._parents is None:
            parents: Dict[int, Tuple[int, HeapEdge]] = {}
            seen = {0}
            queue = deque([0])
            while queue:
                index = queue.popleft()
                for edge in self.edges[index]:
                    if edge.type in NON_RETAINING_EDGE_TYPES or edge.to_index in seen:
                        continue
                    seen.add(edge.to_index)
                    parents[edge.to_index] = (index, edge)
                    queue.append(edge.to_index)
            self._parents = parents
        return self._parents

    def retainer_path(self, node: HeapNode) -> Optional[List[Tuple[str, HeapNode]]]:
        """Shortest chain of retaining edges from the root to ``node``.

        Returns a list of ``(edge name, node)`` steps, or None when ``node``
        is not strongly reachable.
        """
        if node.index == 0:
            return []
        parents = self._shortest_path_tree()
        if node.index not in parents:
            return None
        steps = []
        index = node.index
        while index != 0:
            parent_index, edge = parents[index]
            steps.append((edge.name, self.nodes[index]))
            index = parent_index
        steps.reverse()
        return steps
