"""Shared fixtures: a scriptable CDP connector and a heap snapshot factory."""

import json

import pytest

from leakfairy.core.connector import ChromeConnector
from leakfairy.core.errors import CommandError


CHUNK_EVENT = "HeapProfiler.addHeapSnapshotChunk"
PROGRESS_EVENT = "HeapProfiler.reportHeapSnapshotProgress"


class FakeConnector(ChromeConnector):
    """ChromeConnector whose commands are answered in-process.

    ``takeHeapSnapshot`` emits the configured chunks as events for the
    calling session (plus noise for another session) before it resolves,
    the way Chrome streams them ahead of the command response.
    """

    def __init__(self, chunks=(), fail_on=None, error_code=-32000):
        super().__init__()
        self.chunks = list(chunks)
        self.fail_on = fail_on
        self.error_code = error_code
        self.calls = []
        self.next_session = 1

    def methods(self):
        return [method for method, _, _, _ in self.calls]

    async def call(self, method, params=None, session_id=None, timeout=None):
        self.calls.append((method, params, session_id, timeout))
        if method == self.fail_on:
            raise CommandError(method, "injected failure", code=self.error_code)
        if method == "Target.attachToTarget":
            session = f"session-{self.next_session}"
            self.next_session += 1
            return {"sessionId": session}
        if method == "HeapProfiler.takeHeapSnapshot":
            total = len(self.chunks)
            for done, chunk in enumerate(self.chunks, start=1):
                await self._dispatch_event(CHUNK_EVENT, {"sessionId": session_id, "chunk": chunk})
                await self._dispatch_event(CHUNK_EVENT, {"sessionId": "other", "chunk": "NOISE"})
                await self._dispatch_event(PROGRESS_EVENT, {
                    "sessionId": session_id, "done": done, "total": total})
        return {}


@pytest.fixture
def fake_connector():
    return FakeConnector


async def no_sleep(seconds):
    return None


NODE_FIELDS = ["type", "name", "id", "self_size", "edge_count", "trace_node_id", "detachedness"]
NODE_TYPES = ["hidden", "array", "string", "object", "code", "closure", "regexp", "number",
              "native", "synthetic", "concatenated string", "sliced string", "symbol", "bigint"]
EDGE_FIELDS = ["type", "name_or_index", "to_node"]
EDGE_TYPES = ["context", "element", "property", "internal", "hidden", "shortcut", "weak"]


def make_snapshot(nodes, edges):
    """Build a V8 heap snapshot document.

    nodes: list of (type, name, id, self_size, detachedness), index 0 is the root
    edges: list of (from_index, edge_type, name_or_index, to_index)
    """
    strings = []

    def string_index(value):
        if value not in strings:
            strings.append(value)
        return strings.index(value)

    flat_nodes = []
    flat_edges = []
    for index, (node_type, name, node_id, self_size, detachedness) in enumerate(nodes):
        own_edges = [edge for edge in edges if edge[0] == index]
        flat_nodes += [NODE_TYPES.index(node_type), string_index(name), node_id, self_size,
                       len(own_edges), 0, detachedness]
        for _, edge_type, name_or_index, to_index in own_edges:
            if edge_type not in ("element", "hidden"):
                name_or_index = string_index(name_or_index)
            flat_edges += [EDGE_TYPES.index(edge_type), name_or_index,
                           to_index * len(NODE_FIELDS)]

    return {
        "snapshot": {
            "meta": {
                "node_fields": NODE_FIELDS,
                "node_types": [NODE_TYPES, "string", "number", "number", "number", "number",
                               "number"],
                "edge_fields": EDGE_FIELDS,
                "edge_types": [EDGE_TYPES, "string_or_number", "node"],
            },
            "node_count": len(nodes),
            "edge_count": len(edges),
        },
        "nodes": flat_nodes,
        "edges": flat_edges,
        "strings": strings,
    }


def leaky_view_graph(include_listener=True, include_fresh=False):
    """A page whose listener array still holds a detached div with a detached child."""
    nodes = [
        ("synthetic", "", 1, 0, 0),                              # 0 root
        ("object", "Window / http://localhost", 3, 64, 1),       # 1
        ("native", "HTMLDocument", 5, 128, 1),                   # 2
        ("object", "Array", 7, 32, 0),                           # 3
        ("native", "Detached HTMLDivElement", 9, 200, 2),        # 4
        ("native", "Detached HTMLSpanElement", 11, 80, 2),       # 5
        ("native", "Detached HTMLParagraphElement", 13, 90, 2),  # 6 weakly held only
    ]
    edges = [
        (0, "element", 1, 1),
        (1, "property", "document", 2),
        (1, "property", "listeners", 3),
        (4, "property", "firstChild", 5),
        (1, "weak", "cache", 6),
    ]
    if include_listener:
        edges.append((3, "element", 0, 4))
    if include_fresh:
        nodes.append(("native", "Detached HTMLLIElement", 15, 40, 2))  # 7
        edges.append((1, "property", "fresh", 7))
    return nodes, edges


@pytest.fixture
def write_snapshot():
    def write(path, nodes, edges):
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(make_snapshot(nodes, edges)), encoding="utf-8")
        return path
    return write


@pytest.fixture
def snapshot_factory():
    return make_snapshot


@pytest.fixture
def leaky_view():
    return leaky_view_graph


@pytest.fixture
def instant_sleep():
    return no_sleep
