"""
Unit tests for viz/core.py - The Change Emitter's Wire Model

Tests:
- Emission order: node-removed, edge-removed, node-added, node-updated, edge-added
- Tagged wire format on the "type" field
- Empty deltas are not emitted
- Sequence numbers are monotonic across deltas
- Arrow IPC serialization of snapshots
"""
import io

import msgspec
import polars as pl

from core.delta import GraphDelta
from core.schemas import Edge, GraphSnapshot, Node
from infrastructure.event_bus import EventType
from viz.core import (
    ChangeEmitter,
    EdgeAdded,
    NodeAdded,
    NodeRemoved,
    NodeUpdated,
    decode_delta_event,
    iter_delta_events,
    serialize_to_arrow,
)


def full_delta() -> GraphDelta:
    return GraphDelta(
        nodes_added=[Node.real("B", "/n/B.md", value=1)],
        nodes_removed=["B"],
        nodes_updated=[Node.real("A", "/n/A.md")],
        edges_added=[Edge("B", "A")],
        edges_removed=[Edge("B", "C")],
    )


# =============================================================================
# EMISSION ORDER
# =============================================================================

def test_iter_delta_events_order():
    kinds = [type(e).__name__ for e in iter_delta_events(full_delta())]
    assert kinds == ["NodeRemoved", "EdgeRemoved", "NodeAdded", "NodeUpdated", "EdgeAdded"]


def test_emit_publishes_in_order(bus):
    received = []
    bus.subscribe_all(received.append)

    events = ChangeEmitter(bus).emit(full_delta())

    assert [e.type for e in received] == [
        EventType.NODE_REMOVED,
        EventType.EDGE_REMOVED,
        EventType.NODE_ADDED,
        EventType.NODE_UPDATED,
        EventType.EDGE_ADDED,
    ]
    assert events == received


def test_phantom_removed_before_real_added(bus):
    """A consumer never sees the same id twice when a phantom becomes real."""
    received = []
    bus.subscribe_all(received.append)

    ChangeEmitter(bus).emit(GraphDelta(
        nodes_added=[Node.real("B", "/n/B.md", value=1)],
        nodes_removed=["B"],
    ))

    live = set()
    for event in received:
        if event.type is EventType.NODE_REMOVED:
            live.discard(event.payload["node_id"])
        elif event.type is EventType.NODE_ADDED:
            assert event.payload["node"]["id"] not in live
            live.add(event.payload["node"]["id"])
    assert live == {"B"}


def test_empty_delta_not_emitted(bus):
    received = []
    bus.subscribe_all(received.append)
    emitter = ChangeEmitter(bus)

    assert emitter.emit(GraphDelta()) == []
    assert received == []
    assert emitter.sequence == 0


def test_sequence_monotonic_across_deltas(bus):
    emitter = ChangeEmitter(bus, source="test")
    first = emitter.emit(GraphDelta(nodes_removed=["X"]))
    second = emitter.emit(GraphDelta(edges_added=[Edge("A", "B")], nodes_removed=["Y"]))

    sequences = [e.sequence for e in first + second]
    assert sequences == [1, 2, 3]
    assert emitter.sequence == 3
    assert all(e.source == "test" for e in first + second)


def test_stamp_reserves_sequences_without_publishing(bus):
    received = []
    bus.subscribe_all(received.append)
    emitter = ChangeEmitter(bus)

    stamped = emitter.stamp(GraphDelta(nodes_removed=["X"], edges_added=[Edge("A", "B")]))
    assert [e.sequence for e in stamped] == [1, 2]
    assert emitter.sequence == 2
    assert received == []

    assert emitter.publish(stamped) == stamped
    assert received == stamped
    assert emitter.stamp(GraphDelta()) == []


# =============================================================================
# WIRE FORMAT
# =============================================================================

def test_tagged_payloads(bus):
    events = ChangeEmitter(bus).emit(GraphDelta(
        nodes_removed=["C"],
        edges_added=[Edge("A", "B")],
        nodes_added=[Node.phantom("B", value=1)],
    ))

    assert events[0].payload == {"type": "node-removed", "node_id": "C"}
    assert events[1].payload == {
        "type": "node-added",
        "node": {
            "id": "B",
            "label": "B",
            "value": 1,
            "group": "phantom",
            "file_path": "",
            "hashtags": [],
        },
    }
    assert events[2].payload == {"type": "edge-added", "edge": {"from": "A", "to": "B"}}


def test_decode_delta_event():
    raw = msgspec.json.encode(EdgeAdded(edge=Edge("A", "B")))
    assert raw == b'{"type":"edge-added","edge":{"from":"A","to":"B"}}'
    assert decode_delta_event(raw) == EdgeAdded(edge=Edge("A", "B"))

    assert decode_delta_event('{"type":"node-removed","node_id":"Q"}') == NodeRemoved(node_id="Q")


def test_node_updated_is_decodable():
    raw = msgspec.json.encode(NodeUpdated(node=Node.real("A", "/n/A.md")))
    event = decode_delta_event(raw)
    assert isinstance(event, NodeUpdated)
    assert not isinstance(event, NodeAdded)


# =============================================================================
# ARROW IPC
# =============================================================================

def test_serialize_to_arrow():
    snapshot = GraphSnapshot(
        nodes=[Node.real("A", "/n/A.md", tags=["x"]), Node.phantom("B", value=1)],
        edges=[Edge("A", "B")],
    )

    nodes_ipc, edges_ipc = serialize_to_arrow(snapshot)
    nodes_df = pl.read_ipc(io.BytesIO(nodes_ipc))
    edges_df = pl.read_ipc(io.BytesIO(edges_ipc))

    assert nodes_df["id"].to_list() == ["A", "B"]
    assert nodes_df["group"].to_list() == [None, "phantom"]
    assert nodes_df["hashtags"].to_list() == [["x"], []]
    assert edges_df.columns == ["from", "to"]
    assert edges_df.row(0) == ("A", "B")


def test_serialize_empty_snapshot():
    nodes_ipc, edges_ipc = serialize_to_arrow(GraphSnapshot())
    assert pl.read_ipc(io.BytesIO(nodes_ipc)).height == 0
    assert pl.read_ipc(io.BytesIO(edges_ipc)).height == 0
