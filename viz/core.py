"""
MDGRAPH VISUALIZATION CORE - The Change Emitter's Wire Model

Bridges the delta engine with the renderer:
- DeltaEvent: One discrete change (node-added, node-removed, node-updated,
  edge-added, edge-removed), tagged on the "type" field
- iter_delta_events: Flattens a GraphDelta in the fixed emission order
- ChangeEmitter: Publishes those events on the event bus with sequence numbers
- serialize_to_arrow: Snapshot as Arrow IPC for large-graph renderers

Emission Order (non-negotiable):
    node-removed -> edge-removed -> node-added -> node-updated -> edge-added

A consumer applying events in this order never sees a duplicate node id
(a phantom is removed before its real node is added) or an edge whose
endpoint is missing (edges are added last).
"""
import msgspec
import threading
import time
import io
import logging
from typing import Dict, Iterator, List, Optional, Tuple, Union

import polars as pl

from core.schemas import Node, Edge, GraphSnapshot
from core.delta import GraphDelta
from infrastructure.event_bus import EventBus, EventType, GraphEvent, get_event_bus


logger = logging.getLogger("mdgraph.viz")


# =============================================================================
# DELTA EVENTS (tagged union)
# =============================================================================

class NodeAdded(msgspec.Struct, tag="node-added", tag_field="type"):
    """A node was added to the graph."""
    node: Node


class NodeRemoved(msgspec.Struct, tag="node-removed", tag_field="type"):
    """A node was removed from the graph."""
    node_id: str


class NodeUpdated(msgspec.Struct, tag="node-updated", tag_field="type"):
    """A node changed in place. Reserved; the delta engine does not produce it."""
    node: Node


class EdgeAdded(msgspec.Struct, tag="edge-added", tag_field="type"):
    """A reference edge was added."""
    edge: Edge


class EdgeRemoved(msgspec.Struct, tag="edge-removed", tag_field="type"):
    """A reference edge was removed."""
    edge: Edge


DeltaEvent = Union[NodeAdded, NodeRemoved, NodeUpdated, EdgeAdded, EdgeRemoved]

EVENT_TYPES: Dict[type, EventType] = {
    NodeAdded: EventType.NODE_ADDED,
    NodeRemoved: EventType.NODE_REMOVED,
    NodeUpdated: EventType.NODE_UPDATED,
    EdgeAdded: EventType.EDGE_ADDED,
    EdgeRemoved: EventType.EDGE_REMOVED,
}

_event_decoder = msgspec.json.Decoder(type=DeltaEvent)


def decode_delta_event(data: Union[bytes, str]) -> DeltaEvent:
    """Decode one wire event back into its struct."""
    return _event_decoder.decode(data)


def iter_delta_events(delta: GraphDelta) -> Iterator[DeltaEvent]:
    """
    Flatten a delta into discrete events in emission order.

    Within each list the computation order is preserved.
    """
    for node_id in delta.nodes_removed:
        yield NodeRemoved(node_id=node_id)
    for edge in delta.edges_removed:
        yield EdgeRemoved(edge=edge)
    for node in delta.nodes_added:
        yield NodeAdded(node=node)
    for node in delta.nodes_updated:
        yield NodeUpdated(node=node)
    for edge in delta.edges_added:
        yield EdgeAdded(edge=edge)


# =============================================================================
# CHANGE EMITTER
# =============================================================================

class ChangeEmitter:
    """
    Publishes deltas as ordered GraphEvents.

    Usage:
        emitter = ChangeEmitter(bus)
        emitter.emit(delta)   # one GraphEvent per list entry
    """

    def __init__(self, bus: Optional[EventBus] = None, source: str = "watcher"):
        self._bus = bus or get_event_bus()
        self._source = source
        self._sequence = 0
        self._lock = threading.Lock()

    @property
    def sequence(self) -> int:
        """Sequence number of the last stamped event."""
        return self._sequence

    def _next_sequence(self) -> int:
        with self._lock:
            self._sequence += 1
            return self._sequence

    def stamp(self, delta: GraphDelta) -> List[GraphEvent]:
        """
        Turn `delta` into sequenced events without publishing them.

        Callers that commit under the index lock stamp there, so a
        snapshot read under the same lock knows which sequences it covers.
        """
        events: List[GraphEvent] = []
        for change in iter_delta_events(delta):
            events.append(GraphEvent(
                type=EVENT_TYPES[type(change)],
                payload=msgspec.to_builtins(change),
                sequence=self._next_sequence(),
                timestamp=time.time(),
                source=self._source,
            ))
        return events

    def publish(self, events: List[GraphEvent]) -> List[GraphEvent]:
        for event in events:
            self._bus.publish(event)
        if events:
            logger.debug(f"Emitted {len(events)} events (last #{events[-1].sequence})")
        return events

    def emit(self, delta: GraphDelta) -> List[GraphEvent]:
        """
        Publish every change in `delta`.

        Empty deltas are not emitted.

        Returns:
            The published events, in emission order
        """
        if delta.is_empty():
            return []
        return self.publish(self.stamp(delta))


# =============================================================================
# ARROW IPC SERIALIZATION
# =============================================================================

NODE_SCHEMA = {
    "id": pl.Utf8,
    "label": pl.Utf8,
    "value": pl.Int64,
    "group": pl.Utf8,
    "file_path": pl.Utf8,
    "hashtags": pl.List(pl.Utf8),
}

EDGE_SCHEMA = {
    "from": pl.Utf8,
    "to": pl.Utf8,
}


def snapshot_to_frames(snapshot: GraphSnapshot) -> Tuple[pl.DataFrame, pl.DataFrame]:
    """Convert a snapshot into (nodes, edges) polars DataFrames."""
    nodes_df = pl.DataFrame(
        {
            "id": [n.id for n in snapshot.nodes],
            "label": [n.label for n in snapshot.nodes],
            "value": [n.value for n in snapshot.nodes],
            "group": [n.group for n in snapshot.nodes],
            "file_path": [n.file_path for n in snapshot.nodes],
            "hashtags": [n.hashtags for n in snapshot.nodes],
        },
        schema=NODE_SCHEMA,
    )
    edges_df = pl.DataFrame(
        {
            "from": [e.source for e in snapshot.edges],
            "to": [e.target for e in snapshot.edges],
        },
        schema=EDGE_SCHEMA,
    )
    return nodes_df, edges_df


def serialize_to_arrow(snapshot: GraphSnapshot) -> Tuple[bytes, bytes]:
    """
    Serialize a GraphSnapshot to Apache Arrow IPC format.

    Returns:
        Tuple of (nodes_arrow_bytes, edges_arrow_bytes)
    """
    nodes_df, edges_df = snapshot_to_frames(snapshot)

    nodes_buffer = io.BytesIO()
    edges_buffer = io.BytesIO()

    nodes_df.write_ipc(nodes_buffer)
    edges_df.write_ipc(edges_buffer)

    return nodes_buffer.getvalue(), edges_buffer.getvalue()
