"""
MDGRAPH VISUALIZATION - The Renderer Interface

This package turns graph deltas and snapshots into what the renderer consumes:
- core: Delta event types, ordered emission, Arrow IPC serialization
"""

from viz.core import (
    NodeAdded,
    NodeRemoved,
    NodeUpdated,
    EdgeAdded,
    EdgeRemoved,
    DeltaEvent,
    ChangeEmitter,
    iter_delta_events,
    decode_delta_event,
    serialize_to_arrow,
)

__all__ = [
    "NodeAdded",
    "NodeRemoved",
    "NodeUpdated",
    "EdgeAdded",
    "EdgeRemoved",
    "DeltaEvent",
    "ChangeEmitter",
    "iter_delta_events",
    "decode_delta_event",
    "serialize_to_arrow",
]
