"""
MDGRAPH SCHEMAS - The Shape of the Graph

This module defines the value types that flow from the graph engine to
the visualization layer:
- NodeKind: Real (backed by a document) or Phantom (referenced only)
- Node: A document or a referenced-but-missing document
- Edge: A directed wiki-link reference, one per occurrence
- GraphSnapshot: The full materialized graph for one-shot views
- Exception hierarchy shared by the scanner, the index and the delta engine

Design Principles:
1. STRICT TYPING: msgspec.Struct, no silent coercion
2. KW_ONLY: Enforce keyword arguments to prevent positional mix-ups
3. MULTIGRAPH: Edges are not deduplicated; a node's value counts every
   incoming reference occurrence

Wire Format (consumer-facing, vis-network style):
    {"id": "note", "label": "note", "value": 2, "group": null,
     "file_path": "/notes/note.md", "hashtags": ["idea"]}
    {"from": "note", "to": "other"}
"""
import msgspec
from typing import Optional, Dict, List, Any
from enum import Enum


PHANTOM_GROUP = "phantom"


# =============================================================================
# CUSTOM EXCEPTIONS
# =============================================================================

class GraphSyncError(Exception):
    """Base exception for graph synchronization."""
    pass


class DocumentAccessError(GraphSyncError):
    """Raised when a scan root is missing, unreadable, or not a directory."""
    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"{reason}: {path}")


class DocumentIdError(GraphSyncError):
    """Raised when no document id can be derived from a path."""
    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Invalid file name: {path!r}")


class DocumentReadError(GraphSyncError):
    """Raised when a document's content cannot be read or decoded."""
    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Error reading file {path!r}: {reason}")


class DocumentExistsError(GraphSyncError):
    """Raised when creating a document whose file is already on disk."""
    def __init__(self, path: str):
        self.path = path
        super().__init__(f"File already exists: {path}")


class TemplateError(GraphSyncError):
    """Raised when a note template is missing or cannot be read."""
    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Failed to load template from {path!r}: {reason}")


# =============================================================================
# GRAPH MODEL
# =============================================================================

class NodeKind(str, Enum):
    """Whether a node is backed by a document."""
    REAL = "real"
    PHANTOM = "phantom"


class Node(msgspec.Struct, kw_only=True):
    """
    A node in the reference graph.

    `value` is the number of incoming reference edges, counted with
    multiplicity. Phantom nodes have no file path and no hashtags.
    """
    id: str
    label: str
    value: int = 0
    group: Optional[str] = None
    file_path: str = ""
    hashtags: List[str] = msgspec.field(default_factory=list)

    @property
    def kind(self) -> NodeKind:
        if self.group == PHANTOM_GROUP:
            return NodeKind.PHANTOM
        return NodeKind.REAL

    @property
    def is_phantom(self) -> bool:
        return self.kind is NodeKind.PHANTOM

    @property
    def location(self) -> Optional[str]:
        return self.file_path or None

    @property
    def tags(self) -> List[str]:
        return self.hashtags

    @classmethod
    def real(
        cls,
        id: str,
        path: str,
        value: int = 0,
        tags: Optional[List[str]] = None,
    ) -> "Node":
        """Create a node backed by the document at `path`."""
        return cls(
            id=id,
            label=id,
            value=value,
            group=None,
            file_path=str(path),
            hashtags=list(tags or []),
        )

    @classmethod
    def phantom(cls, id: str, value: int = 0) -> "Node":
        """Create a placeholder node for a referenced but missing document."""
        return cls(
            id=id,
            label=id,
            value=value,
            group=PHANTOM_GROUP,
            file_path="",
            hashtags=[],
        )


class Edge(msgspec.Struct, frozen=True, rename={"source": "from", "target": "to"}):
    """
    A directed reference from one document to another.

    Serialized as {"from": ..., "to": ...}. Frozen so edge multisets can be
    compared with collections.Counter.
    """
    source: str
    target: str


class GraphSnapshot(msgspec.Struct, kw_only=True):
    """
    Complete graph state for a one-shot full view.

    Every edge endpoint appears as exactly one node.
    """
    nodes: List[Node] = msgspec.field(default_factory=list)
    edges: List[Edge] = msgspec.field(default_factory=list)

    @property
    def node_count(self) -> int:
        return len(self.nodes)

    @property
    def edge_count(self) -> int:
        return len(self.edges)

    def get_node(self, node_id: str) -> Optional[Node]:
        """Find a node by id, or None."""
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "nodes": [msgspec.to_builtins(n) for n in self.nodes],
            "edges": [msgspec.to_builtins(e) for e in self.edges],
        }


# =============================================================================
# SERIALIZATION HELPERS
# =============================================================================

_encoder = msgspec.json.Encoder()
_snapshot_decoder = msgspec.json.Decoder(type=GraphSnapshot)


def serialize_snapshot(snapshot: GraphSnapshot) -> bytes:
    """Encode a snapshot as JSON bytes."""
    return _encoder.encode(snapshot)


def deserialize_snapshot(data: bytes) -> GraphSnapshot:
    """Decode a snapshot from JSON bytes."""
    return _snapshot_decoder.decode(data)
