"""
MDGRAPH CORE - The Graph Synchronization Engine

This package provides:
- schemas: Node, Edge, GraphSnapshot and the error hierarchy
- graph_builder: Full-scan snapshot construction
- reference_index: The cached state between filesystem events
- delta: Incremental create/modify/delete handlers
"""
