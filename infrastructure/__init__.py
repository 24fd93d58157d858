"""
MDGRAPH INFRASTRUCTURE - System-Level Modules

This package contains infrastructure components:
- document_source: Recursive markdown discovery and reading
- event_bus: Pub/sub for emitted graph events
- watcher: Debounced filesystem watch pipeline
- config: Layered configuration and shared application state
- journal: Record of emitted graph events
- sync_service: Scan, index, watcher and emitter wired for one root
"""
