"""
MDGRAPH SYNC SERVICE - Wiring for the Live Graph

Ties the pieces together for one configured notes directory:
    scan -> seed ReferenceIndex -> GraphWatcher -> ChangeEmitter -> EventBus

Full Rescans:
    rescan(path) always builds a fresh snapshot from disk without touching
    the watcher. When `path` is the watched root, the same scan also
    re-seeds the index under its lock, so the live deltas that follow are
    computed against what the caller was just shown. Rescans of any other
    directory leave the live index alone.
"""
import logging
from pathlib import Path
from typing import Optional, Tuple, Union

from core.schemas import GraphSnapshot
from core.graph_builder import build_graph
from infrastructure.config import AppState
from infrastructure.document_source import scan_directory
from infrastructure.event_bus import EventBus, get_event_bus
from infrastructure.journal import DeltaJournal
from infrastructure.watcher import GraphWatcher
from viz.core import ChangeEmitter


logger = logging.getLogger("mdgraph.sync")

PathLike = Union[str, Path]


class GraphSyncService:
    """
    Owns the watcher and emitter for the configured root directory.

    Usage:
        service = GraphSyncService(AppState(config))
        service.start()          # seed + watch
        snapshot = service.snapshot()
        service.stop()
    """

    def __init__(
        self,
        state: AppState,
        bus: Optional[EventBus] = None,
        watch: bool = True,
    ):
        self.state = state
        self.bus = bus or get_event_bus()
        self.emitter = ChangeEmitter(self.bus)
        self.journal = DeltaJournal(state.get_config().journal)
        self.journal.attach(self.bus)
        self._watch = watch
        self._watcher: Optional[GraphWatcher] = None

    @property
    def root(self) -> Optional[Path]:
        root_dir = self.state.get_config().root_dir
        return Path(root_dir) if root_dir else None

    @property
    def watcher(self) -> Optional[GraphWatcher]:
        return self._watcher

    def seed(self) -> None:
        """
        Seed the index from a full scan of the root.

        Raises:
            DocumentAccessError: If the root cannot be scanned
        """
        if self.root is None:
            logger.info("No root_dir configured, index left empty")
            return
        self.state.index.reset(scan_directory(self.root))

    def start(self) -> None:
        """Seed the index and start watching the root, if configured."""
        if self.root is None:
            logger.info("No root_dir configured, watcher not started")
            return

        self.seed()

        if not self._watch:
            return

        watcher_config = self.state.get_config().watcher
        self._watcher = GraphWatcher(
            self.root,
            self.state.index,
            self.emitter,
            debounce_ms=watcher_config.debounce_ms,
            queue_size=watcher_config.queue_size,
        )
        self._watcher.start()

    def stop(self) -> None:
        if self._watcher is not None:
            self._watcher.stop()
            self._watcher = None
        self.journal.close()

    def snapshot(self) -> GraphSnapshot:
        """Snapshot of the live index."""
        return self.state.index.to_snapshot()

    def snapshot_with_sequence(self) -> Tuple[GraphSnapshot, int]:
        """
        Snapshot plus the last event sequence it already reflects.

        Watcher commits stamp their events under the index lock, so any
        event with a higher sequence is not yet part of the snapshot.
        """
        with self.state.index.locked():
            return self.state.index.to_snapshot(), self.emitter.sequence

    def rescan(self, path: Optional[PathLike] = None) -> GraphSnapshot:
        """
        Build a snapshot from disk.

        Args:
            path: Directory to scan (default: configured root)

        Raises:
            DocumentAccessError: If the directory cannot be scanned
            ValueError: If no path is given and no root is configured
        """
        if path is None:
            if self.root is None:
                raise ValueError("Root directory not configured")
            path = self.root

        documents = scan_directory(path)
        snapshot = build_graph(documents)

        if self.root is not None and Path(path).resolve() == self.root.resolve():
            with self.state.index.locked():
                self.state.index.reset(documents)
            logger.info("Rescan of watched root re-seeded the live index")

        return snapshot
