"""
MDGRAPH WATCHER - Real-Time Graph Synchronization

Monitors the notes directory and turns filesystem changes into graph deltas.

Event Flow:
    1. Watchdog observer thread reports a change for a .md path
    2. PathDebouncer coalesces repeats for that path within 300ms
    3. The debounce thread moves quiet paths into a bounded queue
    4. One worker thread drains the queue in order: classify the path,
       run the delta handler under the index lock, emit the delta

Classification (at processing time):
    exists on disk + known id   -> modified
    exists on disk + unknown id -> created
    gone from disk              -> deleted

Renames arrive as a delete of the old path plus a create of the new one.

Thread Safety:
    - Watchdog and debounce threads only touch the debouncer (own lock)
    - The worker is the only thread running delta handlers; it holds
      ReferenceIndex.locked() for each event
    - A None in the queue closes the channel and ends the worker
"""
import logging
import os
import queue
import threading
import time
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional, Union

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from core.schemas import GraphSyncError
from core.reference_index import ReferenceIndex
from core.delta import (
    GraphDelta,
    handle_file_created,
    handle_file_deleted,
    handle_file_modified,
)
from infrastructure.document_source import is_document_path
from viz.core import ChangeEmitter


logger = logging.getLogger("mdgraph.watcher")

DEFAULT_DEBOUNCE_MS = 300
DEFAULT_QUEUE_SIZE = 1024

PathLike = Union[str, Path]


class ChangeKind(str, Enum):
    """Classification of one debounced filesystem change."""
    CREATED = "created"
    MODIFIED = "modified"
    DELETED = "deleted"


def classify(path: PathLike, index: ReferenceIndex) -> ChangeKind:
    """Classify a change by what is on disk now and what the index knows."""
    if Path(path).is_file():
        if index.has_document_path(path):
            return ChangeKind.MODIFIED
        return ChangeKind.CREATED
    return ChangeKind.DELETED


def apply_change(path: PathLike, index: ReferenceIndex) -> GraphDelta:
    """
    Classify and handle one change. Caller holds the index lock.

    Raises:
        GraphSyncError: On id derivation or read failure; index unchanged
    """
    kind = classify(path, index)
    logger.debug(f"Processing {kind.value}: {path}")

    if kind is ChangeKind.MODIFIED:
        return handle_file_modified(path, index)
    if kind is ChangeKind.CREATED:
        return handle_file_created(path, index)
    return handle_file_deleted(path, index)


# =============================================================================
# DEBOUNCER
# =============================================================================

class PathDebouncer:
    """
    Per-path quiet-window debouncer.

    Every push moves that path's deadline to now + window. A path is ready
    once its deadline passes; ready paths come out in first-seen order.
    """

    def __init__(
        self,
        debounce_ms: int = DEFAULT_DEBOUNCE_MS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.window = debounce_ms / 1000
        self._clock = clock
        self._deadlines: Dict[str, float] = {}
        self._lock = threading.Lock()

    def push(self, path: str) -> None:
        with self._lock:
            self._deadlines[path] = self._clock() + self.window

    def pop_ready(self, now: Optional[float] = None) -> List[str]:
        """Remove and return every path whose window has elapsed."""
        if now is None:
            now = self._clock()
        with self._lock:
            ready = [p for p, deadline in self._deadlines.items() if deadline <= now]
            for path in ready:
                del self._deadlines[path]
        return ready

    def next_deadline(self) -> Optional[float]:
        with self._lock:
            return min(self._deadlines.values(), default=None)

    def flush_all(self) -> List[str]:
        """Remove and return every pending path regardless of deadline."""
        with self._lock:
            pending = list(self._deadlines)
            self._deadlines.clear()
        return pending

    def __len__(self) -> int:
        with self._lock:
            return len(self._deadlines)


# =============================================================================
# WATCHDOG HANDLER
# =============================================================================

class DocumentEventHandler(FileSystemEventHandler):
    """Forwards markdown file events to the watcher; ignores directories."""

    def __init__(self, watcher: "GraphWatcher"):
        super().__init__()
        self.watcher = watcher

    def on_created(self, event: FileSystemEvent):
        if not event.is_directory:
            self.watcher.notify(os.fsdecode(event.src_path))

    def on_modified(self, event: FileSystemEvent):
        if not event.is_directory:
            self.watcher.notify(os.fsdecode(event.src_path))

    def on_deleted(self, event: FileSystemEvent):
        if not event.is_directory:
            self.watcher.notify(os.fsdecode(event.src_path))

    def on_moved(self, event: FileSystemEvent):
        if event.is_directory:
            return
        self.watcher.notify(os.fsdecode(event.src_path))
        self.watcher.notify(os.fsdecode(event.dest_path))


# =============================================================================
# GRAPH WATCHER
# =============================================================================

class GraphWatcher:
    """
    Keeps a ReferenceIndex in sync with a directory and emits deltas.

    Usage:
        index = ReferenceIndex.from_documents(scan_directory(root))
        watcher = GraphWatcher(root, index, ChangeEmitter(bus))
        watcher.start()
        ...
        watcher.stop()
    """

    def __init__(
        self,
        root: PathLike,
        index: ReferenceIndex,
        emitter: Optional[ChangeEmitter] = None,
        debounce_ms: int = DEFAULT_DEBOUNCE_MS,
        queue_size: int = DEFAULT_QUEUE_SIZE,
        observer_factory: Optional[Callable[[], Observer]] = Observer,
    ):
        """
        Args:
            root: Directory to watch recursively
            index: Shared reference index (seeded by a full scan)
            emitter: Where non-empty deltas go (default: global event bus)
            debounce_ms: Per-path quiet window
            queue_size: Bound of the channel between debouncer and worker
            observer_factory: Watchdog observer class; None disables
                filesystem observation (paths are fed through notify())
        """
        self.root = Path(root)
        self.index = index
        self.emitter = emitter or ChangeEmitter()
        self._debouncer = PathDebouncer(debounce_ms)
        self._queue: "queue.Queue[Optional[str]]" = queue.Queue(maxsize=queue_size)
        self._observer_factory = observer_factory
        self._observer: Optional[Observer] = None
        self._wakeup = threading.Condition()
        self._debounce_thread: Optional[threading.Thread] = None
        self._worker_thread: Optional[threading.Thread] = None
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self) -> None:
        """Start observer, debounce and worker threads."""
        if self._running:
            logger.warning("Graph watcher already running")
            return

        self._running = True

        self._worker_thread = threading.Thread(
            target=self._worker_loop, name="mdgraph-watch-worker", daemon=True
        )
        self._worker_thread.start()

        self._debounce_thread = threading.Thread(
            target=self._debounce_loop, name="mdgraph-debounce", daemon=True
        )
        self._debounce_thread.start()

        if self._observer_factory is not None:
            self._observer = self._observer_factory()
            self._observer.schedule(DocumentEventHandler(self), str(self.root), recursive=True)
            self._observer.start()

        logger.info(f"Started watching: {self.root}")

    def stop(self, timeout: float = 5.0) -> None:
        """
        Stop observing, hand pending paths to the worker, close the channel
        and wait for the worker to drain it.
        """
        if not self._running:
            return

        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout)
            self._observer = None

        with self._wakeup:
            self._running = False
            self._wakeup.notify_all()
        if self._debounce_thread is not None:
            self._debounce_thread.join(timeout)

        for path in self._debouncer.flush_all():
            self._queue.put(path)
        self._queue.put(None)

        if self._worker_thread is not None:
            self._worker_thread.join(timeout)

        logger.info("Watcher thread terminated")

    def notify(self, path: PathLike) -> None:
        """Report a raw change for `path`. Non-document paths are dropped."""
        if not is_document_path(path):
            return
        self._debouncer.push(str(path))
        with self._wakeup:
            self._wakeup.notify()

    def _debounce_loop(self) -> None:
        while True:
            with self._wakeup:
                if not self._running:
                    return
                deadline = self._debouncer.next_deadline()
                timeout = None if deadline is None else max(0.0, deadline - time.monotonic())
                self._wakeup.wait(timeout)
                if not self._running:
                    return
            for path in self._debouncer.pop_ready():
                self._queue.put(path)

    def _worker_loop(self) -> None:
        while True:
            path = self._queue.get()
            if path is None:
                break
            try:
                self.process_path(path)
            except Exception as e:
                logger.error(f"Unexpected error processing {path}: {e}", exc_info=True)

    def process_path(self, path: PathLike) -> Optional[GraphDelta]:
        """
        Process one debounced change synchronously.

        Returns:
            The computed delta, or None if the event was skipped
        """
        with self.index.locked():
            try:
                delta = apply_change(path, self.index)
            except GraphSyncError as e:
                logger.error(f"Error processing file {path}: {e}")
                return None
            # Sequences are reserved with the commit; publishing happens outside
            events = self.emitter.stamp(delta)

        self.emitter.publish(events)
        return delta
