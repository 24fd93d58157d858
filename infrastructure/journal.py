"""
MDGRAPH DELTA JOURNAL - Record of Emitted Graph Events

Keeps every event the change emitter publishes so a session can be
inspected after the fact.

Architecture:
- EventBuffer: In-memory ring buffer for recent events (always on)
- FileJournal: Newline-delimited JSON, one file per UTC day (optional)
- DeltaJournal: Subscribes to the event bus and feeds both

Usage:
    journal = DeltaJournal(JournalConfig(enabled=True, log_path="./logs"))
    journal.attach(get_event_bus())

    for event in journal.get_by_node("idea"):
        print(event.sequence, event.type)
"""
import msgspec
from typing import Optional, List
from datetime import datetime, timezone
from pathlib import Path
from collections import deque
import threading
import logging
import io

from infrastructure.config import JournalConfig
from infrastructure.event_bus import EventBus, GraphEvent


logger = logging.getLogger("mdgraph.journal")


# =============================================================================
# EVENT BUFFER
# =============================================================================

class EventBuffer:
    """
    Thread-safe ring buffer for recent graph events.

    O(1) append, O(n) queries.
    """

    def __init__(self, max_size: int = 10000):
        self._buffer: deque[GraphEvent] = deque(maxlen=max_size)
        self._lock = threading.RLock()

    def append(self, event: GraphEvent) -> None:
        with self._lock:
            self._buffer.append(event)

    def get_since(self, sequence: int) -> List[GraphEvent]:
        """Get all events with a sequence number above `sequence`."""
        with self._lock:
            return [e for e in self._buffer if e.sequence > sequence]

    def get_last(self, n: int) -> List[GraphEvent]:
        with self._lock:
            items = list(self._buffer)
            return items[-n:] if n > 0 else []

    def get_by_node(self, node_id: str) -> List[GraphEvent]:
        """Get all events touching a node, as an endpoint or the node itself."""
        with self._lock:
            return [e for e in self._buffer if _touches(e, node_id)]

    def clear(self) -> None:
        with self._lock:
            self._buffer.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._buffer)


def _touches(event: GraphEvent, node_id: str) -> bool:
    payload = event.payload
    if payload.get("node_id") == node_id:
        return True
    node = payload.get("node")
    if node and node.get("id") == node_id:
        return True
    edge = payload.get("edge")
    return bool(edge) and node_id in (edge.get("from"), edge.get("to"))


# =============================================================================
# FILE JOURNAL
# =============================================================================

class FileJournal:
    """
    File-based event journal.

    Writes events as newline-delimited JSON, rotating daily.
    """

    def __init__(self, log_path: Path):
        self._log_path = log_path
        self._current_file: Optional[io.TextIOWrapper] = None
        self._current_date: Optional[str] = None
        self._lock = threading.Lock()
        self._encoder = msgspec.json.Encoder()

        log_path.mkdir(parents=True, exist_ok=True)

    def write(self, event: GraphEvent) -> None:
        with self._lock:
            self._ensure_file()
            line = self._encoder.encode(event).decode("utf-8") + "\n"
            self._current_file.write(line)
            self._current_file.flush()

    def _ensure_file(self) -> None:
        today = datetime.now(timezone.utc).strftime("%Y-%m-%d")

        if self._current_date != today:
            if self._current_file:
                self._current_file.close()

            filepath = self._log_path / f"deltas_{today}.jsonl"
            self._current_file = open(filepath, "a", encoding="utf-8")
            self._current_date = today

    def close(self) -> None:
        with self._lock:
            if self._current_file:
                self._current_file.close()
                self._current_file = None

    def read_log(self, date: str) -> List[GraphEvent]:
        """Read events from a specific date's journal (YYYY-MM-DD)."""
        filepath = self._log_path / f"deltas_{date}.jsonl"

        if not filepath.exists():
            return []

        events = []
        decoder = msgspec.json.Decoder(type=GraphEvent)

        with open(filepath, "r", encoding="utf-8") as f:
            for line_no, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    events.append(decoder.decode(line))
                except msgspec.DecodeError as e:
                    logger.warning(f"Skipping corrupt journal line {filepath}:{line_no}: {e}")

        return events


# =============================================================================
# DELTA JOURNAL (Main Interface)
# =============================================================================

class DeltaJournal:
    """
    Records every published graph event.

    Thread-safe; the bus calls record() from the watcher thread.
    """

    def __init__(self, config: Optional[JournalConfig] = None):
        self.config = config or JournalConfig()
        self._buffer = EventBuffer(self.config.buffer_size)
        self._file_journal: Optional[FileJournal] = None

        if self.config.enabled:
            self._file_journal = FileJournal(Path(self.config.log_path))

    def attach(self, bus: EventBus) -> None:
        """Subscribe to every event kind on `bus`."""
        bus.subscribe_all(self.record)

    def record(self, event: GraphEvent) -> None:
        self._buffer.append(event)
        if self._file_journal:
            self._file_journal.write(event)

    def get_recent_events(self, n: int = 100) -> List[GraphEvent]:
        return self._buffer.get_last(n)

    def get_events_since(self, sequence: int) -> List[GraphEvent]:
        return self._buffer.get_since(sequence)

    def get_by_node(self, node_id: str) -> List[GraphEvent]:
        return self._buffer.get_by_node(node_id)

    def read_log(self, date: str) -> List[GraphEvent]:
        if not self._file_journal:
            return []
        return self._file_journal.read_log(date)

    def close(self) -> None:
        if self._file_journal:
            self._file_journal.close()
