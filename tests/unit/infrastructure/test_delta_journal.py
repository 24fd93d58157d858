"""
Unit tests for infrastructure/journal.py - Delta Journal
"""
from datetime import datetime, timezone

from core.delta import GraphDelta
from core.schemas import Edge, Node
from infrastructure.config import JournalConfig
from infrastructure.journal import DeltaJournal, EventBuffer
from viz.core import ChangeEmitter


def emit_sample(bus):
    return ChangeEmitter(bus).emit(GraphDelta(
        nodes_removed=["B"],
        nodes_added=[Node.real("B", "/n/B.md", value=1)],
        edges_added=[Edge("B", "C")],
    ))


def test_journal_records_published_events(bus):
    journal = DeltaJournal()
    journal.attach(bus)

    events = emit_sample(bus)

    assert journal.get_recent_events() == events
    assert journal.get_events_since(1) == events[1:]
    assert journal.get_recent_events(1) == events[-1:]


def test_get_by_node_matches_endpoints(bus):
    journal = DeltaJournal()
    journal.attach(bus)
    emit_sample(bus)

    assert len(journal.get_by_node("B")) == 3
    assert [e.payload["type"] for e in journal.get_by_node("C")] == ["edge-added"]
    assert journal.get_by_node("Z") == []


def test_event_buffer_is_bounded(bus):
    buffer = EventBuffer(max_size=2)
    for event in emit_sample(bus):
        buffer.append(event)
    assert len(buffer) == 2
    assert [e.sequence for e in buffer.get_last(5)] == [2, 3]
    assert buffer.get_last(0) == []
    buffer.clear()
    assert len(buffer) == 0


def test_file_journal_round_trip(tmp_path, bus):
    log_dir = tmp_path / "logs"
    journal = DeltaJournal(JournalConfig(enabled=True, log_path=str(log_dir)))
    journal.attach(bus)

    events = emit_sample(bus)
    journal.close()

    today = datetime.now(timezone.utc).strftime("%Y-%m-%d")
    assert (log_dir / f"deltas_{today}.jsonl").exists()

    restored = journal.read_log(today)
    assert [e.sequence for e in restored] == [e.sequence for e in events]
    assert [e.payload for e in restored] == [e.payload for e in events]
    assert restored[0].type == events[0].type


def test_disabled_journal_has_no_file_log(tmp_path):
    journal = DeltaJournal(JournalConfig(enabled=False, log_path=str(tmp_path / "logs")))
    assert journal.read_log("2026-01-01") == []
    assert not (tmp_path / "logs").exists()
