"""
Pytest configuration and shared fixtures for the mdgraph test suite.
"""
import sys
from pathlib import Path

import pytest

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))


@pytest.fixture(autouse=True)
def reset_global_state():
    """Reset the global event bus before each test to ensure isolation."""
    from infrastructure.event_bus import reset_event_bus

    reset_event_bus()
    yield
    reset_event_bus()


@pytest.fixture
def bus():
    """Provide a fresh EventBus instance."""
    from infrastructure.event_bus import EventBus
    return EventBus()


@pytest.fixture
def write_note(tmp_path):
    """
    Write a markdown note below tmp_path.

    Usage:
        path = write_note("A", "links to [[B]]")
        path = write_note("sub/C", "...")
    """
    def _write(name: str, content: str = "") -> Path:
        path = tmp_path / f"{name}.md"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        return path

    return _write


@pytest.fixture
def notes_dir(tmp_path, write_note):
    """
    A small vault:
        A -> B, A -> C(phantom), B -> A
    """
    write_note("A", "See [[B]] and [[C]] #idea")
    write_note("B", "Back to [[A]]")
    return tmp_path


@pytest.fixture
def seeded_index(notes_dir):
    """ReferenceIndex seeded from notes_dir."""
    from core.reference_index import ReferenceIndex
    from infrastructure.document_source import scan_directory

    return ReferenceIndex.from_documents(scan_directory(notes_dir))
