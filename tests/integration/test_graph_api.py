"""
Integration tests for api/routes.py - HTTP and WebSocket surface

Runs the Starlette app through TestClient (lifespan included) with the
filesystem observer disabled.
"""
import io
import threading
import time

import msgspec
import polars as pl
import pytest
from starlette.testclient import TestClient

from api.routes import create_app
from core.delta import GraphDelta
from core.schemas import Edge, Node
from infrastructure.config import AppConfig, AppState, PreviewerConfig
from infrastructure.watcher import apply_change


@pytest.fixture
def app_state(notes_dir):
    config = AppConfig(root_dir=str(notes_dir), previewer=PreviewerConfig(offset=0))
    return AppState(config)


@pytest.fixture
def app(app_state, bus):
    return create_app(app_state, bus=bus, watch=False)


@pytest.fixture
def client(app):
    with TestClient(app) as client:
        yield client


# =============================================================================
# HTTP ROUTES
# =============================================================================

def test_health_reports_seeded_index(client):
    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert data["documents"] == 2
    assert data["watching"] is False


def test_snapshot(client):
    data = client.get("/api/graph/snapshot").json()

    nodes = {n["id"]: n for n in data["nodes"]}
    assert set(nodes) == {"A", "B", "C"}
    assert nodes["C"]["group"] == "phantom"
    assert nodes["A"]["hashtags"] == ["idea"]
    assert {"from": "A", "to": "B"} in data["edges"]


def test_scan_defaults_to_root(client, notes_dir):
    (notes_dir / "C.md").write_text("[[A]]", encoding="utf-8")

    response = client.post("/api/graph/scan")
    assert response.status_code == 200
    nodes = {n["id"]: n for n in response.json()["nodes"]}
    assert nodes["C"]["group"] is None
    assert nodes["A"]["value"] == 2

    # Rescanning the root re-seeds the live index
    live = client.get("/api/graph/snapshot").json()
    assert {n["id"]: n["group"] for n in live["nodes"]}["C"] is None


def test_scan_other_directory_leaves_live_index(client, tmp_path_factory):
    other = tmp_path_factory.mktemp("other")
    (other / "X.md").write_text("[[Y]]", encoding="utf-8")

    response = client.post("/api/graph/scan", json={"path": str(other)})
    assert response.status_code == 200
    assert {n["id"] for n in response.json()["nodes"]} == {"X", "Y"}

    live = client.get("/api/graph/snapshot").json()
    assert {n["id"] for n in live["nodes"]} == {"A", "B", "C"}


def test_scan_missing_directory_is_400(client, tmp_path):
    response = client.post("/api/graph/scan", json={"path": str(tmp_path / "nope")})
    assert response.status_code == 400
    assert "Path does not exist" in response.json()["error"]


def test_arrow_parts(client):
    nodes = client.get("/api/graph/arrow?part=nodes")
    edges = client.get("/api/graph/arrow?part=edges")
    assert nodes.headers["content-type"] == "application/vnd.apache.arrow.stream"

    nodes_df = pl.read_ipc(io.BytesIO(nodes.content))
    edges_df = pl.read_ipc(io.BytesIO(edges.content))
    assert sorted(nodes_df["id"].to_list()) == ["A", "B", "C"]
    assert edges_df.height == 3

    assert client.get("/api/graph/arrow?part=bogus").status_code == 400


def test_read_note(client, notes_dir):
    response = client.get("/api/notes/B")
    assert response.status_code == 200
    assert response.json()["content"] == "Back to [[A]]"
    assert response.json()["path"] == str(notes_dir / "B.md")


def test_read_note_phantom_is_404(client):
    assert client.get("/api/notes/C").status_code == 404
    assert client.get("/api/notes/nobody").status_code == 404


def test_read_note_applies_previewer_offset(notes_dir, bus):
    (notes_dir / "Long.md").write_text("---\ntitle: x\n---\nbody", encoding="utf-8")
    config = AppConfig(root_dir=str(notes_dir), previewer=PreviewerConfig(offset=3))
    app = create_app(AppState(config), bus=bus, watch=False)

    with TestClient(app) as client:
        assert client.get("/api/notes/Long").json()["content"] == "body"


def test_config_route(client, notes_dir):
    data = client.get("/api/config").json()
    assert data["root_dir"] == str(notes_dir)
    assert data["previewer"] == {"offset": 0}
    assert data["watcher"]["debounce_ms"] == 300


def test_events_route(client, app):
    app.state.service.emitter.emit(GraphDelta(nodes_removed=["C"]))

    data = client.get("/api/graph/events?since=0").json()
    assert data["count"] == 1
    assert data["events"][0]["payload"] == {"type": "node-removed", "node_id": "C"}
    assert client.get("/api/graph/events?since=1").json()["count"] == 0
    assert client.get("/api/graph/events?since=x").status_code == 400


def test_create_note_from_template(notes_dir, tmp_path_factory, bus):
    template = tmp_path_factory.mktemp("templates") / "phantom.md"
    template.write_text("# New\n\nCreated {{date}}\n", encoding="utf-8")
    config = AppConfig(root_dir=str(notes_dir), template_phantom_node=str(template))
    app = create_app(AppState(config), bus=bus, watch=False)

    with TestClient(app) as client:
        response = client.post("/api/notes/C")
        assert response.status_code == 201
        assert response.json() == {"node_id": "C", "path": str(notes_dir / "C.md")}

        content = (notes_dir / "C.md").read_text(encoding="utf-8")
        assert content.startswith("# New\n\nCreated ")
        assert "{{date}}" not in content

        assert client.post("/api/notes/C").status_code == 409
        assert client.post("/api/notes/A").status_code == 409
        assert client.post("/api/notes/a%5Cb").status_code == 400


def test_create_note_requires_template(client, notes_dir):
    response = client.post("/api/notes/C")
    assert response.status_code == 400
    assert "Template" in response.json()["error"]
    assert not (notes_dir / "C.md").exists()


def test_create_note_missing_template_is_500(notes_dir, tmp_path, bus):
    config = AppConfig(
        root_dir=str(notes_dir),
        template_phantom_node=str(tmp_path / "absent.md"),
    )
    app = create_app(AppState(config), bus=bus, watch=False)
    with TestClient(app) as client:
        assert client.post("/api/notes/C").status_code == 500
    assert not (notes_dir / "C.md").exists()


def test_snapshot_waits_for_index_lock_off_the_event_loop(client, app):
    index = app.state.service.state.index
    locked = threading.Event()
    release = threading.Event()
    results = {}

    def hold_lock():
        with index.locked():
            locked.set()
            release.wait(5)

    def fetch_snapshot():
        results["snapshot"] = client.get("/api/graph/snapshot").status_code

    holder = threading.Thread(target=hold_lock)
    holder.start()
    locked.wait(5)
    fetcher = threading.Thread(target=fetch_snapshot)
    fetcher.start()
    try:
        time.sleep(0.1)
        started = time.monotonic()
        assert client.get("/health").status_code == 200
        assert time.monotonic() - started < 2.0
    finally:
        release.set()
        holder.join()
        fetcher.join(5)
    assert results["snapshot"] == 200


def test_no_root_configured(bus):
    app = create_app(AppState(AppConfig()), bus=bus, watch=False)
    with TestClient(app) as client:
        assert client.get("/api/graph/snapshot").json() == {"nodes": [], "edges": []}
        assert client.post("/api/graph/scan").status_code == 400
        assert client.get("/api/notes/A").status_code == 400


# =============================================================================
# WEBSOCKET
# =============================================================================

def test_websocket_snapshot_then_deltas(client, app):
    with client.websocket_connect("/api/graph/ws") as ws:
        first = ws.receive_json()
        assert first["type"] == "snapshot"
        assert {n["id"] for n in first["data"]["nodes"]} == {"A", "B", "C"}

        app.state.service.emitter.emit(GraphDelta(
            nodes_removed=["C"],
            nodes_added=[Node.real("C", "/n/C.md", value=1)],
            edges_added=[Edge("C", "A")],
        ))

        messages = [ws.receive_json() for _ in range(3)]
        assert [m["type"] for m in messages] == ["graph-delta"] * 3
        assert [m["sequence"] for m in messages] == [1, 2, 3]
        assert [m["event"]["type"] for m in messages] == [
            "node-removed",
            "node-added",
            "edge-added",
        ]
        assert messages[2]["event"]["edge"] == {"from": "C", "to": "A"}


def test_websocket_ping_pong(client):
    with client.websocket_connect("/api/graph/ws") as ws:
        ws.receive_json()
        ws.send_json({"type": "ping"})
        assert ws.receive_json() == {"type": "pong"}


def test_delta_event_wire_form_is_decodable(client, app):
    from viz.core import EdgeAdded, decode_delta_event

    with client.websocket_connect("/api/graph/ws") as ws:
        ws.receive_json()
        app.state.service.emitter.emit(GraphDelta(edges_added=[Edge("A", "B")]))
        message = ws.receive_json()

    event = decode_delta_event(msgspec.json.encode(message["event"]))
    assert event == EdgeAdded(edge=Edge("A", "B"))


def test_websocket_snapshot_between_commit_and_publish(client, app, notes_dir):
    """A client that connects after a commit but before its events are
    published gets them in the snapshot and never as deltas."""
    service = app.state.service
    index = service.state.index

    b_path = notes_dir / "B.md"
    b_path.unlink()
    with index.locked():
        delta = apply_change(b_path, index)
        events = service.emitter.stamp(delta)
    assert [e.sequence for e in events] == [1, 2, 3]

    with client.websocket_connect("/api/graph/ws") as ws:
        first = ws.receive_json()
        assert first["type"] == "snapshot"
        assert first["sequence"] == 3
        nodes = {n["id"]: n for n in first["data"]["nodes"]}
        assert nodes["B"]["group"] == "phantom"

        service.emitter.publish(events)
        service.emitter.emit(GraphDelta(nodes_removed=["C"]))

        message = ws.receive_json()
        assert message["sequence"] == 4
        assert message["event"] == {"type": "node-removed", "node_id": "C"}


def test_websocket_snapshot_request_carries_sequence(client, app):
    with client.websocket_connect("/api/graph/ws") as ws:
        assert ws.receive_json()["sequence"] == 0
        app.state.service.emitter.emit(GraphDelta(nodes_removed=["C"]))
        assert ws.receive_json()["sequence"] == 1

        ws.send_json({"type": "snapshot"})
        again = ws.receive_json()
        assert again["type"] == "snapshot"
        assert again["sequence"] == 1
