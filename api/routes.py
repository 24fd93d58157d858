"""
MDGRAPH API ROUTES - The HTTP Interface

Starlette surface for the graph renderer.

Endpoints:
- GET  /health                 - Health check
- GET  /api/config             - Current configuration
- POST /api/graph/scan         - Full rescan of a directory -> snapshot
- GET  /api/graph/snapshot     - Snapshot of the live index
- GET  /api/graph/arrow        - Live snapshot as Arrow IPC (?part=nodes|edges)
- GET  /api/graph/events       - Recently emitted events (?since=<sequence>)
- GET  /api/notes/{node_id}    - Raw markdown of a real node
- POST /api/notes/{node_id}    - Create a phantom's note from the template
- WS   /api/graph/ws           - Initial snapshot, then every delta event

WebSocket Protocol:
    server -> {"type": "snapshot", "sequence": 6, "data": {...}}
              (events with sequence <= 6 are already in it and not sent)
    server -> {"type": "graph-delta", "sequence": 7, "event": {"type": "node-added", ...}}
    client -> {"type": "ping"}  server -> {"type": "pong"}
    30s of silence -> {"type": "heartbeat"}

Design:
- msgspec for JSON encoding of structs
- The watcher publishes on a plain thread; the event bus hands async
  broadcast handlers to the server loop bound at startup
"""
from starlette.applications import Starlette
from starlette.responses import JSONResponse, Response
from starlette.routing import Route, WebSocketRoute
from starlette.requests import Request
from starlette.websockets import WebSocket, WebSocketDisconnect
from typing import Any, Callable, Dict, List, Optional, Tuple
from contextlib import asynccontextmanager
from pathlib import Path
import msgspec
import asyncio
import logging
import os

from core.schemas import (
    DocumentAccessError,
    DocumentExistsError,
    DocumentIdError,
    GraphSnapshot,
    TemplateError,
)
from infrastructure.config import AppState
from infrastructure.event_bus import EventBus, GraphEvent, get_event_bus
from infrastructure.sync_service import GraphSyncService
from infrastructure.templates import create_phantom_note
from viz.core import serialize_to_arrow


logger = logging.getLogger("mdgraph.api")

HEARTBEAT_SECONDS = 30.0

ENV_CONFIG = "MDGRAPH_CONFIG"
ENV_ROOT_DIR = "MDGRAPH_ROOT_DIR"
ENV_TEMPLATE = "MDGRAPH_TEMPLATE_PHANTOM_NODE"


# =============================================================================
# RESPONSE HELPERS
# =============================================================================

_json_encoder = msgspec.json.Encoder()


def json_response(data: Any, status_code: int = 200) -> Response:
    """Create JSON response using msgspec for speed."""
    return Response(
        content=_json_encoder.encode(data),
        status_code=status_code,
        media_type="application/json",
    )


def error_response(message: str, status_code: int = 400) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


def read_note_content(path: Path, offset: int = 0) -> str:
    """Read a note, skipping the first `offset` lines."""
    content = path.read_text(encoding="utf-8")
    if offset > 0:
        return "\n".join(content.splitlines()[offset:])
    return content


# =============================================================================
# WEBSOCKET BROADCASTING
# =============================================================================

class DeltaBroadcaster:
    """Tracks WebSocket clients and forwards graph events to them."""

    def __init__(self):
        # WebSocket -> last event sequence its snapshot already reflects
        self.connections: Dict[WebSocket, int] = {}
        # Handlers are scheduled in publish order; the lock keeps sends in it
        self._send_lock = asyncio.Lock()

    async def send_snapshot(
        self,
        websocket: WebSocket,
        snapshot_fn: Callable[[], Tuple[GraphSnapshot, int]],
    ) -> None:
        """
        Send a snapshot and (re)register the client at its sequence.

        Held under the send lock, so no event is broadcast between reading
        the snapshot and recording which sequences it covers.
        """
        async with self._send_lock:
            snapshot, sequence = await asyncio.to_thread(snapshot_fn)
            await websocket.send_json({
                "type": "snapshot",
                "sequence": sequence,
                "data": snapshot.to_dict(),
            })
            self.connections[websocket] = sequence

    async def broadcast_event(self, event: GraphEvent) -> None:
        """Async event bus handler: one message per graph event."""
        await self.broadcast_json({
            "type": "graph-delta",
            "sequence": event.sequence,
            "event": event.payload,
        }, sequence=event.sequence)

    async def broadcast_json(
        self,
        message: Dict[str, Any],
        sequence: Optional[int] = None,
    ) -> None:
        async with self._send_lock:
            if not self.connections:
                return

            # Send to all connections, removing dead ones
            dead = []
            for ws, seen in list(self.connections.items()):
                if sequence is not None and sequence <= seen:
                    continue
                try:
                    await ws.send_json(message)
                except Exception as e:
                    logger.debug(f"Dropping WebSocket client: {e}")
                    dead.append(ws)

            for ws in dead:
                self.connections.pop(ws, None)


# =============================================================================
# APPLICATION
# =============================================================================

def create_app(
    state: AppState,
    bus: Optional[EventBus] = None,
    watch: bool = True,
) -> Starlette:
    """
    Create the Starlette application.

    Args:
        state: Shared config + reference index
        bus: Event bus (default: global singleton)
        watch: Start the filesystem watcher on startup
    """
    bus = bus or get_event_bus()
    service = GraphSyncService(state, bus=bus, watch=watch)
    broadcaster = DeltaBroadcaster()

    async def health(request: Request) -> JSONResponse:
        watcher = service.watcher
        return JSONResponse({
            "status": "ok",
            "documents": len(state.index),
            "watching": bool(watcher and watcher.is_running),
        })

    async def get_config(request: Request) -> Response:
        return json_response(state.get_config())

    async def scan_folder(request: Request) -> JSONResponse:
        """
        POST /api/graph/scan

        Body: {"path": "/notes"} (optional, defaults to root_dir)
        """
        try:
            body = await request.json() if await request.body() else {}
        except ValueError:
            return error_response("Request body must be JSON", 400)

        path = body.get("path") if isinstance(body, dict) else None
        try:
            snapshot = await asyncio.to_thread(service.rescan, path)
        except DocumentAccessError as e:
            return error_response(str(e), 400)
        except ValueError as e:
            return error_response(str(e), 400)

        return JSONResponse(snapshot.to_dict())

    async def get_snapshot(request: Request) -> JSONResponse:
        snapshot = await asyncio.to_thread(service.snapshot)
        return JSONResponse(snapshot.to_dict())

    async def get_arrow(request: Request) -> Response:
        part = request.query_params.get("part", "nodes")
        if part not in ("nodes", "edges"):
            return error_response(f"Invalid part: {part}. Use: nodes, edges", 400)

        snapshot = await asyncio.to_thread(service.snapshot)
        nodes_ipc, edges_ipc = serialize_to_arrow(snapshot)
        return Response(
            content=nodes_ipc if part == "nodes" else edges_ipc,
            media_type="application/vnd.apache.arrow.stream",
        )

    async def get_events(request: Request) -> Response:
        try:
            since = int(request.query_params.get("since", "0"))
        except ValueError:
            return error_response("since must be an integer", 400)
        events: List[GraphEvent] = service.journal.get_events_since(since)
        return json_response({"events": events, "count": len(events)})

    async def read_note(request: Request) -> JSONResponse:
        """
        GET /api/notes/{node_id}

        Phantom and unknown ids are 404.
        """
        node_id = request.path_params["node_id"]
        config = state.get_config()

        path_str = state.index.get_path(node_id)
        if path_str is None:
            if config.root_dir is None:
                return error_response("Root directory not configured", 400)
            path_str = str(Path(config.root_dir) / f"{node_id}.md")

        path = Path(path_str)
        if not path.is_file():
            return error_response(f"File does not exist: {path}", 404)

        try:
            content = await asyncio.to_thread(read_note_content, path, config.previewer.offset)
        except (OSError, UnicodeDecodeError) as e:
            logger.error(f"Failed to read note {path}: {e}")
            return error_response(f"Failed to read file: {e}", 500)

        return JSONResponse({"node_id": node_id, "path": str(path), "content": content})

    async def create_note(request: Request) -> JSONResponse:
        """
        POST /api/notes/{node_id}

        Creates <root_dir>/<node_id>.md from template_phantom_node. The
        watcher picks the file up and turns the phantom into a real node.
        """
        node_id = request.path_params["node_id"]
        config = state.get_config()

        if config.root_dir is None:
            return error_response("Root directory not configured", 400)
        if config.template_phantom_node is None:
            return error_response("Template for phantom nodes not configured", 400)

        try:
            path = await asyncio.to_thread(
                create_phantom_note, config.root_dir, node_id, config.template_phantom_node
            )
        except DocumentIdError as e:
            return error_response(str(e), 400)
        except DocumentExistsError as e:
            return error_response(str(e), 409)
        except TemplateError as e:
            logger.error(str(e))
            return error_response(str(e), 500)
        except OSError as e:
            logger.error(f"Failed to create note {node_id}: {e}")
            return error_response(f"Failed to create file: {e}", 500)

        return JSONResponse({"node_id": node_id, "path": str(path)}, status_code=201)

    async def graph_websocket(websocket: WebSocket) -> None:
        await websocket.accept()

        try:
            await broadcaster.send_snapshot(websocket, service.snapshot_with_sequence)

            while True:
                try:
                    data = await asyncio.wait_for(
                        websocket.receive_json(),
                        timeout=HEARTBEAT_SECONDS,
                    )
                    message_type = data.get("type") if isinstance(data, dict) else None
                    if message_type == "ping":
                        await websocket.send_json({"type": "pong"})
                    elif message_type == "snapshot":
                        await broadcaster.send_snapshot(websocket, service.snapshot_with_sequence)
                except asyncio.TimeoutError:
                    await websocket.send_json({"type": "heartbeat"})

        except WebSocketDisconnect:
            pass
        finally:
            broadcaster.connections.pop(websocket, None)

    @asynccontextmanager
    async def lifespan(app: Starlette):
        bus.bind_loop(asyncio.get_running_loop())
        bus.subscribe_all_async(broadcaster.broadcast_event)
        try:
            await asyncio.to_thread(service.start)
        except DocumentAccessError as e:
            logger.error(f"Failed to scan root directory: {e}")
        try:
            yield
        finally:
            await asyncio.to_thread(service.stop)
            bus.bind_loop(None)

    routes = [
        Route("/health", health, methods=["GET"]),
        Route("/api/config", get_config, methods=["GET"]),
        Route("/api/graph/scan", scan_folder, methods=["POST"]),
        Route("/api/graph/snapshot", get_snapshot, methods=["GET"]),
        Route("/api/graph/arrow", get_arrow, methods=["GET"]),
        Route("/api/graph/events", get_events, methods=["GET"]),
        Route("/api/notes/{node_id}", read_note, methods=["GET"]),
        Route("/api/notes/{node_id}", create_note, methods=["POST"]),
        WebSocketRoute("/api/graph/ws", graph_websocket),
    ]

    app = Starlette(routes=routes, lifespan=lifespan, debug=False)
    app.state.service = service
    app.state.broadcaster = broadcaster
    return app


def build_app() -> Starlette:
    """
    App factory for the server process.

    Reads the config the CLI stashed in the environment, since the server
    imports this module in a fresh worker.
    """
    from infrastructure.config import load_config

    config = load_config(
        config_path=os.environ.get(ENV_CONFIG) or None,
        root_dir=os.environ.get(ENV_ROOT_DIR) or None,
        template_phantom_node=os.environ.get(ENV_TEMPLATE) or None,
    )
    return create_app(AppState(config))
