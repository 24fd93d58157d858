"""
MDGRAPH MAIN - Entry Point and CLI

Commands:
    serve    - Start the API server (scan, watch, stream deltas)
    scan     - Scan a directory once and print the graph snapshot as JSON
    watch    - Watch a directory and log every emitted graph event

Usage:
    # Serve the notes in ./notes on 127.0.0.1:8000
    python main.py serve --root-dir ./notes

    # One-shot graph of a directory
    python main.py scan ./notes > graph.json

    # Follow changes in the terminal
    python main.py watch ./notes

    # Production server
    python main.py serve --prod --config config.toml

Configuration (lowest priority first):
    defaults -> config file (--config, else ./config.toml or ./config.json)
    -> --root-dir / --template-phantom-node
"""
import sys
import os
import time
import logging
from pathlib import Path

# Add mdgraph to path for imports
sys.path.insert(0, str(Path(__file__).parent))


logger = logging.getLogger("mdgraph.main")


def _setup_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def _load_config(args):
    from infrastructure.config import load_config

    return load_config(
        config_path=args.config,
        root_dir=getattr(args, "root_dir", None),
        template_phantom_node=args.template_phantom_node,
    )


def run_server(host: str = "127.0.0.1", port: int = 8000, workers: int = 1, reload: bool = False):
    """Run the API server with Granian."""
    from granian import Granian
    from granian.constants import Interfaces

    print(f"Starting mdgraph API server on {host}:{port}")
    print("Press Ctrl+C to stop")

    granian = Granian(
        target="api.routes:build_app",
        factory=True,
        address=host,
        port=port,
        interface=Interfaces.ASGI,
        workers=workers,
        reload=reload,
    )

    granian.serve()


def cmd_serve(args):
    """Handle serve command."""
    from api.routes import ENV_CONFIG, ENV_ROOT_DIR, ENV_TEMPLATE

    # Workers import the app in a fresh interpreter; hand the CLI over via env
    if args.config:
        os.environ[ENV_CONFIG] = str(Path(args.config).resolve())
    if args.root_dir:
        os.environ[ENV_ROOT_DIR] = str(Path(args.root_dir).resolve())
    if args.template_phantom_node:
        os.environ[ENV_TEMPLATE] = args.template_phantom_node

    if args.prod:
        run_server(args.host, args.port, args.workers, reload=False)
    else:
        run_server(args.host, args.port, 1, reload=args.reload)


def cmd_scan(args):
    """Handle scan command."""
    from core.graph_builder import scan_and_build_graph
    from core.schemas import DocumentAccessError, serialize_snapshot

    try:
        snapshot = scan_and_build_graph(args.path)
    except DocumentAccessError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    sys.stdout.write(serialize_snapshot(snapshot).decode("utf-8"))
    sys.stdout.write("\n")
    logger.info(f"{snapshot.node_count} nodes, {snapshot.edge_count} edges")


def cmd_watch(args):
    """Handle watch command."""
    import msgspec

    from core.schemas import DocumentAccessError
    from infrastructure.config import AppState
    from infrastructure.event_bus import get_event_bus
    from infrastructure.sync_service import GraphSyncService

    args.root_dir = args.path
    config = _load_config(args)
    bus = get_event_bus()

    def log_event(event):
        print(f"#{event.sequence} {msgspec.json.encode(event.payload).decode('utf-8')}")

    bus.subscribe_all(log_event)

    service = GraphSyncService(AppState(config), bus=bus)
    try:
        service.start()
    except DocumentAccessError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    snapshot = service.snapshot()
    print(f"Watching {config.root_dir}: {snapshot.node_count} nodes, {snapshot.edge_count} edges")
    print("Press Ctrl+C to stop")

    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        pass
    finally:
        service.stop()


def main():
    """Main entry point with subcommands."""
    import argparse

    parser = argparse.ArgumentParser(
        description="mdgraph - Live wiki-link graph of a markdown folder",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--config", type=str, help="Path to config file (TOML or JSON)")
    parser.add_argument(
        "--template-phantom-node",
        type=str,
        help="Template file for notes created from phantom nodes",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # serve command
    serve_parser = subparsers.add_parser("serve", help="Start API server")
    serve_parser.add_argument("--root-dir", type=str, help="Notes directory to serve and watch")
    serve_parser.add_argument("--host", default="127.0.0.1", help="Host to bind to")
    serve_parser.add_argument("--port", type=int, default=8000, help="Port to bind to")
    serve_parser.add_argument("--workers", type=int, default=1, help="Number of workers (prod; each holds its own index)")
    serve_parser.add_argument("--prod", action="store_true", help="Run in production mode")
    serve_parser.add_argument("--reload", action="store_true", help="Reload on code changes")
    serve_parser.set_defaults(func=cmd_serve)

    # scan command
    scan_parser = subparsers.add_parser("scan", help="Print the graph of a directory as JSON")
    scan_parser.add_argument("path", help="Directory to scan")
    scan_parser.set_defaults(func=cmd_scan)

    # watch command
    watch_parser = subparsers.add_parser("watch", help="Log graph events for a directory")
    watch_parser.add_argument("path", help="Directory to watch")
    watch_parser.set_defaults(func=cmd_watch)

    args = parser.parse_args()
    _setup_logging(args.verbose)

    if args.command is None:
        # Default to serve
        args.command = "serve"
        args.root_dir = None
        args.host = "127.0.0.1"
        args.port = 8000
        args.workers = 1
        args.prod = False
        args.reload = False
        args.func = cmd_serve

    args.func(args)


if __name__ == "__main__":
    main()
