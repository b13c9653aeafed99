"""CLI entry point for treemirror."""

import argparse
import asyncio
import json
import logging
import sys
import traceback
from datetime import datetime, timezone
from pathlib import Path

from .config import Config, load_config
from .exceptions import TransportError


# Third-party loggers that are only interesting at debug level
NOISY_LOGGERS = ("httpx", "httpcore", "uvicorn.access")

LEVELS = {
    "warning": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
}


class JSONFormatter(logging.Formatter):
    """One JSON object per line, tagged with the process role."""

    def __init__(self, role: str | None = None):
        super().__init__()
        self.role = role

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if self.role:
            entry["role"] = self.role
        if record.exc_info:
            entry["error"] = record.exc_info[0].__name__
            entry["traceback"] = "".join(traceback.format_exception(*record.exc_info))
        return json.dumps(entry, default=str)


def setup_logging(
    verbose: bool = False,
    log_level: str | None = None,
    json_output: bool = False,
    role: str | None = None,
) -> int:
    """Configure root logging for a treemirror process.

    Args:
        verbose: Debug logging unless log_level says otherwise.
        log_level: Explicit level name (warning, info, debug).
        json_output: Emit JSON lines instead of text.
        role: "producer" or "consumer"; shown in every line.

    Returns:
        The effective level.
    """
    level = LEVELS.get(log_level, logging.INFO) if log_level else (
        logging.DEBUG if verbose else logging.INFO
    )

    handler = logging.StreamHandler()
    if json_output:
        handler.setFormatter(JSONFormatter(role))
    else:
        prefix = f"[{role}] " if role else ""
        handler.setFormatter(
            logging.Formatter(
                fmt=f"%(asctime)s {prefix}%(levelname)-7s %(name)s: %(message)s",
                datefmt="%H:%M:%S",
            )
        )
    logging.basicConfig(level=level, handlers=[handler])

    if level > logging.DEBUG:
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)
    return level


def build_transport(config: Config):
    """Create the producer transport selected in the config."""
    if config.producer.transport == "mqtt":
        from .transport.mqtt import MQTTTransport

        return MQTTTransport(config.mqtt)

    from .transport import DeltaCodec, HTTPTransport

    codec = DeltaCodec(level=config.codec.level) if config.codec.enabled else None
    return HTTPTransport(
        server_url=config.producer.server_url,
        timeout=config.producer.request_timeout_seconds,
        max_retries=config.producer.retry_max_attempts,
        codec=codec,
    )


async def cmd_serve(args: argparse.Namespace) -> int:
    """Run the consumer: ingestion API, tree API and explorer page."""
    config = load_config(args.config)
    if args.host:
        config.consumer.host = args.host
    if args.port:
        config.consumer.port = args.port
    if args.mqtt:
        config.consumer.mqtt_enabled = True

    import uvicorn

    from .server import create_app

    print("Starting treemirror consumer")
    print(f"URL: http://{config.consumer.host}:{config.consumer.port}")
    if config.consumer.mqtt_enabled:
        print(f"MQTT: {config.mqtt.broker}:{config.mqtt.port} ({config.mqtt.sync_topic})")

    app = create_app(config)
    verbose = getattr(args, "verbose", False)
    server = uvicorn.Server(
        uvicorn.Config(
            app,
            host=config.consumer.host,
            port=config.consumer.port,
            log_level="info" if verbose else "warning",
        )
    )
    await server.serve()
    return 0


async def cmd_produce(args: argparse.Namespace) -> int:
    """Run the producer sync loop against a file-backed object graph."""
    config = load_config(args.config)
    if args.source:
        config.producer.source_path = str(args.source)
    if args.server:
        config.producer.server_url = args.server

    from .producer import (
        BatchDispatcher,
        ChangeDetector,
        FileObjectGraph,
        SnapshotCollector,
        SyncLoop,
    )

    source = Path(config.producer.source_path)
    if not source.exists():
        print(f"Source file not found: {source}", file=sys.stderr)
        return 1

    collector = SnapshotCollector(
        FileObjectGraph(source),
        max_depth=config.producer.max_depth,
        max_nodes=config.producer.max_nodes,
    )
    transport = build_transport(config)
    dispatcher = BatchDispatcher(
        transport,
        batch_size=config.producer.batch_size,
        pause_seconds=config.producer.batch_pause_seconds,
        producer_id=config.producer.name,
    )
    loop = SyncLoop(
        collector,
        ChangeDetector(),
        dispatcher,
        interval_seconds=config.producer.sync_interval_seconds,
        heartbeat_interval_seconds=config.producer.heartbeat_interval_seconds,
    )

    print(f"Starting treemirror producer: {config.producer.name}")
    print(f"Source: {source}")
    if config.producer.transport == "mqtt":
        print(f"MQTT: {config.mqtt.broker}:{config.mqtt.port} ({config.mqtt.sync_topic})")
    else:
        print(f"Server: {config.producer.server_url}")

    if args.once:
        try:
            result = await loop.tick()
        finally:
            await transport.close()
        print(f"Sent {result.kind} ({result.nodes} nodes)")
        return 0 if result.kind != "failed" and (result.dispatch is None or result.dispatch.ok) else 1

    await loop.start()
    try:
        while True:
            await asyncio.sleep(3600)
    except asyncio.CancelledError:
        pass
    finally:
        await loop.stop()
        await transport.close()
    return 0


async def cmd_status(args: argparse.Namespace) -> int:
    """Show a running consumer's connection state."""
    config = load_config(args.config)
    from .transport import ConsumerClient

    client = ConsumerClient(args.server or config.producer.server_url)
    try:
        connection = await client.get_connection()
        stats = await client.get_stats()
    except TransportError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.as_json:
        print(json.dumps({"connection": connection, "stats": stats}, indent=2))
        return 0

    store = stats.get("store", {})
    print(f"\nConsumer: {client.server_url}")
    print("=" * 40)
    if connection.get("connected"):
        print(f"  Producer: {connection.get('producerIdentity') or 'anonymous'}")
        print(f"  Connected at: {connection.get('connectedAt')}")
        print(f"  Last seen: {connection.get('lastSeenAt')}")
    else:
        print("  Producer: not connected")
    print(f"  Nodes: {store.get('node_count', 0)} (version {store.get('version', 0)})")
    print(f"  Rejected messages: {stats.get('rejected_messages', 0)}")
    print()
    return 0


async def cmd_tree(args: argparse.Namespace) -> int:
    """Print the reconciled tree of a running consumer."""
    config = load_config(args.config)
    from .transport import ConsumerClient

    client = ConsumerClient(args.server or config.producer.server_url)
    try:
        data = await client.get_tree(args.query or "")
    except TransportError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    tree = data.get("tree")
    if tree is None:
        print(f'No nodes match "{args.query}"')
        return 0

    stack = [tree]
    while stack:
        node = stack.pop()
        if args.max_depth is not None and node["depth"] > args.max_depth:
            continue
        marker = "*" if node.get("matched") else " "
        suffix = " (placeholder)" if node.get("placeholder") else ""
        print(f"{marker}{'  ' * node['depth']}{node['name']} [{node['type']}]{suffix}")
        stack.extend(reversed(node["children"]))
    return 0


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        prog="treemirror",
        description="Mirror a live object hierarchy from a producer to a consumer",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Path to YAML config file",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["warning", "info", "debug"],
        default=None,
        help="Set log level explicitly (overrides -v/--verbose)",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Output logs as JSON for machine parsing",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Serve command
    serve_parser = subparsers.add_parser("serve", help="Run the consumer server")
    serve_parser.add_argument("-p", "--port", type=int, default=None, help="Port to listen on")
    serve_parser.add_argument("--host", type=str, default=None, help="Host to bind to")
    serve_parser.add_argument(
        "--mqtt",
        action="store_true",
        help="Also ingest messages from the MQTT sync topic",
    )
    serve_parser.set_defaults(func=cmd_serve)

    # Produce command
    produce_parser = subparsers.add_parser("produce", help="Run the producer sync loop")
    produce_parser.add_argument(
        "-s", "--source",
        type=Path,
        default=None,
        help="JSON or YAML document describing the object graph",
    )
    produce_parser.add_argument("--server", type=str, default=None, help="Consumer URL")
    produce_parser.add_argument(
        "--once",
        action="store_true",
        help="Send a single full snapshot and exit",
    )
    produce_parser.set_defaults(func=cmd_produce)

    # Status command
    status_parser = subparsers.add_parser("status", help="Show consumer connection state")
    status_parser.add_argument("--server", type=str, default=None, help="Consumer URL")
    status_parser.add_argument(
        "--json",
        dest="as_json",
        action="store_true",
        help="Output status as JSON",
    )
    status_parser.set_defaults(func=cmd_status)

    # Tree command
    tree_parser = subparsers.add_parser("tree", help="Print the reconciled tree")
    tree_parser.add_argument("query", nargs="?", default="", help="Optional search query")
    tree_parser.add_argument("--server", type=str, default=None, help="Consumer URL")
    tree_parser.add_argument(
        "-d", "--max-depth",
        type=int,
        default=None,
        help="Only print nodes up to this depth",
    )
    tree_parser.set_defaults(func=cmd_tree)

    args = parser.parse_args()

    roles = {"serve": "consumer", "produce": "producer"}
    setup_logging(args.verbose, args.log_level, args.json, role=roles.get(args.command))

    if not args.command:
        parser.print_help()
        return 1

    try:
        return asyncio.run(args.func(args))
    except KeyboardInterrupt:
        print("\nShutting down...")
        return 0


if __name__ == "__main__":
    sys.exit(main())
