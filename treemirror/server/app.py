"""FastAPI application for the consumer side."""

import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import HTMLResponse, JSONResponse, Response
from fastapi.templating import Jinja2Templates

from ..config import Config
from ..consumer import (
    Ack,
    IngestionQueue,
    IngestionStore,
    LivenessMonitor,
    MessageRouter,
    TreeNode,
    TreeReconciler,
)
from ..model import format_value
from ..transport.codec import DeltaCodec

logger = logging.getLogger(__name__)

# Template directory
TEMPLATE_DIR = Path(__file__).parent / "templates"


def _header_int(request: Request, name: str) -> int | None:
    value = request.headers.get(name)
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid {name} header: {value!r}")


def create_app(
    config: Config,
    store: IngestionStore | None = None,
    reconciler: TreeReconciler | None = None,
) -> FastAPI:
    """Create the consumer application.

    Args:
        config: Application configuration.
        store: Optional preconstructed IngestionStore.
        reconciler: Optional preconstructed TreeReconciler.

    Returns:
        Configured FastAPI application. Background workers (ingestion queue,
        liveness monitor, MQTT subscriber) run for the app's lifespan.
    """
    # An empty store is falsy, so test against None
    if store is None:
        store = IngestionStore(timeout_seconds=config.consumer.connection_timeout_seconds)
    if reconciler is None:
        reconciler = TreeReconciler(
            root_path=config.reconciler.root_path,
            root_type=config.reconciler.root_type,
            placeholder_type=config.reconciler.placeholder_type,
            well_known_containers=config.reconciler.well_known_containers,
        )
    router = MessageRouter(store, DeltaCodec(level=config.codec.level))
    queue = IngestionQueue(maxsize=config.consumer.queue_size)
    liveness = LivenessMonitor(store, config.consumer.liveness_check_seconds)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await queue.start()
        await liveness.start()

        subscriber = None
        if config.consumer.mqtt_enabled:
            from ..transport.mqtt import MQTTSubscriber

            def on_payload(payload: str) -> None:
                queue.submit_nowait(lambda: router.handle(payload))

            subscriber = MQTTSubscriber(config.mqtt, on_payload)
            if not await subscriber.connect():
                logger.warning("MQTT ingestion disabled: could not reach broker")
                subscriber = None
        app.state.mqtt = subscriber

        try:
            yield
        finally:
            if subscriber:
                await subscriber.disconnect()
            await liveness.stop()
            await queue.stop()

    app = FastAPI(
        title="treemirror",
        description="Live mirror of a remote object hierarchy",
        version="0.1.0",
        lifespan=lifespan,
    )

    # Store references for route handlers
    app.state.config = config
    app.state.store = store
    app.state.reconciler = reconciler
    app.state.router = router
    app.state.queue = queue
    app.state.liveness = liveness
    app.state.mqtt = None

    templates = Jinja2Templates(directory=str(TEMPLATE_DIR))

    # Store versions restart at 0 with the process; the start token keeps old ETags stale
    etag_prefix = format(time.time_ns(), "x")

    # Reconciled tree, rebuilt only when the store version changes
    tree_cache: dict[str, Any] = {"version": -1, "tree": None}

    def current_tree() -> tuple[int, TreeNode]:
        version, nodes = store.get_versioned()
        if tree_cache["version"] != version:
            tree_cache["tree"] = reconciler.reconcile(nodes)
            tree_cache["version"] = version
        return version, tree_cache["tree"]

    async def ingest(handler) -> Ack:
        if queue.is_running:
            return await queue.submit(handler)
        # App used without its lifespan (no worker task)
        return handler()

    # ==================== Ingestion ====================

    @app.post("/api/messages")
    async def api_messages(request: Request) -> JSONResponse:
        """Ingest one message envelope."""
        body = await request.body()
        ack = await ingest(lambda: router.handle(body))
        return JSONResponse(ack.to_dict(), status_code=200 if ack.accepted else 400)

    @app.post("/api/delta/compressed")
    async def api_compressed_delta(request: Request) -> JSONResponse:
        """Ingest a codec-encoded delta."""
        body = await request.body()
        producer = request.headers.get("X-Producer-Id")
        index = _header_int(request, "X-Batch-Index")
        total = _header_int(request, "X-Total-Batches")
        is_last_header = request.headers.get("X-Is-Last")
        is_last = None if is_last_header is None else is_last_header.lower() == "true"

        ack = await ingest(
            lambda: router.handle_compressed(body, producer, index, total, is_last)
        )
        return JSONResponse(ack.to_dict(), status_code=200 if ack.accepted else 400)

    @app.post("/api/disconnect")
    async def api_disconnect() -> dict[str, Any]:
        """Drop the current producer and clear the tree."""

        def disconnect() -> Ack:
            store.disconnect(reason="manual")
            return Ack(accepted=True, type="disconnect")

        await ingest(disconnect)
        return {"disconnected": True, "connection": store.get_connection_state().to_dict()}

    # ==================== Reads ====================

    @app.get("/api/nodes")
    async def api_nodes(request: Request) -> Response:
        """List every node; answers 304 when the client's ETag is current."""
        version, nodes = store.get_versioned()
        etag = f'"{etag_prefix}-{version}"'
        if request.headers.get("If-None-Match") == etag:
            return Response(status_code=304, headers={"ETag": etag})

        return JSONResponse(
            {
                "version": version,
                "count": len(nodes),
                "nodes": [n.to_dict() for n in nodes],
            },
            headers={"ETag": etag},
        )

    @app.get("/api/nodes/{path}")
    async def api_node(path: str) -> dict[str, Any]:
        """One node with display-formatted properties."""
        node = store.get(path)
        if node is None:
            raise HTTPException(status_code=404, detail=f"No node at {path}")
        return {
            "node": node.to_dict(),
            "formatted": {k: format_value(v) for k, v in sorted(node.properties.items())},
        }

    @app.get("/api/connection")
    async def api_connection() -> dict[str, Any]:
        """Get producer connection state."""
        state = store.get_connection_state().to_dict()
        state["timeoutSeconds"] = config.consumer.connection_timeout_seconds
        return state

    @app.get("/api/tree")
    async def api_tree(query: str = "") -> dict[str, Any]:
        """Reconciled tree, optionally filtered by a search query."""
        version, tree = current_tree()
        if query.strip():
            result = reconciler.search(tree, query)
            filtered = reconciler.filter_tree(tree, query)
            return {
                "version": version,
                "query": query,
                "matches": sorted(result.matches),
                "tree": filtered.to_dict() if filtered else None,
            }
        return {"version": version, "query": "", "matches": [], "tree": tree.to_dict()}

    @app.get("/api/stats")
    async def api_stats() -> dict[str, Any]:
        """Get system statistics."""
        return {
            "timestamp": datetime.now().isoformat(),
            "store": store.stats(),
            "queue": queue.stats(),
            "rejected_messages": router.rejected,
            "liveness_expirations": liveness.expirations,
        }

    @app.get("/api/health")
    async def api_health() -> dict[str, Any]:
        """Health check endpoint for monitoring and load balancers.

        Always returns 200 OK; component state is reported in the body.
        """
        return {
            "status": "ok",
            "timestamp": datetime.now().isoformat(),
            "components": {
                "ingestion_worker": queue.is_running,
                "producer_connected": store.get_connection_state().connected,
                "mqtt": app.state.mqtt is not None and app.state.mqtt.is_connected,
            },
        }

    # ==================== HTML ====================

    @app.get("/", response_class=HTMLResponse)
    async def index(request: Request):
        """Tree explorer page."""
        context = {
            "connection": store.get_connection_state(),
            "stats": store.stats(),
        }
        return templates.TemplateResponse(request, "index.html", context)

    @app.get("/htmx/tree", response_class=HTMLResponse)
    async def htmx_tree(request: Request, query: str = ""):
        """HTMX partial with the (filtered) tree rows."""
        _, tree = current_tree()
        shown = reconciler.filter_tree(tree, query) if query.strip() else tree
        rows = list(shown.walk()) if shown else []
        return templates.TemplateResponse(
            request,
            "partials/tree.html",
            {"rows": rows, "query": query, "searching": bool(query.strip())},
        )

    return app
