"""Tests for the consumer HTTP API."""

import itertools
import pytest
from unittest.mock import patch

pytest.importorskip("fastapi")

from fastapi.testclient import TestClient

from treemirror.config import Config, ReconcilerConfig
from treemirror.consumer import IngestionStore, TreeReconciler
from treemirror.model import Delta, Node
from treemirror.server import create_app
from treemirror.transport import DeltaCodec
from treemirror.transport.messages import (
    delta_envelope,
    heartbeat_envelope,
    snapshot_envelope,
)


def node(path, type_="Part", **properties):
    return Node(
        id=f"id-{path}",
        name=path.rsplit(".", 1)[-1],
        type=type_,
        path=path,
        properties=properties,
    )


SNAPSHOT = [node("root", "DataModel"), node("root.X", "Container"), node("root.X.Y", "Leaf", v=1)]


@pytest.fixture
def config():
    """Create a test configuration."""
    return Config(reconciler=ReconcilerConfig(root_path="root"))


@pytest.fixture
def store():
    return IngestionStore(timeout_seconds=30)


@pytest.fixture
def client(config, store):
    """Create a test client with the app's lifespan running."""
    app = create_app(config, store=store)
    with TestClient(app) as client:
        yield client


class TestIngestion:
    """Tests for the ingestion endpoints."""

    def test_snapshot_and_list(self, client):
        response = client.post("/api/messages", json=snapshot_envelope(SNAPSHOT, "p1"))

        assert response.status_code == 200
        assert response.json() == {
            "accepted": True,
            "resync": False,
            "type": "snapshot",
            "processed": 3,
        }

        data = client.get("/api/nodes").json()
        assert data["count"] == 3
        assert {n["path"] for n in data["nodes"]} == {"root", "root.X", "root.X.Y"}

    def test_malformed_message(self, client):
        response = client.post("/api/messages", content=b"{not json")

        assert response.status_code == 400
        assert response.json()["accepted"] is False

    def test_delta_opening_session_requests_resync(self, client):
        response = client.post(
            "/api/messages", json=delta_envelope(Delta(added=[node("root.A")]), "p1")
        )

        assert response.status_code == 200
        assert response.json()["resync"] is True

    def test_compressed_delta(self, client, store):
        client.post("/api/messages", json=snapshot_envelope(SNAPSHOT, "p1"))
        payload = DeltaCodec().encode(Delta(modified=[node("root.X.Y", "Leaf", v=2)]))

        response = client.post(
            "/api/delta/compressed",
            content=payload,
            headers={
                "Content-Type": DeltaCodec.content_type,
                "X-Producer-Id": "p1",
                "X-Batch-Index": "0",
                "X-Total-Batches": "1",
                "X-Is-Last": "true",
            },
        )

        assert response.status_code == 200
        assert response.json()["processed"] == 1
        assert store.get("root.X.Y").properties == {"v": 2}

    def test_compressed_delta_bad_header(self, client):
        response = client.post(
            "/api/delta/compressed",
            content=b"",
            headers={"X-Batch-Index": "first"},
        )

        assert response.status_code == 400

    def test_compressed_delta_garbage(self, client):
        response = client.post("/api/delta/compressed", content=b"junk")

        assert response.status_code == 400
        assert response.json()["accepted"] is False

    def test_manual_disconnect_clears(self, client):
        client.post("/api/messages", json=snapshot_envelope(SNAPSHOT, "p1"))

        response = client.post("/api/disconnect")

        assert response.status_code == 200
        assert response.json()["connection"]["connected"] is False
        assert client.get("/api/nodes").json()["count"] == 0


class TestAppWiring:
    """Tests for how create_app uses the objects it is given."""

    def test_empty_store_is_used(self, config):
        store = IngestionStore(timeout_seconds=30)
        assert len(store) == 0

        app = create_app(config, store=store)
        with TestClient(app) as client:
            client.post("/api/messages", json=snapshot_envelope(SNAPSHOT, "p1"))

        assert app.state.store is store
        assert len(store) == 3

    def test_given_reconciler_is_used(self, config, store):
        reconciler = TreeReconciler(root_path="root")

        app = create_app(config, store=store, reconciler=reconciler)

        assert app.state.reconciler is reconciler


class TestReads:
    """Tests for the read endpoints."""

    def test_nodes_etag(self, client):
        client.post("/api/messages", json=snapshot_envelope(SNAPSHOT, "p1"))

        first = client.get("/api/nodes")
        etag = first.headers["ETag"]

        cached = client.get("/api/nodes", headers={"If-None-Match": etag})
        assert cached.status_code == 304

        client.post(
            "/api/messages",
            json=delta_envelope(Delta(removed=["root.X.Y"]), "p1"),
        )
        fresh = client.get("/api/nodes", headers={"If-None-Match": etag})
        assert fresh.status_code == 200
        assert fresh.json()["count"] == 2

    def test_etag_changes_across_restarts(self, config):
        etags = []
        with patch("treemirror.server.app.time.time_ns", side_effect=itertools.count(1000)):
            for _ in range(2):
                with TestClient(create_app(config, store=IngestionStore())) as client:
                    client.post("/api/messages", json=snapshot_envelope(SNAPSHOT, "p1"))
                    etags.append(client.get("/api/nodes").headers["ETag"])

        assert etags[0] != etags[1]
        assert etags[0].endswith('-1"')

    def test_single_node(self, client):
        client.post("/api/messages", json=snapshot_envelope(SNAPSHOT, "p1"))

        data = client.get("/api/nodes/root.X.Y").json()

        assert data["node"]["type"] == "Leaf"
        assert data["formatted"] == {"v": "1"}
        assert client.get("/api/nodes/root.Nope").status_code == 404

    def test_connection_state(self, client):
        assert client.get("/api/connection").json()["connected"] is False

        client.post("/api/messages", json=heartbeat_envelope(1.0, "p1"))

        state = client.get("/api/connection").json()
        assert state["connected"] is True
        assert state["producerIdentity"] == "p1"
        assert state["lastSeenAt"] is not None
        assert state["timeoutSeconds"] == 30

    def test_tree(self, client):
        client.post("/api/messages", json=snapshot_envelope(SNAPSHOT, "p1"))

        tree = client.get("/api/tree").json()["tree"]

        assert tree["path"] == "root"
        [x] = tree["children"]
        assert x["path"] == "root.X"
        assert x["children"][0]["path"] == "root.X.Y"

    def test_tree_follows_deltas(self, client):
        client.post("/api/messages", json=snapshot_envelope(SNAPSHOT, "p1"))
        client.get("/api/tree")

        client.post("/api/messages", json=delta_envelope(Delta(removed=["root.X.Y"]), "p1"))

        x = client.get("/api/tree").json()["tree"]["children"][0]
        assert x["hasChildren"] is False

    def test_tree_search(self, client):
        client.post("/api/messages", json=snapshot_envelope(SNAPSHOT, "p1"))

        data = client.get("/api/tree", params={"query": "leaf"}).json()

        assert data["matches"] == ["root.X.Y"]
        y = data["tree"]["children"][0]["children"][0]
        assert y["matched"] is True

    def test_tree_search_without_match(self, client):
        client.post("/api/messages", json=snapshot_envelope(SNAPSHOT, "p1"))

        data = client.get("/api/tree", params={"query": "zzz"}).json()

        assert data["tree"] is None
        assert data["matches"] == []

    def test_empty_store_tree_has_synthesized_root(self, client):
        tree = client.get("/api/tree").json()["tree"]

        assert tree["placeholder"] is True
        assert tree["children"] == []

    def test_stats(self, client):
        client.post("/api/messages", json=snapshot_envelope(SNAPSHOT, "p1"))
        client.post("/api/messages", content=b"nope")

        stats = client.get("/api/stats").json()

        assert stats["store"]["node_count"] == 3
        assert stats["rejected_messages"] == 1
        assert stats["queue"]["running"] is True

    def test_health(self, client):
        data = client.get("/api/health").json()

        assert data["status"] == "ok"
        assert data["components"]["ingestion_worker"] is True
        assert data["components"]["mqtt"] is False


class TestExplorerPages:
    """Tests for the HTML explorer."""

    def test_index_page(self, client):
        response = client.get("/")

        assert response.status_code == 200
        assert "treemirror" in response.text
        assert "Disconnected" in response.text

    def test_tree_partial(self, client):
        client.post("/api/messages", json=snapshot_envelope(SNAPSHOT, "p1"))

        response = client.get("/htmx/tree", params={"query": "leaf"})

        assert response.status_code == 200
        assert "Y" in response.text
        assert "matched" in response.text

    def test_tree_partial_no_match(self, client):
        response = client.get("/htmx/tree", params={"query": "zzz"})

        assert 'No nodes match "zzz"' in response.text
