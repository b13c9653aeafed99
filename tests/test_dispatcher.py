"""Tests for batching and the BatchDispatcher."""

import pytest
from unittest.mock import AsyncMock

from treemirror.model import Delta, Node
from treemirror.producer import BatchDispatcher, split_batches, split_delta
from treemirror.transport import SendResult, Transport


def nodes(count, prefix="game.N"):
    return [Node(id=str(i), name=f"N{i}", type="Part", path=f"{prefix}{i}") for i in range(count)]


class RecordingTransport(Transport):
    """Transport that records envelopes and answers from a script."""

    def __init__(self, results=None):
        self.sent = []
        self.results = list(results or [])

    async def send(self, message):
        self.sent.append(message)
        if self.results:
            result = self.results.pop(0)
            if isinstance(result, Exception):
                raise result
            return result
        return SendResult(ok=True)


class TestSplitBatches:
    """Tests for split_batches and split_delta."""

    def test_even_and_uneven_split(self):
        batches = split_batches(list(range(5)), 2)

        assert [b.items for b in batches] == [[0, 1], [2, 3], [4]]
        assert [b.index for b in batches] == [0, 1, 2]
        assert all(b.total_batches == 3 for b in batches)
        assert [b.is_last for b in batches] == [False, False, True]

    def test_empty_input_yields_one_last_batch(self):
        [batch] = split_batches([], 10)

        assert batch.items == []
        assert batch.is_last

    def test_rejects_non_positive_size(self):
        with pytest.raises(ValueError):
            split_batches([1], 0)

    def test_split_delta_orders_removed_added_modified(self):
        delta = Delta(
            added=nodes(2, "game.A"),
            modified=nodes(1, "game.M"),
            removed=["game.R0", "game.R1"],
        )

        chunks = split_delta(delta, 2)

        assert [c.removed for c in chunks] == [["game.R0", "game.R1"], [], []]
        assert [[n.path for n in c.added] for c in chunks] == [[], ["game.A0", "game.A1"], []]
        assert [[n.path for n in c.modified] for c in chunks] == [[], [], ["game.M0"]]
        assert sum(c.size for c in chunks) == delta.size


class TestBatchDispatcher:
    """Tests for BatchDispatcher."""

    @pytest.mark.asyncio
    async def test_small_snapshot_is_one_message(self):
        transport = RecordingTransport()
        dispatcher = BatchDispatcher(transport, batch_size=10, pause_seconds=0, producer_id="p1")

        result = await dispatcher.send_snapshot(nodes(3))

        assert result.sent == 1 and result.ok
        [message] = transport.sent
        assert message["type"] == "snapshot"
        assert message["producer"] == "p1"
        assert len(message["data"]["nodes"]) == 3

    @pytest.mark.asyncio
    async def test_large_snapshot_is_batched(self):
        transport = RecordingTransport()
        dispatcher = BatchDispatcher(transport, batch_size=2, pause_seconds=0)

        result = await dispatcher.send_snapshot(nodes(5))

        types = [m["type"] for m in transport.sent]
        assert types == ["batchStart", "batch", "batch", "batch"]
        assert transport.sent[0]["data"] == {"totalNodes": 5, "batchSize": 2}

        batches = [m["data"] for m in transport.sent[1:]]
        assert [b["index"] for b in batches] == [0, 1, 2]
        assert [b["isLast"] for b in batches] == [False, False, True]
        assert all(b["totalBatches"] == 3 for b in batches)
        assert [len(b["nodes"]) for b in batches] == [2, 2, 1]
        assert result.sent == 4

    @pytest.mark.asyncio
    async def test_failed_batch_does_not_abort_sequence(self):
        transport = RecordingTransport(
            results=[
                SendResult(ok=True),
                SendResult(ok=False, error="HTTP 500"),
                ConnectionError("boom"),
            ]
        )
        dispatcher = BatchDispatcher(transport, batch_size=2, pause_seconds=0)

        result = await dispatcher.send_snapshot(nodes(5))

        assert len(transport.sent) == 4
        assert result.sent == 2
        assert result.failed == 2
        assert not result.ok

    @pytest.mark.asyncio
    async def test_pause_between_batches(self, monkeypatch):
        sleep = AsyncMock()
        monkeypatch.setattr("treemirror.producer.dispatcher.asyncio.sleep", sleep)
        dispatcher = BatchDispatcher(RecordingTransport(), batch_size=2, pause_seconds=0.05)

        await dispatcher.send_snapshot(nodes(5))

        assert sleep.await_count == 3
        sleep.assert_awaited_with(0.05)

    @pytest.mark.asyncio
    async def test_small_delta_is_one_message(self):
        transport = RecordingTransport()
        dispatcher = BatchDispatcher(transport, batch_size=10, pause_seconds=0)

        await dispatcher.send_delta(Delta(added=nodes(1), removed=["game.X"]))

        [message] = transport.sent
        assert message["type"] == "delta"
        assert message["data"]["removed"] == ["game.X"]
        assert "index" not in message["data"]

    @pytest.mark.asyncio
    async def test_large_delta_is_split(self):
        transport = RecordingTransport()
        dispatcher = BatchDispatcher(transport, batch_size=2, pause_seconds=0)

        result = await dispatcher.send_delta(Delta(added=nodes(3), removed=["game.X"]))

        assert [m["type"] for m in transport.sent] == ["delta", "delta"]
        data = [m["data"] for m in transport.sent]
        assert [d["index"] for d in data] == [0, 1]
        assert [d["isLast"] for d in data] == [False, True]
        assert data[0]["removed"] == ["game.X"]
        assert result.sent == 2

    @pytest.mark.asyncio
    async def test_resync_request_is_reported(self):
        transport = RecordingTransport(results=[SendResult(ok=True, resync_required=True)])
        dispatcher = BatchDispatcher(transport, batch_size=10, pause_seconds=0)

        result = await dispatcher.send_delta(Delta(added=nodes(1)))

        assert result.resync_required

    def test_rejects_invalid_batch_size(self):
        with pytest.raises(ValueError):
            BatchDispatcher(RecordingTransport(), batch_size=0)
