"""Splitting snapshots and deltas into batches and sending them in order."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Generic, Sequence, TypeVar

from ..model import Delta, Node
from ..transport import SendResult, Transport
from ..transport.messages import (
    batch_envelope,
    batch_start_envelope,
    delta_envelope,
    snapshot_envelope,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class Batch(Generic[T]):
    """One chunk of a batched sequence."""

    items: list[T]
    index: int
    total_batches: int

    @property
    def is_last(self) -> bool:
        return self.index == self.total_batches - 1


@dataclass
class DispatchResult:
    """Outcome of sending one snapshot or delta."""

    sent: int = 0
    failed: int = 0
    resync_required: bool = False

    @property
    def ok(self) -> bool:
        return self.failed == 0

    def record(self, result: SendResult) -> None:
        if result.ok:
            self.sent += 1
        else:
            self.failed += 1
        if result.resync_required:
            self.resync_required = True


def split_batches(items: Sequence[T], max_items: int) -> list[Batch[T]]:
    """Split items into ordered batches of at most max_items.

    An empty sequence yields a single empty last batch.
    """
    if max_items <= 0:
        raise ValueError(f"max_items must be positive, got {max_items}")

    total = max(1, -(-len(items) // max_items))
    return [
        Batch(items=list(items[i * max_items:(i + 1) * max_items]), index=i, total_batches=total)
        for i in range(total)
    ]


def split_delta(delta: Delta, max_items: int) -> list[Delta]:
    """Split a delta into deltas of at most max_items entries.

    Removed paths come first, then added, then modified.
    """
    entries: list[tuple[str, Node | str]] = (
        [("removed", p) for p in delta.removed]
        + [("added", n) for n in delta.added]
        + [("modified", n) for n in delta.modified]
    )

    chunks = []
    for batch in split_batches(entries, max_items):
        chunk = Delta()
        for kind, item in batch.items:
            getattr(chunk, kind).append(item)
        chunks.append(chunk)
    return chunks


class BatchDispatcher:
    """Sends snapshots and deltas over a transport in bounded batches.

    Batches are sent one at a time, in index order, with a pause between
    them. A batch that fails is logged and skipped; the rest of the sequence
    is still sent and the next sync cycle repairs the gap.
    """

    def __init__(
        self,
        transport: Transport,
        batch_size: int = 2000,
        pause_seconds: float = 0.05,
        producer_id: str | None = None,
    ):
        """Initialize the dispatcher.

        Args:
            transport: Transport used to deliver messages.
            batch_size: Maximum nodes (or delta entries) per message.
            pause_seconds: Pause between consecutive batches.
            producer_id: Identity stamped on every envelope.
        """
        if batch_size <= 0:
            raise ValueError(f"batch_size must be positive, got {batch_size}")
        self.transport = transport
        self.batch_size = batch_size
        self.pause_seconds = pause_seconds
        self.producer_id = producer_id

    async def send_snapshot(self, nodes: list[Node]) -> DispatchResult:
        """Send a full snapshot, batched when it exceeds the batch size."""
        result = DispatchResult()

        if len(nodes) <= self.batch_size:
            result.record(
                await self._send(snapshot_envelope(nodes, self.producer_id), "snapshot")
            )
            return result

        start = await self._send(
            batch_start_envelope(len(nodes), self.batch_size, self.producer_id),
            "batchStart",
        )
        result.record(start)

        batches = split_batches(nodes, self.batch_size)
        logger.info(
            f"Sending snapshot of {len(nodes)} nodes in {len(batches)} batches"
        )
        for batch in batches:
            await self._pause()
            message = batch_envelope(
                batch.items,
                batch.index,
                batch.total_batches,
                batch.is_last,
                self.producer_id,
            )
            result.record(
                await self._send(message, f"batch {batch.index + 1}/{batch.total_batches}")
            )

        if result.failed:
            logger.warning(
                f"Snapshot sent with {result.failed} failed message(s) "
                f"out of {result.sent + result.failed}"
            )
        return result

    async def send_delta(self, delta: Delta) -> DispatchResult:
        """Send a delta, split into several messages when it is large."""
        result = DispatchResult()

        if delta.size <= self.batch_size:
            result.record(await self._send(delta_envelope(delta, self.producer_id), "delta"))
            return result

        chunks = split_delta(delta, self.batch_size)
        total = len(chunks)
        for index, chunk in enumerate(chunks):
            if index:
                await self._pause()
            message = delta_envelope(
                chunk,
                self.producer_id,
                index=index,
                total_batches=total,
                is_last=index == total - 1,
            )
            result.record(await self._send(message, f"delta {index + 1}/{total}"))

        return result

    async def _send(self, message: dict, label: str) -> SendResult:
        try:
            result = await self.transport.send(message)
        except Exception as e:
            logger.error(f"Transport raised while sending {label}: {e}")
            return SendResult(ok=False, error=str(e))

        if not result.ok:
            logger.warning(f"Failed to send {label}: {result.error}")
        return result

    async def _pause(self) -> None:
        if self.pause_seconds > 0:
            await asyncio.sleep(self.pause_seconds)
