"""Authoritative flat node collection on the consumer side."""

import logging
import threading
from datetime import datetime, timedelta
from typing import Any, Callable, Iterable

from ..model import ConnectionState, Node

logger = logging.getLogger(__name__)


class IngestionStore:
    """Path-keyed node collection plus the producer's connection state.

    Only one producer is meaningful at a time. Contact from a different
    producer, or any contact while disconnected, opens a new session and
    clears the collection before new data is applied.

    Writes are serialized with a lock. Readers get an immutable tuple that
    is rebuilt lazily per version, so a read never sees a half-applied
    message.
    """

    def __init__(
        self,
        timeout_seconds: float = 30.0,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """Initialize the store.

        Args:
            timeout_seconds: Seconds without contact before the producer is
                considered gone.
            clock: Time source, injectable for tests.
        """
        self.timeout = timedelta(seconds=timeout_seconds)
        self._clock = clock

        self._lock = threading.Lock()
        self._nodes: dict[str, Node] = {}
        self._connection = ConnectionState()
        self._version = 0
        self._view: tuple[Node, ...] = ()
        self._view_version = 0

        # Batched snapshot accounting
        self._expected_batch = 0
        self._batch_total: int | None = None
        self._batch_gaps = 0

        self._messages_applied = 0
        self._sessions_opened = 0

    @property
    def version(self) -> int:
        """Counter bumped on every applied change."""
        return self._version

    def _bump(self) -> None:
        self._version += 1
        self._messages_applied += 1

    def _clear(self) -> None:
        self._nodes.clear()
        self._expected_batch = 0
        self._batch_total = None

    def _upsert(self, nodes: Iterable[Node]) -> None:
        for node in nodes:
            self._nodes[node.path] = node

    # ==================== Connection ====================

    def touch(self, producer: str | None = None) -> bool:
        """Record contact from a producer.

        Returns:
            True if this contact opened a new session (and cleared the
            collection).
        """
        now = self._clock()
        with self._lock:
            state = self._connection
            new_session = not state.connected or (
                producer is not None
                and state.producer_identity is not None
                and producer != state.producer_identity
            )

            if new_session:
                if state.connected:
                    logger.info(
                        f"Producer changed from {state.producer_identity} to {producer}, "
                        "discarding previous tree"
                    )
                else:
                    logger.info(f"Producer connected: {producer or 'anonymous'}")
                had_nodes = bool(self._nodes)
                self._clear()
                if had_nodes:
                    self._version += 1
                self._sessions_opened += 1
                self._connection = ConnectionState(
                    connected=True,
                    connected_at=now,
                    last_seen_at=now,
                    producer_identity=producer,
                )
            else:
                state.last_seen_at = now
                if producer is not None and state.producer_identity is None:
                    state.producer_identity = producer

        return new_session

    def disconnect(self, reason: str = "manual") -> None:
        """Mark the producer as gone and drop the whole collection."""
        with self._lock:
            was_connected = self._connection.connected
            self._clear()
            self._connection = ConnectionState(
                connected=False,
                connected_at=None,
                last_seen_at=self._connection.last_seen_at,
                producer_identity=None,
            )
            self._version += 1

        if was_connected:
            logger.info(f"Producer disconnected ({reason}), tree cleared")

    def expire_if_stale(self, now: datetime | None = None) -> bool:
        """Disconnect when the last contact is older than the timeout.

        Returns:
            True if the producer was expired.
        """
        now = now or self._clock()
        state = self._connection
        if not state.connected or state.last_seen_at is None:
            return False
        if now - state.last_seen_at <= self.timeout:
            return False

        logger.warning(
            f"No contact from {state.producer_identity or 'producer'} for "
            f"{(now - state.last_seen_at).total_seconds():.0f}s"
        )
        self.disconnect(reason="timeout")
        return True

    def get_connection_state(self) -> ConnectionState:
        with self._lock:
            state = self._connection
            return ConnectionState(
                connected=state.connected,
                connected_at=state.connected_at,
                last_seen_at=state.last_seen_at,
                producer_identity=state.producer_identity,
            )

    # ==================== Ingestion ====================

    def apply_snapshot(self, nodes: list[Node]) -> int:
        """Replace the whole collection with a snapshot."""
        with self._lock:
            self._clear()
            self._upsert(nodes)
            self._bump()
            count = len(self._nodes)
        logger.info(f"Applied snapshot: {count} nodes")
        return count

    def begin_batch(self, total_nodes: int, batch_size: int) -> None:
        """Start a batched snapshot: clear and reset batch accounting."""
        expected = max(1, -(-total_nodes // batch_size))
        with self._lock:
            self._clear()
            self._batch_total = expected
            self._batch_gaps = 0
            self._bump()
        logger.info(
            f"Batched snapshot announced: {total_nodes} nodes in {expected} batch(es)"
        )

    def apply_batch(
        self,
        nodes: list[Node],
        index: int,
        total_batches: int,
        is_last: bool,
    ) -> int:
        """Upsert one batch of a batched snapshot.

        Out-of-order or missing batches are logged and the batch is still
        applied; the next full cycle repairs any gap.
        """
        with self._lock:
            if index != self._expected_batch:
                self._batch_gaps += 1
                logger.warning(
                    f"Batch gap: expected index {self._expected_batch}, got {index}"
                )
            if is_last and index != total_batches - 1:
                self._batch_gaps += 1
                logger.warning(
                    f"Batch {index} marked last but {total_batches} batches announced"
                )

            self._upsert(nodes)
            self._expected_batch = 0 if is_last else index + 1
            self._batch_total = None if is_last else total_batches
            self._bump()
            count = len(self._nodes)

        if is_last:
            logger.info(f"Batched snapshot complete: {count} nodes")
        return count

    def apply_delta(
        self,
        added: list[Node],
        modified: list[Node],
        removed: list[str],
    ) -> int:
        """Delete removed paths, then upsert added and modified nodes."""
        with self._lock:
            for path in removed:
                self._nodes.pop(path, None)
            self._upsert(added)
            self._upsert(modified)
            self._bump()
            count = len(self._nodes)

        logger.debug(
            f"Applied delta: +{len(added)} ~{len(modified)} -{len(removed)} "
            f"({count} nodes)"
        )
        return count

    # ==================== Reads ====================

    def get_all(self) -> tuple[Node, ...]:
        """Immutable view of the collection at the current version."""
        return self.get_versioned()[1]

    def get_versioned(self) -> tuple[int, tuple[Node, ...]]:
        """Current version together with the matching immutable view."""
        with self._lock:
            if self._view_version != self._version:
                self._view = tuple(self._nodes.values())
                self._view_version = self._version
            return self._version, self._view

    def get(self, path: str) -> Node | None:
        with self._lock:
            return self._nodes.get(path)

    def __len__(self) -> int:
        return len(self._nodes)

    def stats(self) -> dict[str, Any]:
        """Get store statistics."""
        with self._lock:
            return {
                "node_count": len(self._nodes),
                "version": self._version,
                "connected": self._connection.connected,
                "producer": self._connection.producer_identity,
                "messages_applied": self._messages_applied,
                "sessions_opened": self._sessions_opened,
                "batch_gaps": self._batch_gaps,
                "batch_in_progress": self._batch_total is not None,
            }
