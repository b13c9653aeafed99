"""Validates incoming envelopes and applies them to the store."""

import logging
from dataclasses import dataclass
from typing import Any

from ..exceptions import CodecError, MessageValidationError
from ..transport.codec import DeltaCodec
from ..transport.messages import (
    BATCH_START,
    DELTA,
    SNAPSHOT,
    BatchMessage,
    BatchStartMessage,
    DeltaMessage,
    HeartbeatMessage,
    SnapshotMessage,
    parse_message,
)
from .store import IngestionStore

logger = logging.getLogger(__name__)

# Messages that rebuild the whole collection and so may open a session
FULL_SYNC_TYPES = (SNAPSHOT, BATCH_START)


@dataclass
class Ack:
    """Reply to one ingested message."""

    accepted: bool
    type: str | None = None
    processed: int = 0
    resync: bool = False
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = {
            "accepted": self.accepted,
            "resync": self.resync,
            "type": self.type,
            "processed": self.processed,
        }
        if self.error:
            data["error"] = self.error
        return data


class MessageRouter:
    """Dispatches validated messages to IngestionStore operations.

    Malformed messages are logged and rejected; they never raise out of
    handle().
    """

    def __init__(self, store: IngestionStore, codec: DeltaCodec | None = None):
        self.store = store
        self.codec = codec or DeltaCodec()
        self.rejected = 0

    def handle(self, raw: str | bytes | dict[str, Any]) -> Ack:
        """Validate and apply one envelope."""
        try:
            message = parse_message(raw)
        except MessageValidationError as e:
            self.rejected += 1
            logger.warning(f"Discarding malformed message: {e}")
            return Ack(accepted=False, error=str(e))

        new_session = self.store.touch(message.producer)
        resync = new_session and message.type not in FULL_SYNC_TYPES
        if resync:
            logger.info(
                f"Session opened by {message.type} message, asking producer for a full sync"
            )

        processed = self._apply(message)
        return Ack(accepted=True, type=message.type, processed=processed, resync=resync)

    def handle_compressed(
        self,
        payload: bytes,
        producer: str | None = None,
        index: int | None = None,
        total_batches: int | None = None,
        is_last: bool | None = None,
    ) -> Ack:
        """Decode a codec-encoded delta and apply it."""
        try:
            delta = self.codec.decode(payload)
        except CodecError as e:
            self.rejected += 1
            logger.warning(f"Discarding undecodable delta: {e}")
            return Ack(accepted=False, type=DELTA, error=str(e))

        new_session = self.store.touch(producer)
        if new_session:
            logger.info("Session opened by compressed delta, asking producer for a full sync")

        if index is not None:
            logger.debug(f"Compressed delta {index + 1}/{total_batches} (last={is_last})")

        self.store.apply_delta(delta.added, delta.modified, delta.removed)
        return Ack(accepted=True, type=DELTA, processed=delta.size, resync=new_session)

    def _apply(self, message) -> int:
        data = message.data

        if isinstance(message, SnapshotMessage):
            self.store.apply_snapshot([n.to_node() for n in data.nodes])
            return len(data.nodes)

        if isinstance(message, BatchStartMessage):
            self.store.begin_batch(data.total_nodes, data.batch_size)
            return 0

        if isinstance(message, BatchMessage):
            self.store.apply_batch(
                [n.to_node() for n in data.nodes],
                data.index,
                data.total_batches,
                data.is_last,
            )
            return len(data.nodes)

        if isinstance(message, DeltaMessage):
            delta = data.to_delta()
            self.store.apply_delta(delta.added, delta.modified, delta.removed)
            return delta.size

        if isinstance(message, HeartbeatMessage):
            return 0

        raise MessageValidationError(f"Unhandled message type: {message.type}")
