"""Wire schemas for producer to consumer messages.

Every message travels in an envelope::

    {"type": "delta", "producer": "studio-1", "data": {...}}

Field names on the wire are camelCase (``parentPath``, ``totalBatches``,
``isLast``...). Validation is done with pydantic; anything that does not fit
raises MessageValidationError.
"""

import json
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError
from pydantic.alias_generators import to_camel

from ..exceptions import MessageValidationError
from ..model import Delta, Node

SNAPSHOT = "snapshot"
BATCH_START = "batchStart"
BATCH = "batch"
DELTA = "delta"
HEARTBEAT = "heartbeat"

MESSAGE_TYPES = (SNAPSHOT, BATCH_START, BATCH, DELTA, HEARTBEAT)


class WireModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class NodeModel(WireModel):
    id: str
    name: str
    type: str
    path: str = Field(min_length=1)
    parent_path: str | None = None
    properties: dict[str, Any] = Field(default_factory=dict)
    child_names: list[str] = Field(default_factory=list)

    def to_node(self) -> Node:
        return Node.from_dict(self.model_dump(by_alias=True))


class SnapshotData(WireModel):
    nodes: list[NodeModel]


class BatchStartData(WireModel):
    total_nodes: int = Field(ge=0)
    batch_size: int = Field(gt=0)


class BatchData(WireModel):
    nodes: list[NodeModel]
    index: int = Field(ge=0)
    total_batches: int = Field(ge=1)
    is_last: bool


class DeltaData(WireModel):
    added: list[NodeModel] = Field(default_factory=list)
    modified: list[NodeModel] = Field(default_factory=list)
    removed: list[str] = Field(default_factory=list)
    index: int | None = Field(default=None, ge=0)
    total_batches: int | None = Field(default=None, ge=1)
    is_last: bool | None = None

    def to_delta(self) -> Delta:
        return Delta(
            added=[n.to_node() for n in self.added],
            modified=[n.to_node() for n in self.modified],
            removed=list(self.removed),
        )


class HeartbeatData(WireModel):
    timestamp: float


class SnapshotMessage(WireModel):
    type: Literal["snapshot"]
    producer: str | None = None
    data: SnapshotData


class BatchStartMessage(WireModel):
    type: Literal["batchStart"]
    producer: str | None = None
    data: BatchStartData


class BatchMessage(WireModel):
    type: Literal["batch"]
    producer: str | None = None
    data: BatchData


class DeltaMessage(WireModel):
    type: Literal["delta"]
    producer: str | None = None
    data: DeltaData


class HeartbeatMessage(WireModel):
    type: Literal["heartbeat"]
    producer: str | None = None
    data: HeartbeatData


Message = Annotated[
    Union[SnapshotMessage, BatchStartMessage, BatchMessage, DeltaMessage, HeartbeatMessage],
    Field(discriminator="type"),
]

_message_adapter: TypeAdapter[Message] = TypeAdapter(Message)


def parse_message(raw: str | bytes | dict[str, Any]) -> Message:
    """Validate an envelope and return the typed message.

    Raises:
        MessageValidationError: If the payload is not valid JSON or does not
            match any message schema.
    """
    if isinstance(raw, (str, bytes, bytearray)):
        try:
            raw = json.loads(raw)
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise MessageValidationError(f"Invalid JSON: {e}") from e

    try:
        return _message_adapter.validate_python(raw)
    except ValidationError as e:
        raise MessageValidationError(
            f"Invalid message: {e.error_count()} validation error(s): "
            f"{e.errors()[0]['msg']}"
        ) from e


def envelope(message_type: str, data: dict[str, Any], producer: str | None = None) -> dict[str, Any]:
    """Build a wire envelope."""
    return {"type": message_type, "producer": producer, "data": data}


def snapshot_envelope(nodes: list[Node], producer: str | None = None) -> dict[str, Any]:
    return envelope(SNAPSHOT, {"nodes": [n.to_dict() for n in nodes]}, producer)


def batch_start_envelope(total_nodes: int, batch_size: int, producer: str | None = None) -> dict[str, Any]:
    return envelope(
        BATCH_START, {"totalNodes": total_nodes, "batchSize": batch_size}, producer
    )


def batch_envelope(
    nodes: list[Node],
    index: int,
    total_batches: int,
    is_last: bool,
    producer: str | None = None,
) -> dict[str, Any]:
    return envelope(
        BATCH,
        {
            "nodes": [n.to_dict() for n in nodes],
            "index": index,
            "totalBatches": total_batches,
            "isLast": is_last,
        },
        producer,
    )


def delta_envelope(
    delta: Delta,
    producer: str | None = None,
    index: int | None = None,
    total_batches: int | None = None,
    is_last: bool | None = None,
) -> dict[str, Any]:
    data = delta.to_dict()
    if index is not None:
        data.update({"index": index, "totalBatches": total_batches, "isLast": is_last})
    return envelope(DELTA, data, producer)


def heartbeat_envelope(timestamp: float, producer: str | None = None) -> dict[str, Any]:
    return envelope(HEARTBEAT, {"timestamp": timestamp}, producer)
