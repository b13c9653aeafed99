"""Data model shared by the producer and the consumer."""

from .node import (
    ConnectionState,
    Delta,
    Node,
    ancestor_paths,
    join_path,
    parent_path_of,
    path_depth,
    path_segments,
)
from .properties import (
    Color3,
    PropertyValue,
    Vector3,
    decode_value,
    encode_value,
    format_value,
)

__all__ = [
    "Color3",
    "ConnectionState",
    "Delta",
    "Node",
    "PropertyValue",
    "Vector3",
    "ancestor_paths",
    "decode_value",
    "encode_value",
    "format_value",
    "join_path",
    "parent_path_of",
    "path_depth",
    "path_segments",
]
