"""Node records and path helpers."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from .properties import PropertyValue, decode_properties, encode_properties

PATH_SEPARATOR = "."


def path_segments(path: str) -> list[str]:
    """Split a dotted path into its names."""
    return path.split(PATH_SEPARATOR)


def join_path(parent_path: str | None, name: str) -> str:
    """Build a child path; a missing parent yields a root path."""
    if not parent_path:
        return name
    return f"{parent_path}{PATH_SEPARATOR}{name}"


def parent_path_of(path: str) -> str | None:
    """Drop the last segment of a path, or None for a single segment."""
    head, sep, _ = path.rpartition(PATH_SEPARATOR)
    return head if sep else None


def ancestor_paths(path: str) -> list[str]:
    """All ancestor paths of a path, nearest first."""
    ancestors = []
    current = parent_path_of(path)
    while current is not None:
        ancestors.append(current)
        current = parent_path_of(current)
    return ancestors


def path_depth(path: str) -> int:
    """Number of separators in the path (0 for a root path)."""
    return path.count(PATH_SEPARATOR)


@dataclass
class Node:
    """One object of the synchronized hierarchy, keyed by path."""

    id: str
    name: str
    type: str
    path: str
    parent_path: str | None = None
    properties: dict[str, PropertyValue] = field(default_factory=dict)
    child_names: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Convert to the wire dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "path": self.path,
            "parentPath": self.parent_path,
            "properties": encode_properties(self.properties),
            "childNames": list(self.child_names),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Node":
        """Create from a wire dictionary."""
        return cls(
            id=data["id"],
            name=data["name"],
            type=data["type"],
            path=data["path"],
            parent_path=data.get("parentPath"),
            properties=decode_properties(data.get("properties")),
            child_names=list(data.get("childNames") or []),
        )


@dataclass
class Delta:
    """Changes between two snapshots.

    ``added`` and ``modified`` hold full nodes, ``removed`` only paths.
    """

    added: list[Node] = field(default_factory=list)
    modified: list[Node] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.added or self.modified or self.removed)

    @property
    def size(self) -> int:
        return len(self.added) + len(self.modified) + len(self.removed)

    def to_dict(self) -> dict[str, Any]:
        return {
            "added": [n.to_dict() for n in self.added],
            "modified": [n.to_dict() for n in self.modified],
            "removed": list(self.removed),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Delta":
        return cls(
            added=[Node.from_dict(n) for n in data.get("added", [])],
            modified=[Node.from_dict(n) for n in data.get("modified", [])],
            removed=list(data.get("removed", [])),
        )


@dataclass
class ConnectionState:
    """Liveness of the (single) producer as seen by the consumer."""

    connected: bool = False
    connected_at: datetime | None = None
    last_seen_at: datetime | None = None
    producer_identity: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "connected": self.connected,
            "connectedAt": self.connected_at.isoformat() if self.connected_at else None,
            "lastSeenAt": self.last_seen_at.isoformat() if self.last_seen_at else None,
            "producerIdentity": self.producer_identity,
        }
