"""Snapshot collection over a live object graph."""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

import yaml

from ..model import Node, join_path
from ..model.properties import decode_properties

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NodeIdentity:
    """Identity fields of a graph object."""

    id: str
    name: str
    type: str


class ObjectGraph(ABC):
    """Accessor for the host environment's object graph."""

    @abstractmethod
    def get_root(self) -> Any:
        """Return the root object."""
        pass

    @abstractmethod
    def get_children(self, obj: Any) -> list[Any]:
        """Return the immediate children of an object."""
        pass

    @abstractmethod
    def get_properties(self, obj: Any) -> dict[str, Any]:
        """Return the properties of an object."""
        pass

    @abstractmethod
    def describe(self, obj: Any) -> NodeIdentity:
        """Return the id, name and type of an object."""
        pass


class DictObjectGraph(ObjectGraph):
    """Object graph backed by nested mappings.

    Each object is a mapping with ``name``, ``type`` and optionally ``id``,
    ``properties`` and ``children`` (a list of objects).
    """

    def __init__(self, root: Mapping[str, Any]):
        self._root = root

    def get_root(self) -> Mapping[str, Any]:
        return self._root

    def get_children(self, obj: Mapping[str, Any]) -> list[Any]:
        return list(obj.get("children") or [])

    def get_properties(self, obj: Mapping[str, Any]) -> dict[str, Any]:
        return dict(obj.get("properties") or {})

    def describe(self, obj: Mapping[str, Any]) -> NodeIdentity:
        name = obj["name"]
        return NodeIdentity(
            id=str(obj.get("id") or f"obj_{id(obj):x}"),
            name=name,
            type=obj.get("type", "Instance"),
        )


class FileObjectGraph(DictObjectGraph):
    """Object graph reloaded from a JSON or YAML document on every root access."""

    def __init__(self, path: str | Path):
        self.path = Path(path).expanduser()
        super().__init__({})

    def get_root(self) -> Mapping[str, Any]:
        with open(self.path) as f:
            if self.path.suffix in (".yaml", ".yml"):
                self._root = yaml.safe_load(f) or {}
            else:
                self._root = json.load(f)
        return self._root


@dataclass
class CollectionStats:
    """Counters for one collection walk."""

    collected: int = 0
    property_failures: int = 0
    child_failures: int = 0
    cycles_skipped: int = 0
    duplicates_skipped: int = 0
    depth_truncated: int = 0
    truncated: bool = False
    skipped_paths: list[str] = field(default_factory=list)


class SnapshotCollector:
    """Walks an object graph and produces a flat snapshot of nodes.

    The walk is iterative (explicit stack), bounded by a depth cap and a
    node-count cap. An object seen twice in one walk (a cycle or a shared
    subtree) is skipped together with its branch.
    """

    def __init__(
        self,
        graph: ObjectGraph,
        max_depth: int = 64,
        max_nodes: int = 200_000,
    ):
        """Initialize the collector.

        Args:
            graph: Accessor for the live object graph.
            max_depth: Deepest level collected below the root.
            max_nodes: Maximum number of nodes in one snapshot.
        """
        self.graph = graph
        self.max_depth = max_depth
        self.max_nodes = max_nodes
        self.last_stats = CollectionStats()

    def collect(self) -> list[Node]:
        """Collect a snapshot of the whole graph, root first."""
        stats = CollectionStats()
        self.last_stats = stats

        root = self.graph.get_root()
        nodes: list[Node] = []
        seen_ids: set[str] = set()
        seen_paths: set[str] = set()

        # (object, parent node, depth)
        stack: list[tuple[Any, Node | None, int]] = [(root, None, 0)]

        while stack:
            obj, parent, depth = stack.pop()

            if len(nodes) >= self.max_nodes:
                stats.truncated = True
                logger.warning(
                    f"Snapshot truncated at {self.max_nodes} nodes"
                )
                break

            try:
                identity = self.graph.describe(obj)
            except Exception as e:
                logger.warning(f"Skipping unreadable object under "
                               f"{parent.path if parent else '<root>'}: {e}")
                continue

            path = join_path(parent.path if parent else None, identity.name)

            if identity.id in seen_ids:
                stats.cycles_skipped += 1
                stats.skipped_paths.append(path)
                logger.warning(f"Object {identity.id} seen twice at {path}, skipping branch")
                continue
            if path in seen_paths:
                stats.duplicates_skipped += 1
                stats.skipped_paths.append(path)
                logger.debug(f"Duplicate path {path}, keeping first occurrence")
                continue
            seen_ids.add(identity.id)
            seen_paths.add(path)

            node = Node(
                id=identity.id,
                name=identity.name,
                type=identity.type,
                path=path,
                parent_path=parent.path if parent else None,
                properties=self._read_properties(obj, path, stats),
            )
            nodes.append(node)
            if parent is not None:
                parent.child_names.append(identity.name)

            if depth >= self.max_depth:
                stats.depth_truncated += 1
                continue

            children = self._read_children(obj, path, stats)
            # Reversed so children pop in their natural order
            for child in reversed(children):
                stack.append((child, node, depth + 1))

        stats.collected = len(nodes)
        if stats.depth_truncated:
            logger.debug(
                f"{stats.depth_truncated} nodes at max depth {self.max_depth} "
                f"were collected without children"
            )
        return nodes

    def _read_properties(self, obj: Any, path: str, stats: CollectionStats) -> dict:
        try:
            return decode_properties(self.graph.get_properties(obj))
        except Exception as e:
            stats.property_failures += 1
            logger.warning(f"Could not read properties of {path}: {e}")
            return {}

    def _read_children(self, obj: Any, path: str, stats: CollectionStats) -> list:
        try:
            return self.graph.get_children(obj)
        except Exception as e:
            stats.child_failures += 1
            logger.warning(f"Could not list children of {path}: {e}")
            return []
