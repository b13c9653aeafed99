"""Hash-based change detection between consecutive snapshots.

Each node is reduced to a ContentHash over its identity-relevant fields.
Only the ``path -> hash`` table of the previous snapshot is kept, so the
producer never holds two full snapshots in memory.

A node whose path changes (rename or reparent) shows up as a removal at the
old path plus an addition at the new one: the path is the identity key.
Two different contents with the same truncated digest would be reported as
unchanged; with 64 bits of SHA-256 this risk is accepted.
"""

import hashlib
import json
import logging
from typing import Iterable

from ..model import Delta, Node
from ..model.properties import encode_properties

logger = logging.getLogger(__name__)

# Properties that restate node fields and are left out of the hash
ADMINISTRATIVE_PROPERTIES = frozenset({"Name", "ClassName", "Parent"})

HASH_LENGTH = 16


def content_hash(node: Node) -> str:
    """Deterministic digest of a node's content.

    Covers name, type, parent path and every non-administrative property.
    Keys are sorted at every level so equal maps hash equally whatever their
    insertion order.
    """
    properties = {
        k: v
        for k, v in encode_properties(node.properties).items()
        if k not in ADMINISTRATIVE_PROPERTIES
    }
    canonical = json.dumps(
        {
            "name": node.name,
            "type": node.type,
            "parentPath": node.parent_path,
            "properties": properties,
        },
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=str,
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:HASH_LENGTH]


class ChangeDetector:
    """Compares snapshots against the previous cycle's hash table."""

    def __init__(self, previous_hashes: dict[str, str] | None = None):
        """Initialize the detector.

        Args:
            previous_hashes: Optional ``path -> hash`` table to start from.
        """
        self._previous: dict[str, str] = dict(previous_hashes or {})

    @property
    def known_paths(self) -> int:
        return len(self._previous)

    def hashes(self) -> dict[str, str]:
        """Copy of the current ``path -> hash`` table."""
        return dict(self._previous)

    def reset(self) -> None:
        """Forget the previous snapshot; the next detection reports everything as added."""
        self._previous = {}

    def prime(self, nodes: Iterable[Node]) -> None:
        """Record a snapshot as the baseline without producing a delta."""
        _, current_hash = self._index(nodes)
        self._previous = current_hash

    def detect(self, nodes: Iterable[Node]) -> Delta:
        """Diff a new snapshot against the previous one.

        The hash table is replaced by the new snapshot's table on every
        call, whether or not anything changed.
        """
        current_by_path, current_hash = self._index(nodes)
        previous = self._previous
        delta = Delta()

        for path, node in current_by_path.items():
            old_hash = previous.get(path)
            if old_hash is None:
                delta.added.append(node)
            elif old_hash != current_hash[path]:
                delta.modified.append(node)

        for path in previous:
            if path not in current_by_path:
                delta.removed.append(path)

        self._previous = current_hash

        if not delta.is_empty:
            logger.debug(
                f"Detected {len(delta.added)} added, {len(delta.modified)} modified, "
                f"{len(delta.removed)} removed"
            )
        return delta

    @staticmethod
    def _index(nodes: Iterable[Node]) -> tuple[dict[str, Node], dict[str, str]]:
        by_path: dict[str, Node] = {}
        hashes: dict[str, str] = {}
        for node in nodes:
            by_path[node.path] = node
            hashes[node.path] = content_hash(node)
        return by_path, hashes
