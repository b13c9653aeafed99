"""Rebuilds a display tree from the flat path-keyed collection.

Reconciliation is a pure function of the collection: the same nodes always
give the same tree, including synthesized placeholders. It is cheap enough
to rerun after every ingestion instead of patching the tree incrementally.

Placement uses the parent computed from ``path``; a node's own
``parent_path`` may be stale and is ignored. Nodes whose ancestors have not
arrived yet (orphans) are hung under placeholder nodes so that nothing is
dropped.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Iterable, Iterator

from ..model import Node, ancestor_paths, parent_path_of, path_depth, path_segments
from ..model.properties import PropertyValue, encode_properties

logger = logging.getLogger(__name__)

DEFAULT_WELL_KNOWN = (
    "Workspace",
    "Players",
    "Lighting",
    "ReplicatedStorage",
    "ServerStorage",
    "StarterGui",
    "StarterPlayer",
    "StarterPack",
)

PLACEHOLDER_PREFIX = "placeholder_"

_DIGITS = re.compile(r"(\d+)")


def natural_key(text: str) -> tuple:
    """Case-insensitive, numeric-aware sort key ("Part2" < "Part10")."""
    parts = _DIGITS.split(text.lower())
    return tuple((0, int(p), "") if p.isdigit() else (1, 0, p) for p in parts if p)


@dataclass
class TreeNode:
    """One node of the reconciled tree."""

    id: str
    name: str
    type: str
    path: str
    properties: dict[str, PropertyValue] = field(default_factory=dict)
    placeholder: bool = False
    matched: bool = False
    depth: int = 0
    children: list["TreeNode"] = field(default_factory=list)

    @property
    def has_children(self) -> bool:
        return bool(self.children)

    def walk(self) -> Iterator["TreeNode"]:
        """Depth-first, pre-order, children in display order."""
        stack = [self]
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.children))

    def find(self, path: str) -> "TreeNode | None":
        for node in self.walk():
            if node.path == path:
                return node
        return None

    def to_dict(self) -> dict[str, Any]:
        """Serialize the subtree without recursing on the Python stack."""
        result = self._shallow_dict()
        stack = [(self, result)]
        while stack:
            node, data = stack.pop()
            for child in node.children:
                child_data = child._shallow_dict()
                data["children"].append(child_data)
                stack.append((child, child_data))
        return result

    def _shallow_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "path": self.path,
            "properties": encode_properties(self.properties),
            "placeholder": self.placeholder,
            "matched": self.matched,
            "depth": self.depth,
            "hasChildren": self.has_children,
            "children": [],
        }


@dataclass
class SearchResult:
    matches: set[str]
    visible: set[str]


class TreeReconciler:
    """Turns a flat node collection into a rooted, sorted tree."""

    def __init__(
        self,
        root_path: str = "game",
        root_type: str = "DataModel",
        placeholder_type: str = "Folder",
        well_known_containers: Iterable[str] = DEFAULT_WELL_KNOWN,
    ):
        """Initialize the reconciler.

        Args:
            root_path: Path of the tree root.
            root_type: Type given to a synthesized root.
            placeholder_type: Type given to synthesized intermediate nodes.
            well_known_containers: Container names in display priority order.
                A placeholder named after one of them takes that name as type.
        """
        self.root_path = root_path
        self.root_type = root_type
        self.placeholder_type = placeholder_type
        self.well_known = tuple(well_known_containers)
        self._priority = {name: i for i, name in enumerate(self.well_known)}

    def reconcile(self, nodes: Iterable[Node]) -> TreeNode:
        """Build the tree for the given collection."""
        by_path: dict[str, Node] = {}
        for node in nodes:
            by_path[node.path] = node

        root_record = by_path.get(self.root_path)
        if root_record is not None:
            root = self._from_node(root_record)
        else:
            root = TreeNode(
                id=PLACEHOLDER_PREFIX + self.root_path,
                name=self.root_path,
                type=self.root_type,
                path=self.root_path,
                placeholder=True,
            )

        index: dict[str, TreeNode] = {self.root_path: root}
        placeholders = 0

        ordered = sorted(
            (n for p, n in by_path.items() if p != self.root_path),
            key=lambda n: (path_depth(n.path), n.path),
        )
        for node in ordered:
            parent = self._resolve_parent(node.path, index, root)
            if parent is None:
                parent, created = self._synthesize_chain(node.path, index, root)
                placeholders += created
            self._attach(parent, self._from_node(node), index)

        self._sort(root)
        if placeholders:
            logger.debug(f"Reconciled {len(by_path)} nodes with {placeholders} placeholder(s)")
        return root

    def _resolve_parent(
        self, path: str, index: dict[str, TreeNode], root: TreeNode
    ) -> TreeNode | None:
        parent_path = parent_path_of(path)
        if parent_path is None:
            return root
        return index.get(parent_path)

    def _synthesize_chain(
        self, path: str, index: dict[str, TreeNode], root: TreeNode
    ) -> tuple[TreeNode, int]:
        """Create placeholders between the deepest known ancestor and path.

        With no known ancestor the chain hangs under the root.
        """
        anchor = root
        missing = []
        for ancestor in ancestor_paths(path):
            if ancestor in index:
                anchor = index[ancestor]
                break
            missing.append(ancestor)

        for ancestor in reversed(missing):
            placeholder = self._placeholder(ancestor)
            self._attach(anchor, placeholder, index)
            anchor = placeholder
        return anchor, len(missing)

    def _placeholder(self, path: str) -> TreeNode:
        name = path_segments(path)[-1]
        node_type = name if name in self._priority else self.placeholder_type
        return TreeNode(
            id=PLACEHOLDER_PREFIX + path,
            name=name,
            type=node_type,
            path=path,
            placeholder=True,
        )

    @staticmethod
    def _from_node(node: Node) -> TreeNode:
        return TreeNode(
            id=node.id,
            name=node.name,
            type=node.type,
            path=node.path,
            properties=dict(node.properties),
        )

    @staticmethod
    def _attach(parent: TreeNode, child: TreeNode, index: dict[str, TreeNode]) -> None:
        child.depth = parent.depth + 1
        parent.children.append(child)
        index[child.path] = child

    def sort_key(self, node: TreeNode, top_level: bool = False) -> tuple:
        """Ordering key; well-known priority only counts among the root's children."""
        rank = len(self._priority)
        if top_level:
            rank = self._priority.get(node.name, rank)
        return (
            rank,
            natural_key(node.name),
            node.name,
            node.path,
        )

    def _sort(self, root: TreeNode) -> None:
        for node in root.walk():
            top_level = node is root
            node.children.sort(key=lambda child: self.sort_key(child, top_level))

    # ==================== Search ====================

    @staticmethod
    def search(tree: TreeNode, query: str) -> SearchResult:
        """Find real nodes whose name or type contains the query.

        The visible set holds the matches plus all of their ancestors.
        """
        needle = query.strip().lower()
        matches: set[str] = set()
        visible: set[str] = set()
        if not needle:
            return SearchResult(matches=matches, visible=visible)

        # Ancestor chain of every node, tracked during one walk
        stack: list[tuple[TreeNode, tuple[str, ...]]] = [(tree, ())]
        while stack:
            node, ancestors = stack.pop()
            if not node.placeholder and (
                needle in node.name.lower() or needle in node.type.lower()
            ):
                matches.add(node.path)
                visible.add(node.path)
                visible.update(ancestors)
            chain = ancestors + (node.path,)
            stack.extend((child, chain) for child in node.children)

        return SearchResult(matches=matches, visible=visible)

    def filter_tree(self, tree: TreeNode, query: str) -> TreeNode | None:
        """Copy of the tree keeping only visible nodes, matches flagged.

        An empty query returns the full tree; no match returns None.
        """
        if not query.strip():
            return tree

        result = self.search(tree, query)
        if tree.path not in result.visible:
            return None

        copy = self._copy(tree, result.matches)
        stack = [(tree, copy)]
        while stack:
            original, clone = stack.pop()
            for child in original.children:
                if child.path not in result.visible:
                    continue
                child_clone = self._copy(child, result.matches)
                clone.children.append(child_clone)
                stack.append((child, child_clone))
        return copy

    @staticmethod
    def _copy(node: TreeNode, matches: set[str]) -> TreeNode:
        return TreeNode(
            id=node.id,
            name=node.name,
            type=node.type,
            path=node.path,
            properties=node.properties,
            placeholder=node.placeholder,
            matched=node.path in matches,
            depth=node.depth,
        )
