"""
Tree helpers - serialization, renames and an id index over a WbsNode tree.

Trees are treated as values: `rename_node` and `apply_labels` return new
trees and share every subtree they did not touch.
"""

from dataclasses import dataclass, field
from typing import Iterator, Optional

from .models import INDENT_UNIT, WbsNode


def iter_nodes(root: WbsNode, include_virtual: bool = False) -> Iterator[WbsNode]:
    """Pre-order walk."""
    stack = [root]
    while stack:
        node = stack.pop()
        if include_virtual or not node.virtual:
            yield node
        stack.extend(reversed(node.children))


def count_nodes(root: WbsNode) -> int:
    """Number of displayed (non-virtual) nodes."""
    return sum(1 for _ in iter_nodes(root))


def visual_root(root: WbsNode) -> WbsNode:
    """The node shown at the top of the diagram.

    A virtual root with a single child is replaced by that child; ids and
    levels are left as parsed.
    """
    if root.virtual and len(root.children) == 1:
        return root.children[0]
    return root


def to_outline(root: WbsNode) -> str:
    """
    Serialize a tree to indented outline text.

    Each displayed node becomes one line, indented by INDENT_UNIT per depth.
    The virtual root emits nothing and its children start at depth 0, so
    the output parses back into the same shape.
    """
    lines = []
    stack = [(root, 0)]
    while stack:
        node, depth = stack.pop()
        if node.virtual:
            child_depth = depth
        else:
            lines.append(f"{INDENT_UNIT * depth}{node.label}")
            child_depth = depth + 1
        stack.extend((child, child_depth) for child in reversed(node.children))
    return "\n".join(lines)


def find_path(root: WbsNode, node_id: str) -> Optional[list[WbsNode]]:
    """Nodes from `root` down to the node with `node_id`, or None."""
    stack = [(root, [root])]
    while stack:
        node, path = stack.pop()
        if node.id == node_id:
            return path
        for child in reversed(node.children):
            stack.append((child, path + [child]))
    return None


def rename_node(root: WbsNode, node_id: str, new_label: str) -> WbsNode:
    """
    Return a tree with one node relabeled.

    Only the nodes from the root to the target are copied; all other
    subtrees are shared with the input. An unknown id returns `root`.
    """
    path = find_path(root, node_id)
    if path is None:
        return root

    target = path[-1]
    replacement = target.model_copy(
        update={"label": new_label, "children": list(target.children)}
    )
    for parent, child in zip(reversed(path[:-1]), reversed(path[1:])):
        children = [replacement if c is child else c for c in parent.children]
        replacement = parent.model_copy(update={"children": children})
    return replacement


def apply_labels(root: WbsNode, labels: dict[str, str]) -> WbsNode:
    """Return a tree whose labels are taken from `labels` where present."""

    def visit(node: WbsNode) -> WbsNode:
        children = [visit(child) for child in node.children]
        label = labels.get(node.id, node.label) if not node.virtual else node.label
        unchanged = label == node.label and all(
            new is old for new, old in zip(children, node.children)
        )
        if unchanged:
            return node
        return node.model_copy(update={"label": label, "children": children})

    return visit(root)


@dataclass
class IndexEntry:
    node: WbsNode
    parent_id: Optional[str] = None
    child_ids: list[str] = field(default_factory=list)


class TreeIndex:
    """
    Flat id -> entry table over a tree.

    Parent and children are stored as ids, which gives O(1) lookups for the
    diagram engine. Virtual nodes are left out; their children have no
    parent.
    """

    def __init__(self, root: WbsNode):
        self._entries: dict[str, IndexEntry] = {}
        self._order: list[str] = []

        stack: list[tuple[WbsNode, Optional[str]]] = [(root, None)]
        while stack:
            node, parent_id = stack.pop()
            own_parent = parent_id
            if not node.virtual:
                self._entries[node.id] = IndexEntry(node=node, parent_id=parent_id)
                self._order.append(node.id)
                if parent_id is not None:
                    self._entries[parent_id].child_ids.append(node.id)
                own_parent = node.id
            stack.extend((child, own_parent) for child in reversed(node.children))

    def __contains__(self, node_id: str) -> bool:
        return node_id in self._entries

    def __len__(self) -> int:
        return len(self._order)

    def ids(self) -> list[str]:
        """All ids in pre-order."""
        return list(self._order)

    def get(self, node_id: str) -> Optional[WbsNode]:
        entry = self._entries.get(node_id)
        return entry.node if entry else None

    def parent(self, node_id: str) -> Optional[str]:
        entry = self._entries.get(node_id)
        return entry.parent_id if entry else None

    def children(self, node_id: str) -> list[str]:
        entry = self._entries.get(node_id)
        return list(entry.child_ids) if entry else []

    def has_children(self, node_id: str) -> bool:
        entry = self._entries.get(node_id)
        return bool(entry and entry.child_ids)

    def descendants(self, node_id: str) -> list[str]:
        """Strict descendants in pre-order."""
        result = []
        stack = list(reversed(self.children(node_id)))
        while stack:
            current = stack.pop()
            result.append(current)
            stack.extend(reversed(self._entries[current].child_ids))
        return result

    def ancestors(self, node_id: str) -> list[str]:
        """Proper ancestors, nearest first."""
        result = []
        current = self.parent(node_id)
        while current is not None:
            result.append(current)
            current = self.parent(current)
        return result

    def roots(self) -> list[str]:
        return [node_id for node_id in self._order if self._entries[node_id].parent_id is None]
