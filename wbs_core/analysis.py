"""
Tree analysis - summaries of a parsed WBS tree.

Used by the API and MCP tools to describe an outline without walking the
tree client-side.
"""

from collections import defaultdict
from dataclasses import dataclass, field

from .models import WbsNode
from .tree import iter_nodes, visual_root


@dataclass
class BranchInfo:
    """Size of one top-level branch."""
    node_id: str
    label: str
    descendants: int = 0
    leaves: int = 0


@dataclass
class TreeSummary:
    """Complete summary of a tree's structure."""
    root_label: str
    total_nodes: int
    leaf_count: int
    max_depth: int
    nodes_by_level: dict[int, int]
    widest_level: int
    branches: list[BranchInfo] = field(default_factory=list)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "root_label": self.root_label,
            "total_nodes": self.total_nodes,
            "leaf_count": self.leaf_count,
            "max_depth": self.max_depth,
            "nodes_by_level": {str(k): v for k, v in self.nodes_by_level.items()},
            "widest_level": self.widest_level,
            "branches": [
                {
                    "id": b.node_id,
                    "label": b.label,
                    "descendants": b.descendants,
                    "leaves": b.leaves
                }
                for b in self.branches
            ]
        }


def _branch_info(node: WbsNode) -> BranchInfo:
    info = BranchInfo(node_id=node.id, label=node.label)
    for descendant in iter_nodes(node):
        if descendant is node:
            continue
        info.descendants += 1
        if descendant.is_leaf():
            info.leaves += 1
    return info


def summarize_tree(root: WbsNode) -> TreeSummary:
    """
    Summarize a tree: node counts per level, depth, leaves and the size of
    each branch directly under the visual root.

    Depth is counted from the visual root (0 = the visual root itself).
    """
    top = visual_root(root)
    base_level = top.level

    nodes_by_level: dict[int, int] = defaultdict(int)
    total = 0
    leaves = 0
    for node in iter_nodes(top):
        total += 1
        nodes_by_level[node.level - base_level] += 1
        if node.is_leaf():
            leaves += 1

    by_level = dict(sorted(nodes_by_level.items()))
    widest = max(by_level, key=lambda lvl: (by_level[lvl], -lvl)) if by_level else 0

    return TreeSummary(
        root_label="" if top.virtual else top.label,
        total_nodes=total,
        leaf_count=leaves,
        max_depth=max(by_level) if by_level else 0,
        nodes_by_level=by_level,
        widest_level=widest,
        branches=[_branch_info(child) for child in top.children],
    )
