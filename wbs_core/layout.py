"""
Layout adapters and grid geometry for WBS diagrams.

A layout adapter receives the flattened node/edge elements and a layout
mode and returns a center position per node id. The engine treats the
adapter as a black box; TreeLayoutAdapter is the default:
- Vertical: levels top to bottom, siblings left to right
- Horizontal: levels left to right, siblings top to bottom
- Radial: the root in the middle, one ring per level

Grid snapping aligns a node's rendered top-left corner, in screen space,
to the grid pitch.
"""

import math
from typing import Protocol

from .models import EdgeElement, LayoutMode, NodeElement, Position, Viewport


# Default layout parameters
DEFAULT_START_X = 100
DEFAULT_START_Y = 100
DEFAULT_SIBLING_GAP = 40
DEFAULT_LEVEL_GAP = 80
DEFAULT_RING_SPACING = 260


class LayoutAdapter(Protocol):
    """Anything that can place elements for a layout mode."""

    def place(
        self,
        nodes: list[NodeElement],
        edges: list[EdgeElement],
        mode: LayoutMode,
    ) -> dict[str, Position]:
        ...


def _hierarchy(
    nodes: list[NodeElement], edges: list[EdgeElement]
) -> tuple[dict[str, list[str]], list[str]]:
    """Children per node (in node order) and the root ids."""
    order = {n.id: i for i, n in enumerate(nodes)}
    children: dict[str, list[str]] = {n.id: [] for n in nodes}
    has_parent: set[str] = set()

    for edge in edges:
        if edge.source in children and edge.target in children and edge.target not in has_parent:
            children[edge.source].append(edge.target)
            has_parent.add(edge.target)

    for child_ids in children.values():
        child_ids.sort(key=order.__getitem__)

    roots = [n.id for n in nodes if n.id not in has_parent]
    if not roots and nodes:
        roots = [nodes[0].id]
    return children, roots


def assign_slots(
    nodes: list[NodeElement], edges: list[EdgeElement]
) -> tuple[dict[str, float], dict[str, int], int]:
    """
    Tidy-tree slots.

    Leaves take consecutive integer slots in pre-order; each parent sits at
    the midpoint of its first and last child.

    Returns:
        (slot per id, depth per id, number of leaf slots)
    """
    children, roots = _hierarchy(nodes, edges)
    slots: dict[str, float] = {}
    depths: dict[str, int] = {}
    next_slot = 0

    for root in roots:
        # Iterative post-order; (id, depth, expanded)
        stack = [(root, 0, False)]
        while stack:
            node_id, depth, expanded = stack.pop()
            if node_id in slots:
                continue
            if expanded:
                kids = [c for c in children[node_id] if c in slots]
                if kids:
                    slots[node_id] = (slots[kids[0]] + slots[kids[-1]]) / 2
                else:
                    slots[node_id] = next_slot
                    next_slot += 1
                continue
            depths[node_id] = depth
            stack.append((node_id, depth, True))
            for child in reversed(children[node_id]):
                if child not in depths:
                    stack.append((child, depth + 1, False))

    return slots, depths, max(next_slot, 1)


class TreeLayoutAdapter:
    """
    Default layout adapter (tidy tree and radial rings).

    Spacing is derived from the largest node so boxes never overlap at
    their default size.
    """

    def __init__(
        self,
        start_x: float = DEFAULT_START_X,
        start_y: float = DEFAULT_START_Y,
        sibling_gap: float = DEFAULT_SIBLING_GAP,
        level_gap: float = DEFAULT_LEVEL_GAP,
        ring_spacing: float = DEFAULT_RING_SPACING,
    ):
        self.start_x = start_x
        self.start_y = start_y
        self.sibling_gap = sibling_gap
        self.level_gap = level_gap
        self.ring_spacing = ring_spacing

    def place(
        self,
        nodes: list[NodeElement],
        edges: list[EdgeElement],
        mode: LayoutMode,
    ) -> dict[str, Position]:
        if not nodes:
            return {}

        mode = LayoutMode(mode)
        slots, depths, slot_count = assign_slots(nodes, edges)
        max_w = max(n.width for n in nodes)
        max_h = max(n.height for n in nodes)

        positions: dict[str, Position] = {}
        for node in nodes:
            slot = slots.get(node.id, 0)
            depth = depths.get(node.id, 0)

            if mode == LayoutMode.VERTICAL:
                x = self.start_x + slot * (max_w + self.sibling_gap)
                y = self.start_y + depth * (max_h + self.level_gap)
            elif mode == LayoutMode.HORIZONTAL:
                x = self.start_x + depth * (max_w + self.level_gap)
                y = self.start_y + slot * (max_h + self.sibling_gap)
            else:
                # Radial: rings by depth, angle by slot
                angle = 2 * math.pi * slot / slot_count
                radius = depth * self.ring_spacing
                x = self.start_x + radius * math.cos(angle)
                y = self.start_y + radius * math.sin(angle)

            positions[node.id] = Position(x=x, y=y)

        return positions


def snap_value(value: float, grid_size: float) -> float:
    """Nearest multiple of `grid_size` (no-op when grid_size <= 0)."""
    if grid_size <= 0:
        return value
    return round(value / grid_size) * grid_size


def screen_top_left(
    center: Position, width: float, height: float, viewport: Viewport
) -> tuple[float, float]:
    """Screen coordinates of a node's rendered top-left corner."""
    return viewport.to_screen(center.x - width / 2, center.y - height / 2)


def snap_top_left(
    center: Position,
    width: float,
    height: float,
    viewport: Viewport,
    grid_size: float,
) -> Position:
    """
    Snap a node so its top-left corner sits on the screen grid.

    The corner is moved to the nearest grid multiple in screen space
    (after pan and zoom) and the result is converted back to a model
    center position.
    """
    if grid_size <= 0:
        return Position(x=center.x, y=center.y)

    left, top = screen_top_left(center, width, height, viewport)
    left = snap_value(left, grid_size)
    top = snap_value(top, grid_size)
    model_left, model_top = viewport.to_model(left, top)
    return Position(x=model_left + width / 2, y=model_top + height / 2)


def diagram_bounds(
    nodes: list[NodeElement],
    positions: dict[str, Position],
    margin: float = 0,
) -> dict[str, float]:
    """Bounding box of the given nodes (model coordinates), plus margin."""
    placed = [n for n in nodes if n.id in positions]
    if not placed:
        return {"x": 0.0, "y": 0.0, "width": 0.0, "height": 0.0}

    left = min(positions[n.id].x - n.width / 2 for n in placed) - margin
    top = min(positions[n.id].y - n.height / 2 for n in placed) - margin
    right = max(positions[n.id].x + n.width / 2 for n in placed) + margin
    bottom = max(positions[n.id].y + n.height / 2 for n in placed) + margin
    return {"x": left, "y": top, "width": right - left, "height": bottom - top}
