"""
Diagram Engine - interactive state for a WBS diagram.

This module implements:
- Flattening a parsed tree into node/edge elements with default sizes
- Positions from a pluggable layout adapter, grid snapping under pan/zoom
- Group drag (selection, or a node plus its whole subtree)
- Collapse/expand, auto-fit width, manual resize, keyboard nudge
- Renames routed back into the tree and its outline text
- Linear undo/redo history using full-state snapshots
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from wbs_core.layout import LayoutAdapter, TreeLayoutAdapter, diagram_bounds, snap_top_left
from wbs_core.measure import PillowTextMeasurer, TextMeasurer
from wbs_core.models import (
    DiagramExport,
    EdgeElement,
    LayoutMode,
    LEVEL_PALETTE,
    NodeElement,
    NodeStyleOverride,
    Position,
    Snapshot,
    Viewport,
    WbsNode,
)
from wbs_core.settings import EngineSettings, StyleSettings, get_settings
from wbs_core.tree import TreeIndex, apply_labels, rename_node, to_outline, visual_root

logger = logging.getLogger(__name__)


ARROW_KEYS = {
    "ArrowUp": (0, -1),
    "ArrowDown": (0, 1),
    "ArrowLeft": (-1, 0),
    "ArrowRight": (1, 0),
}

DIRECTIONS = {
    "up": (0, -1),
    "down": (0, 1),
    "left": (-1, 0),
    "right": (1, 0),
}

EXPORT_MARGIN = 24


@dataclass
class _DragSession:
    anchor_id: str
    members: list[str]
    origin: dict[str, Position]  # Grab-time positions
    baseline: Snapshot
    moved: bool = False


@dataclass
class _NudgeSession:
    members: list[str]
    baseline: Snapshot
    steps: int = 0


class DiagramEngine:
    """
    Owns everything about a diagram that changes through interaction.

    The history system works via snapshots:
    - Each mutation pushes a snapshot taken just before it
    - Undo restores the previous snapshot and moves the current state to
      the future stack
    - Redo re-applies a snapshot from the future stack
    - Any new mutation clears the future stack

    Operations on unknown node ids are no-ops that return False.
    """

    def __init__(
        self,
        settings: Optional[EngineSettings] = None,
        layout_adapter: Optional[LayoutAdapter] = None,
        measurer: Optional[TextMeasurer] = None,
    ):
        self.settings = settings or get_settings()
        self._layout = layout_adapter or TreeLayoutAdapter()
        self._measurer = measurer or PillowTextMeasurer()

        self._tree: Optional[WbsNode] = None
        self._index: Optional[TreeIndex] = None
        self._title = "WBS"
        self._layout_mode = LayoutMode.VERTICAL
        self._style = self.settings.style.model_copy()
        self._viewport = Viewport()

        self._nodes: dict[str, NodeElement] = {}  # Pre-order
        self._edges: list[EdgeElement] = []
        self._positions: dict[str, Position] = {}
        self._overrides: dict[str, NodeStyleOverride] = {}
        self._collapsed: set[str] = set()
        self._selection: set[str] = set()

        self._history: list[Snapshot] = []  # Past states
        self._future: list[Snapshot] = []   # Undone states (for redo)
        self._max_history = self.settings.history.max_history

        self._drag: Optional[_DragSession] = None
        self._nudge: Optional[_NudgeSession] = None
        self._on_change_callbacks: list[Callable] = []

    # --- Properties ---

    @property
    def tree(self) -> Optional[WbsNode]:
        return self._tree

    @property
    def is_built(self) -> bool:
        return self._tree is not None

    @property
    def title(self) -> str:
        return self._title

    @property
    def layout_mode(self) -> LayoutMode:
        return self._layout_mode

    @property
    def style(self) -> StyleSettings:
        return self._style

    @property
    def viewport(self) -> Viewport:
        return self._viewport

    @property
    def outline_text(self) -> str:
        """The tree serialized back to outline text."""
        return to_outline(self._tree) if self._tree is not None else ""

    @property
    def can_undo(self) -> bool:
        return len(self._history) > 0

    @property
    def can_redo(self) -> bool:
        return len(self._future) > 0

    @property
    def is_dragging(self) -> bool:
        return self._drag is not None

    @property
    def is_nudging(self) -> bool:
        return self._nudge is not None

    @property
    def _snap_pitch(self) -> float:
        grid = self.settings.grid
        return grid.grid_size if grid.snap_enabled else 0

    # --- Change Callbacks ---

    def on_change(self, callback: Callable):
        """Register a callback for diagram changes (once per callback)."""
        if callback not in self._on_change_callbacks:
            self._on_change_callbacks.append(callback)

    def _notify_change(self):
        for callback in self._on_change_callbacks:
            callback()

    # --- Lookups ---

    def get_node(self, node_id: str) -> Optional[NodeElement]:
        return self._nodes.get(node_id)

    def get_position(self, node_id: str) -> Optional[Position]:
        return self._positions.get(node_id)

    def nodes(self) -> list[NodeElement]:
        return list(self._nodes.values())

    def edges(self) -> list[EdgeElement]:
        return list(self._edges)

    def positions(self) -> dict[str, Position]:
        return {k: Position(x=p.x, y=p.y) for k, p in self._positions.items()}

    def style_override(self, node_id: str) -> Optional[NodeStyleOverride]:
        return self._overrides.get(node_id)

    def collapsed_ids(self) -> set[str]:
        return set(self._collapsed)

    def selected_ids(self) -> list[str]:
        return [node_id for node_id in self._nodes if node_id in self._selection]

    def descendants(self, node_id: str) -> list[str]:
        return self._index.descendants(node_id) if self._index else []

    # --- Build ---

    def build(
        self,
        tree: WbsNode,
        layout_mode: Optional[LayoutMode | str] = None,
        title: Optional[str] = None,
    ):
        """
        Flatten a tree into elements and place them.

        Stored positions are reused when the layout mode is unchanged and
        every node of the new tree already has one. Collapse state and
        size overrides carry over for ids that still exist. History and
        any gesture in progress are discarded.
        """
        mode = LayoutMode(layout_mode) if layout_mode is not None else self._layout_mode
        index = TreeIndex(tree)

        reuse = (
            self._tree is not None
            and mode == self._layout_mode
            and len(index) > 0
            and all(node_id in self._positions for node_id in index.ids())
        )

        self._tree = tree
        self._index = index
        self._layout_mode = mode
        top = visual_root(tree)
        self._title = title or (top.label if not top.virtual else "WBS")
        self._drag = None
        self._nudge = None
        self._history.clear()
        self._future.clear()

        ids = set(index.ids())
        self._overrides = {k: v for k, v in self._overrides.items() if k in ids}
        self._collapsed = {k for k in self._collapsed if k in ids and index.has_children(k)}
        self._selection = {k for k in self._selection if k in ids}

        self._nodes = {}
        self._edges = []
        for node_id in index.ids():
            node = index.get(node_id)
            parent_id = index.parent(node_id)
            self._nodes[node_id] = NodeElement(
                id=node_id,
                label=node.label,
                level=node.level,
                parent_id=parent_id,
                width=self._effective_width(node_id),
                height=self._style.box_height,
            )
            if parent_id is not None:
                self._edges.append(EdgeElement(source=parent_id, target=node_id, level=node.level))

        if reuse:
            self._positions = {k: self._positions[k] for k in ids}
            logger.debug("Reusing stored positions for %d nodes", len(ids))
        else:
            self._place_all()

        self._notify_change()

    def _place_all(self):
        """Ask the layout adapter for a position per node."""
        placed = self._layout.place(list(self._nodes.values()), list(self._edges), self._layout_mode)
        positions = {}
        for node_id in self._nodes:
            position = placed.get(node_id)
            if position is None:
                logger.warning("Layout returned no position for %s, using origin", node_id)
                position = Position()
            positions[node_id] = Position(x=position.x, y=position.y)
        self._positions = positions

    def _require_built(self):
        if self._tree is None:
            raise ValueError("No diagram built")

    # --- History Management ---

    def capture_snapshot(self) -> Snapshot:
        """Deep copy of positions, labels, overrides and collapse state."""
        return Snapshot(
            positions={k: Position(x=p.x, y=p.y) for k, p in self._positions.items()},
            labels={k: n.label for k, n in self._nodes.items()},
            style_overrides={k: o.model_copy() for k, o in self._overrides.items()},
            collapsed_ids=sorted(self._collapsed),
        )

    def _save_to_history(self, snapshot: Optional[Snapshot] = None):
        """Push a pre-mutation snapshot and invalidate redo."""
        if self._tree is None:
            return

        self._future.clear()
        self._history.append(snapshot if snapshot is not None else self.capture_snapshot())

        # Trim history if too long
        if len(self._history) > self._max_history:
            self._history.pop(0)

    def _apply_snapshot(self, snapshot: Snapshot):
        """Replace positions, labels, overrides and collapse state wholesale."""
        self._positions = {
            k: Position(x=p.x, y=p.y) for k, p in snapshot.positions.items() if k in self._nodes
        }
        self._overrides = {
            k: o.model_copy() for k, o in snapshot.style_overrides.items() if k in self._nodes
        }
        self._collapsed = {k for k in snapshot.collapsed_ids if k in self._nodes}

        for node_id, element in self._nodes.items():
            element.label = snapshot.labels.get(node_id, element.label)
            element.width = self._effective_width(node_id)
        if self._tree is not None:
            self._tree = apply_labels(
                self._tree, {k: n.label for k, n in self._nodes.items()}
            )
            self._index = TreeIndex(self._tree)

    def _finish_gestures(self):
        """Commit a drag or nudge that is still open."""
        if self._drag is not None:
            self.end_drag()
        if self._nudge is not None:
            self.end_nudge()

    # --- Undo/Redo ---

    def undo(self) -> bool:
        """Undo the last action. Returns False when there is nothing to undo."""
        self._finish_gestures()
        if not self.can_undo:
            return False

        self._future.append(self.capture_snapshot())
        self._apply_snapshot(self._history.pop())
        self._notify_change()
        return True

    def redo(self) -> bool:
        """Redo the last undone action."""
        self._finish_gestures()
        if not self.can_redo:
            return False

        self._history.append(self.capture_snapshot())
        self._apply_snapshot(self._future.pop())
        self._notify_change()
        return True

    # --- Sizes ---

    def _default_width(self) -> float:
        return self._style.box_width

    def _effective_width(self, node_id: str) -> float:
        override = self._overrides.get(node_id)
        if override is not None and override.width is not None:
            return override.width
        return self._default_width()

    def text_wrap_width(self, node_id: str) -> Optional[float]:
        """Wrap width for a node's label (override or the global default)."""
        if node_id not in self._nodes:
            return None
        override = self._overrides.get(node_id)
        if override is not None and override.text_wrap_width is not None:
            return override.text_wrap_width
        return self._style.text_max_width

    def _clamp_width(self, width: float) -> float:
        size = self.settings.size
        return min(max(width, size.min_width), size.max_width)

    def fit_width(self, label: str) -> float:
        """Box width that fits `label` on one line, clamped to the size band."""
        size = self.settings.size
        measured = self._measurer.measure(label, self._style.font_size)
        return self._clamp_width(measured + 2 * size.label_padding)

    def _set_width(self, node_id: str, width: float) -> bool:
        """Set a width override; returns False if nothing changed."""
        inset = self.settings.size.text_wrap_inset
        new = NodeStyleOverride(width=width, text_wrap_width=width - inset)
        if self._overrides.get(node_id) == new:
            return False
        self._overrides[node_id] = new
        self._nodes[node_id].width = width
        return True

    def auto_fit(self, node_id: str) -> bool:
        """Fit one node's width to its label."""
        element = self._nodes.get(node_id)
        if element is None:
            return False

        self._finish_gestures()
        width = self.fit_width(element.label)
        baseline = self.capture_snapshot()
        if not self._set_width(node_id, width):
            return False

        self._save_to_history(baseline)
        self._notify_change()
        return True

    def auto_fit_all(self) -> bool:
        """Fit every node's width to its label, as one undoable action."""
        self._finish_gestures()
        baseline = self.capture_snapshot()
        changed = False
        for node_id, element in self._nodes.items():
            changed = self._set_width(node_id, self.fit_width(element.label)) or changed

        if not changed:
            return False
        self._save_to_history(baseline)
        self._notify_change()
        return True

    def resize_node(self, node_id: str, width: float) -> bool:
        """Manual resize; the width is clamped like auto-fit."""
        if node_id not in self._nodes:
            return False

        self._finish_gestures()
        baseline = self.capture_snapshot()
        if not self._set_width(node_id, self._clamp_width(width)):
            return False
        self._save_to_history(baseline)
        self._notify_change()
        return True

    def reset_size(self, node_id: str) -> bool:
        """Clear a node's size override back to the global default."""
        if node_id not in self._overrides:
            return False

        self._finish_gestures()
        self._save_to_history()
        del self._overrides[node_id]
        self._nodes[node_id].width = self._default_width()
        self._notify_change()
        return True

    def reset_all_sizes(self) -> bool:
        if not self._overrides:
            return False

        self._finish_gestures()
        self._save_to_history()
        self._overrides.clear()
        for element in self._nodes.values():
            element.width = self._default_width()
        self._notify_change()
        return True

    # --- Cosmetic style (not undoable) ---

    def update_style(
        self,
        font_size: Optional[int] = None,
        box_width: Optional[float] = None,
        box_height: Optional[float] = None,
    ) -> StyleSettings:
        """
        Change global font/box settings in place.

        Positions, collapse state, selection and overrides are kept.
        Raises ValueError (pydantic.ValidationError) for out-of-range values.
        """
        values = self._style.model_dump()
        for key, value in (("font_size", font_size), ("box_width", box_width), ("box_height", box_height)):
            if value is not None:
                values[key] = value
        self._style = StyleSettings(**values)

        for node_id, element in self._nodes.items():
            element.width = self._effective_width(node_id)
            element.height = self._style.box_height

        self._notify_change()
        return self._style

    # --- Viewport ---

    def set_viewport(self, pan_x: float = 0.0, pan_y: float = 0.0, zoom: float = 1.0) -> Viewport:
        """Record the render surface's pan and zoom."""
        if zoom <= 0:
            raise ValueError(f"Zoom must be positive, got {zoom}")
        self._viewport = Viewport(pan_x=pan_x, pan_y=pan_y, zoom=zoom)
        return self._viewport

    # --- Layout ---

    def set_layout_mode(self, mode: LayoutMode | str) -> bool:
        """Switch layout mode and re-place every node."""
        mode = LayoutMode(mode)
        if self._tree is None or mode == self._layout_mode:
            return False

        self._finish_gestures()
        self._save_to_history()
        self._layout_mode = mode
        self._place_all()
        self._notify_change()
        return True

    def reset_layout(self) -> bool:
        """Discard stored positions and run the layout adapter again."""
        if not self._nodes:
            return False

        self._finish_gestures()
        self._save_to_history()
        self._place_all()
        self._notify_change()
        return True

    # --- Selection (not part of history) ---

    def select(self, node_ids: list[str], additive: bool = False) -> list[str]:
        known = {node_id for node_id in node_ids if node_id in self._nodes}
        self._selection = (self._selection | known) if additive else known
        self._notify_change()
        return self.selected_ids()

    def toggle_selection(self, node_id: str) -> bool:
        if node_id not in self._nodes:
            return False
        self._selection ^= {node_id}
        self._notify_change()
        return True

    def clear_selection(self):
        self._selection.clear()
        self._notify_change()

    def select_all(self) -> list[str]:
        return self.select(self.visible_node_ids())

    # --- Collapse/expand ---

    def is_collapsed(self, node_id: str) -> bool:
        return node_id in self._collapsed

    def _can_collapse(self, node_id: str) -> bool:
        return node_id in self._nodes and self._index is not None and self._index.has_children(node_id)

    def toggle_collapse(self, node_id: str) -> bool:
        """Hide or reveal a node's descendants."""
        if not self._can_collapse(node_id):
            return False

        self._finish_gestures()
        self._save_to_history()
        self._collapsed ^= {node_id}
        self._notify_change()
        return True

    def collapse(self, node_id: str) -> bool:
        if node_id in self._collapsed:
            return False
        return self.toggle_collapse(node_id)

    def expand(self, node_id: str) -> bool:
        if node_id not in self._collapsed:
            return False
        return self.toggle_collapse(node_id)

    def hidden_ids(self) -> set[str]:
        """Nodes below a collapsed ancestor."""
        hidden: set[str] = set()
        for node_id, element in self._nodes.items():
            parent = element.parent_id
            if parent is not None and (parent in hidden or parent in self._collapsed):
                hidden.add(node_id)
        return hidden

    def is_hidden(self, node_id: str) -> bool:
        return node_id in self.hidden_ids()

    def visible_node_ids(self) -> list[str]:
        hidden = self.hidden_ids()
        return [node_id for node_id in self._nodes if node_id not in hidden]

    def visible_edges(self) -> list[EdgeElement]:
        hidden = self.hidden_ids()
        return [e for e in self._edges if e.target not in hidden]

    # --- Group drag ---

    def drag_group(self, node_id: str) -> list[str]:
        """The selection if it contains `node_id`, else the node and its subtree."""
        if node_id not in self._nodes:
            return []
        if node_id in self._selection:
            return self.selected_ids()
        return [node_id] + self.descendants(node_id)

    def begin_drag(self, node_id: str) -> bool:
        """Grab a node. The undo baseline is captured before any movement."""
        if node_id not in self._nodes:
            return False
        self._finish_gestures()

        members = self.drag_group(node_id)
        self._drag = _DragSession(
            anchor_id=node_id,
            members=members,
            origin={m: Position(x=self._positions[m].x, y=self._positions[m].y) for m in members},
            baseline=self.capture_snapshot(),
        )
        return True

    def drag_to(self, x: float, y: float) -> bool:
        """Move the anchor to (x, y); every other member follows rigidly."""
        session = self._drag
        if session is None:
            return False

        anchor = session.origin[session.anchor_id]
        dx = x - anchor.x
        dy = y - anchor.y
        for member in session.members:
            start = session.origin[member]
            self._positions[member] = Position(x=start.x + dx, y=start.y + dy)
        if dx or dy:
            session.moved = True
        self._notify_change()
        return True

    def drag_by(self, dx: float, dy: float) -> bool:
        """Move the group by a delta relative to where it was grabbed."""
        session = self._drag
        if session is None:
            return False
        anchor = session.origin[session.anchor_id]
        return self.drag_to(anchor.x + dx, anchor.y + dy)

    def _snap_members(self, members: list[str]):
        pitch = self._snap_pitch
        if pitch <= 0:
            return
        for member in members:
            element = self._nodes[member]
            self._positions[member] = snap_top_left(
                self._positions[member], element.width, element.height, self._viewport, pitch
            )

    def _commit_gesture(self, members: list[str], baseline: Snapshot) -> bool:
        changed = any(
            baseline.positions.get(m) != self._positions.get(m) for m in members
        )
        if changed:
            self._save_to_history(baseline)
        self._notify_change()
        return changed

    def end_drag(self) -> bool:
        """
        Release the drag: snap every member to the grid and record one
        history entry. Returns False when nothing moved.
        """
        session = self._drag
        if session is None:
            return False
        self._drag = None

        if not session.moved:
            return False
        self._snap_members(session.members)
        return self._commit_gesture(session.members, session.baseline)

    # --- Keyboard nudge ---

    def nudge(
        self,
        direction: str,
        large: bool = False,
        focus_in_text_field: bool = False,
    ) -> bool:
        """
        Move the selection one grid step (in screen space) in `direction`.

        Key repeats extend the same nudge; `end_nudge` commits it as a
        single history entry.
        """
        if focus_in_text_field or not self._selection or direction not in DIRECTIONS:
            return False

        if self._nudge is None:
            if self._drag is not None:
                self.end_drag()
            self._nudge = _NudgeSession(
                members=self.selected_ids(), baseline=self.capture_snapshot()
            )

        grid = self.settings.grid
        step_px = grid.grid_size if grid.grid_size > 0 else 1
        if large:
            step_px *= grid.nudge_multiplier
        step = step_px / self._viewport.zoom

        ux, uy = DIRECTIONS[direction]
        for member in self._nudge.members:
            p = self._positions[member]
            self._positions[member] = Position(x=p.x + ux * step, y=p.y + uy * step)
        self._nudge.steps += 1
        self._notify_change()
        return True

    def end_nudge(self) -> bool:
        """Snap the nudged nodes and record the whole nudge as one action."""
        session = self._nudge
        if session is None:
            return False
        self._nudge = None

        self._snap_members(session.members)
        return self._commit_gesture(session.members, session.baseline)

    def handle_key_down(
        self, key: str, shift: bool = False, focus_in_text_field: bool = False
    ) -> bool:
        """Arrow keys nudge the selection; returns True if the key was used."""
        if key not in ARROW_KEYS:
            return False
        direction = next(d for d, v in DIRECTIONS.items() if v == ARROW_KEYS[key])
        return self.nudge(direction, large=shift, focus_in_text_field=focus_in_text_field)

    def handle_key_up(self, key: str) -> bool:
        if key not in ARROW_KEYS:
            return False
        return self.end_nudge()

    # --- Rename ---

    def rename_node(self, node_id: str, label: str) -> bool:
        """
        Rename a node and update the tree it came from.

        Empty or unchanged labels are ignored and leave no history entry.
        """
        element = self._nodes.get(node_id)
        if element is None or self._tree is None:
            return False

        new_label = (label or "").replace("\r", " ").replace("\n", " ").strip()
        if not new_label or new_label == element.label:
            return False

        self._finish_gestures()
        self._save_to_history()
        element.label = new_label
        self._tree = rename_node(self._tree, node_id, new_label)
        self._index = TreeIndex(self._tree)
        self._notify_change()
        return True

    # --- State & export ---

    def visual_root_id(self) -> Optional[str]:
        if self._tree is None:
            return None
        top = visual_root(self._tree)
        return None if top.virtual else top.id

    def export_state(self) -> DiagramExport:
        """Everything an external encoder needs to draw the diagram."""
        self._require_built()
        return DiagramExport(
            title=self._title,
            layout_mode=self._layout_mode.value,
            style=self._style.to_dict(),
            grid_size=self.settings.grid.grid_size,
            snap_enabled=self.settings.grid.snap_enabled,
            palette=dict(LEVEL_PALETTE),
            visual_root_id=self.visual_root_id(),
            nodes=[n.model_copy() for n in self._nodes.values()],
            edges=[e.model_copy() for e in self._edges],
            positions=self.positions(),
            style_overrides={k: o.model_copy() for k, o in self._overrides.items()},
            collapsed_ids=sorted(self._collapsed),
            bounds=diagram_bounds(
                [self._nodes[i] for i in self.visible_node_ids()],
                self._positions,
                margin=EXPORT_MARGIN,
            ),
            outline=self.outline_text,
        )

    def get_state(self) -> dict:
        """Get the full current state for API responses."""
        if self._tree is None:
            return {
                "diagram": None,
                "can_undo": False,
                "can_redo": False
            }

        return {
            "diagram": self.export_state().to_json_dict(),
            "viewport": self._viewport.model_dump(),
            "selected_ids": self.selected_ids(),
            "visible_node_ids": self.visible_node_ids(),
            "dragging": self.is_dragging,
            "nudging": self.is_nudging,
            "can_undo": self.can_undo,
            "can_redo": self.can_redo
        }


# Global instance for the application
diagram_engine = DiagramEngine()
