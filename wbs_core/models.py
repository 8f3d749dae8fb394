"""
Core data models for WBS outlines and their diagrams.

These models define the canonical schema shared by the parser, the
diagram engine and the API:
- WbsNode, the parsed tree (path ids, normalized levels, ordered children)
- Node/edge elements flattened from a tree for rendering
- Positions, per-node style overrides and undo snapshots
- Request models used by the REST API

Positions are node centers in layout-independent model coordinates.
"""

from enum import Enum
from typing import Optional, Any
from pydantic import BaseModel, Field, model_validator


ROOT_ID = "root"
INDENT_UNIT = "  "


class LayoutMode(str, Enum):
    """Layout modes understood by layout adapters."""
    HORIZONTAL = "horizontal"
    VERTICAL = "vertical"
    RADIAL = "radial"


class WbsNode(BaseModel):
    """
    A node of a parsed work breakdown structure.

    `id` is either a dot path of 1-based sibling indices ("1.2.3") or, for
    coded tables, the literal code. `level` is always recomputed by the
    parser after the tree is linked. `virtual` marks the sentinel root the
    indentation parser wraps top-level lines in; it is never displayed or
    serialized.
    """
    id: str
    label: str
    level: int = 0
    children: list["WbsNode"] = Field(default_factory=list)
    virtual: bool = False

    def is_leaf(self) -> bool:
        return not self.children

    def find(self, node_id: str) -> Optional["WbsNode"]:
        """Depth-first lookup by id."""
        stack = [self]
        while stack:
            node = stack.pop()
            if node.id == node_id:
                return node
            stack.extend(reversed(node.children))
        return None


class Position(BaseModel):
    """Center of a node in model coordinates."""
    x: float = 0.0
    y: float = 0.0


class NodeElement(BaseModel):
    """A flattened node as handed to a render surface."""
    id: str
    label: str
    level: int
    parent_id: Optional[str] = None
    width: float = 240
    height: float = 72


class EdgeElement(BaseModel):
    """
    Parent to child connection.

    The id is always "<source>-<target>". Accepts `from`/`to` on input.
    """
    id: str = ""
    source: str
    target: str
    level: int = 1

    @model_validator(mode='before')
    @classmethod
    def fill_defaults(cls, data: Any) -> Any:
        if isinstance(data, dict):
            if 'from' in data and 'source' not in data:
                data['source'] = data.pop('from')
            if 'to' in data and 'target' not in data:
                data['target'] = data.pop('to')
            if not data.get('id') and 'source' in data and 'target' in data:
                data['id'] = f"{data['source']}-{data['target']}"
        return data


class NodeStyleOverride(BaseModel):
    """Per-node size override set by auto-fit or manual resize."""
    width: Optional[float] = None
    text_wrap_width: Optional[float] = None

    def is_empty(self) -> bool:
        return self.width is None and self.text_wrap_width is None


class Snapshot(BaseModel):
    """
    Everything needed to restore the visible diagram, selection excepted.

    Snapshots are deep copies: nothing in a snapshot is shared with the
    live engine state.
    """
    positions: dict[str, Position] = Field(default_factory=dict)
    labels: dict[str, str] = Field(default_factory=dict)
    style_overrides: dict[str, NodeStyleOverride] = Field(default_factory=dict)
    collapsed_ids: list[str] = Field(default_factory=list)


class Viewport(BaseModel):
    """Pan and zoom reported by the render surface."""
    pan_x: float = 0.0
    pan_y: float = 0.0
    zoom: float = 1.0

    def to_screen(self, x: float, y: float) -> tuple[float, float]:
        return (x * self.zoom + self.pan_x, y * self.zoom + self.pan_y)

    def to_model(self, sx: float, sy: float) -> tuple[float, float]:
        return ((sx - self.pan_x) / self.zoom, (sy - self.pan_y) / self.zoom)


# Fill, border and edge colours per level. Levels past the table reuse the
# last entry.
LEVEL_PALETTE: dict[int, dict[str, str]] = {
    0: {"fill": "#dbeafe", "border": "#93c5fd", "edge": "#3b82f6"},
    1: {"fill": "#dbeafe", "border": "#93c5fd", "edge": "#3b82f6"},
    2: {"fill": "#dcfce7", "border": "#86efac", "edge": "#22c55e"},
    3: {"fill": "#fef9c3", "border": "#fde68a", "edge": "#eab308"},
    4: {"fill": "#fee2e2", "border": "#fca5a5", "edge": "#ef4444"},
    5: {"fill": "#fef9c3", "border": "#fde68a", "edge": "#eab308"},
}


def palette_for_level(level: int) -> dict[str, str]:
    """Colours for a node (or the edge leading into it) at `level`."""
    return LEVEL_PALETTE[min(max(level, 0), max(LEVEL_PALETTE))]


class DiagramExport(BaseModel):
    """
    Full-state export handed to external encoders (image, JSON).
    """
    title: str = "WBS"
    layout_mode: str = LayoutMode.VERTICAL.value
    style: dict[str, Any] = Field(default_factory=dict)
    grid_size: int = 20
    snap_enabled: bool = True
    palette: dict[int, dict[str, str]] = Field(default_factory=lambda: dict(LEVEL_PALETTE))
    visual_root_id: Optional[str] = None
    nodes: list[NodeElement] = Field(default_factory=list)
    edges: list[EdgeElement] = Field(default_factory=list)
    positions: dict[str, Position] = Field(default_factory=dict)
    style_overrides: dict[str, NodeStyleOverride] = Field(default_factory=dict)
    collapsed_ids: list[str] = Field(default_factory=list)
    bounds: dict[str, float] = Field(default_factory=dict)
    outline: str = ""

    def to_json_dict(self) -> dict:
        """Convert to JSON-serializable dict with string palette keys."""
        data = self.model_dump()
        data["palette"] = {str(k): v for k, v in self.palette.items()}
        data["style_overrides"] = {
            node_id: o.model_dump(exclude_none=True)
            for node_id, o in self.style_overrides.items()
        }
        return data


# --- Request models (for API) ---

class BuildRequest(BaseModel):
    """Request to parse input and (re)build the diagram."""
    text: Optional[str] = None
    records: Optional[list[dict[str, Any]]] = None
    table: Optional[list[list[Any]]] = None
    layout_mode: Optional[LayoutMode] = None
    title: Optional[str] = None
    make_first_line_root: bool = False


class RenameRequest(BaseModel):
    label: str


class ResizeRequest(BaseModel):
    width: float


class DragStartRequest(BaseModel):
    node_id: str


class DragMoveRequest(BaseModel):
    x: float
    y: float


class SelectionRequest(BaseModel):
    node_ids: list[str] = Field(default_factory=list)
    additive: bool = False


class NudgeRequest(BaseModel):
    key: str
    shift: bool = False
    focus_in_text_field: bool = False


class ViewportRequest(BaseModel):
    pan_x: float = 0.0
    pan_y: float = 0.0
    zoom: float = 1.0


class StyleRequest(BaseModel):
    font_size: Optional[int] = Field(default=None, ge=8, le=48)
    box_width: Optional[float] = Field(default=None, ge=140, le=560)
    box_height: Optional[float] = Field(default=None, ge=48, le=260)


class LayoutRequest(BaseModel):
    mode: LayoutMode


class OutlineSaveRequest(BaseModel):
    text: Optional[str] = None


class ImportRequest(BaseModel):
    """Records from a spreadsheet reader, converted to outline text."""
    records: list[dict[str, Any]] = Field(default_factory=list)


class PasteRequest(BaseModel):
    """Clipboard contents; HTML lists win over plain text."""
    html: Optional[str] = None
    plain: Optional[str] = None
