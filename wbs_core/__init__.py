"""
WBS Diagram Core - Shared models, parser, tree helpers, layout and analysis.

This module provides the pure functionality used by both the backend API
and the MCP tools. Nothing here performs file or network I/O.
"""

from .models import (
    ROOT_ID,
    INDENT_UNIT,
    # Enums
    LayoutMode,
    # Core models
    WbsNode,
    Position,
    NodeElement,
    EdgeElement,
    NodeStyleOverride,
    Snapshot,
    Viewport,
    DiagramExport,
    LEVEL_PALETTE,
    palette_for_level,
    # Request models (for API)
    BuildRequest,
    RenameRequest,
    ResizeRequest,
    DragStartRequest,
    DragMoveRequest,
    SelectionRequest,
    NudgeRequest,
    ViewportRequest,
    StyleRequest,
    LayoutRequest,
    OutlineSaveRequest,
    ImportRequest,
    PasteRequest,
)

from .parser import (
    parse,
    parse_indented,
    parse_coded_rows,
    detect_dialect,
    make_first_line_root,
    normalize_levels,
    IdGenerator,
)
from .importers import (
    SAMPLE_OUTLINE,
    rows_to_outline,
    normalize_records,
    normalize_table,
    html_list_to_outline,
)
from .tree import (
    to_outline,
    rename_node,
    apply_labels,
    visual_root,
    iter_nodes,
    count_nodes,
    TreeIndex,
)
from .layout import LayoutAdapter, TreeLayoutAdapter, snap_top_left, snap_value, diagram_bounds
from .measure import TextMeasurer, PillowTextMeasurer, HeuristicTextMeasurer
from .validation import validate_tree, ValidationIssue, IssueSeverity
from .analysis import summarize_tree, TreeSummary
from .settings import EngineSettings, StyleSettings, load_settings, get_settings

__all__ = [
    "ROOT_ID",
    "INDENT_UNIT",
    # Enums
    "LayoutMode",
    # Models
    "WbsNode",
    "Position",
    "NodeElement",
    "EdgeElement",
    "NodeStyleOverride",
    "Snapshot",
    "Viewport",
    "DiagramExport",
    "LEVEL_PALETTE",
    "palette_for_level",
    # Request models
    "BuildRequest",
    "RenameRequest",
    "ResizeRequest",
    "DragStartRequest",
    "DragMoveRequest",
    "SelectionRequest",
    "NudgeRequest",
    "ViewportRequest",
    "StyleRequest",
    "LayoutRequest",
    "OutlineSaveRequest",
    "ImportRequest",
    "PasteRequest",
    # Parsing
    "parse",
    "parse_indented",
    "parse_coded_rows",
    "detect_dialect",
    "make_first_line_root",
    "normalize_levels",
    "IdGenerator",
    # Importers
    "SAMPLE_OUTLINE",
    "rows_to_outline",
    "normalize_records",
    "normalize_table",
    "html_list_to_outline",
    # Tree
    "to_outline",
    "rename_node",
    "apply_labels",
    "visual_root",
    "iter_nodes",
    "count_nodes",
    "TreeIndex",
    # Layout
    "LayoutAdapter",
    "TreeLayoutAdapter",
    "snap_top_left",
    "snap_value",
    "diagram_bounds",
    # Measurement
    "TextMeasurer",
    "PillowTextMeasurer",
    "HeuristicTextMeasurer",
    # Validation
    "validate_tree",
    "ValidationIssue",
    "IssueSeverity",
    # Analysis
    "summarize_tree",
    "TreeSummary",
    # Settings
    "EngineSettings",
    "StyleSettings",
    "load_settings",
    "get_settings",
]
