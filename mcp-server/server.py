#!/usr/bin/env python3
"""
WBS Diagram MCP Server

Provides MCP tools for AI agents to build and edit WBS diagrams.
All changes are immediately reflected in connected render surfaces via
WebSocket updates from the backend.
"""

import json
import os
from typing import Optional

import httpx
from mcp.server.fastmcp import FastMCP

# Backend API URL
API_BASE = os.environ.get("WBS_DIAGRAM_API", "http://127.0.0.1:8765/api")

# Create MCP server
mcp = FastMCP("wbs-diagram")


# --- HTTP Client Helper ---

def api_request(method: str, endpoint: str, **kwargs) -> dict:
    """Make a request to the WBS diagram backend."""
    url = f"{API_BASE}{endpoint}"
    with httpx.Client(timeout=30.0) as client:
        if method == "GET":
            response = client.get(url, params=kwargs.get("params"))
        elif method == "POST":
            response = client.post(url, json=kwargs.get("json"), params=kwargs.get("params"))
        elif method == "PATCH":
            response = client.patch(url, json=kwargs.get("json"))
        else:
            raise ValueError(f"Unknown method: {method}")

        if response.status_code >= 400:
            error = response.json().get("detail", "Unknown error")
            raise RuntimeError(f"API error: {error}")

        return response.json()


def _dump(result: dict) -> str:
    return json.dumps(result, indent=2)


# ============================================================================
# OUTLINE TOOLS
# ============================================================================

@mcp.tool()
def outline_build(
    text: Optional[str] = None,
    records: Optional[list[dict]] = None,
    layout_mode: Optional[str] = None,
    title: Optional[str] = None,
    make_first_line_root: bool = False
) -> str:
    """
    Build the diagram from an outline or from spreadsheet-style records.

    Args:
        text: Indented outline (two spaces per level) or coded rows such as
            "1.1  Planning". Blank text builds a sample project.
        records: Rows with WBS + Name columns, or Task + Level/Indent columns
        layout_mode: "vertical", "horizontal" or "radial"
        title: Diagram title (defaults to the root label)
        make_first_line_root: Nest every other line under the first line

    Returns the new diagram state.
    """
    result = api_request("POST", "/diagram/build", json={
        "text": text,
        "records": records,
        "layout_mode": layout_mode,
        "title": title,
        "make_first_line_root": make_first_line_root,
    })
    return _dump(result)


@mcp.tool()
def outline_get() -> str:
    """
    Get the current outline text, regenerated from the tree (renames
    included), plus the stored copy.
    """
    return _dump(api_request("GET", "/outline"))


@mcp.tool()
def outline_save() -> str:
    """Save the current outline text to the outline store."""
    return _dump(api_request("POST", "/outline/save", json={"text": None}))


# ============================================================================
# DIAGRAM TOOLS
# ============================================================================

@mcp.tool()
def diagram_get_state() -> str:
    """
    Get the full diagram state: nodes, edges, positions, size overrides,
    collapsed nodes, selection and undo/redo availability.
    """
    return _dump(api_request("GET", "/diagram"))


@mcp.tool()
def diagram_summarize() -> str:
    """Node counts per level, depth, leaves and top-level branch sizes."""
    return _dump(api_request("GET", "/diagram/summary"))


@mcp.tool()
def diagram_validate() -> str:
    """Report duplicate codes, blank labels and gaps in the numbering."""
    return _dump(api_request("GET", "/diagram/validate"))


@mcp.tool()
def diagram_export() -> str:
    """Full-state export (elements, positions, palette, bounds, outline)."""
    return _dump(api_request("GET", "/diagram/export"))


# ============================================================================
# NODE TOOLS
# ============================================================================

@mcp.tool()
def node_rename(node_id: str, label: str) -> str:
    """
    Rename a node. The outline text is regenerated from the renamed tree.

    Args:
        node_id: Path id ("1.2") or code of the node
        label: New label; empty or unchanged labels are ignored
    """
    return _dump(api_request("POST", f"/nodes/{node_id}/rename", json={"label": label}))


@mcp.tool()
def node_toggle_collapse(node_id: str) -> str:
    """Collapse or expand a node's subtree (nodes without children are ignored)."""
    return _dump(api_request("POST", f"/nodes/{node_id}/collapse"))


@mcp.tool()
def node_autofit(node_id: Optional[str] = None) -> str:
    """
    Fit box width to the label text.

    Args:
        node_id: Node to fit; fits every node when omitted
    """
    if node_id is None:
        return _dump(api_request("POST", "/nodes/autofit-all"))
    return _dump(api_request("POST", f"/nodes/{node_id}/autofit"))


@mcp.tool()
def node_move(node_id: str, x: float, y: float) -> str:
    """
    Drag a node (with its subtree, or the selection it belongs to) so its
    center lands at (x, y). The result is snapped to the grid.
    """
    api_request("POST", "/drag/start", json={"node_id": node_id})
    api_request("POST", "/drag/move", json={"x": x, "y": y})
    return _dump(api_request("POST", "/drag/end"))


# ============================================================================
# LAYOUT & HISTORY TOOLS
# ============================================================================

@mcp.tool()
def layout_set(mode: str = "vertical") -> str:
    """
    Re-layout the diagram.

    Args:
        mode: "vertical", "horizontal" or "radial"
    """
    return _dump(api_request("POST", "/layout", json={"mode": mode}))


@mcp.tool()
def layout_reset() -> str:
    """Discard manual positions and run the automatic layout again."""
    return _dump(api_request("POST", "/layout/reset"))


@mcp.tool()
def diagram_undo() -> str:
    """Undo the last change."""
    return _dump(api_request("POST", "/undo"))


@mcp.tool()
def diagram_redo() -> str:
    """Redo the last undone change."""
    return _dump(api_request("POST", "/redo"))


# ============================================================================
# MAIN
# ============================================================================

if __name__ == "__main__":
    mcp.run()
