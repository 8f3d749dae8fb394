"""
WBS Diagram Backend - FastAPI Application

This is the main entry point for the WBS diagram backend.
It provides:
- REST API for building a diagram from outline text or rows, and for every
  interactive edit (drag, collapse, auto-fit, nudge, rename, undo/redo)
- Outline text persistence in a single named slot
- WebSocket endpoint for real-time updates
- CORS configuration for local frontend development
"""
import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, WebSocket, WebSocketDisconnect, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from wbs_core import (
    BuildRequest, RenameRequest, ResizeRequest,
    DragStartRequest, DragMoveRequest, SelectionRequest,
    NudgeRequest, ViewportRequest, StyleRequest, LayoutRequest,
    OutlineSaveRequest, ImportRequest, PasteRequest,
    SAMPLE_OUTLINE, LayoutMode,
    parse, make_first_line_root, rows_to_outline, html_list_to_outline,
    validate_tree, summarize_tree, get_settings,
)
from wbs_backend.engine import diagram_engine
from wbs_backend.store import OutlineStore
from wbs_backend.websocket_manager import ws_manager

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

outline_store = OutlineStore()


def configure_logging(level: str | None = None):
    """Root logging setup for the service process."""
    logging.basicConfig(
        level=(level or get_settings().service.log_level).upper(),
        format=LOG_FORMAT,
    )


def build_from_text(text: str | None, layout_mode: LayoutMode | None = None,
                    title: str | None = None):
    """Parse outline text (blank falls back to the sample) and rebuild."""
    parser_settings = get_settings().parser
    source = text if text and text.strip() else SAMPLE_OUTLINE
    tree = parse(
        source,
        tab_width=parser_settings.tab_width,
        root_label=parser_settings.synthetic_root_label,
    )
    diagram_engine.build(tree, layout_mode=layout_mode, title=title)


# --- Async change notification ---
# Bridge between sync engine callbacks and async WebSocket broadcasts

# Created per lifespan so it belongs to the running event loop
_change_event: asyncio.Event | None = None


def on_diagram_change():
    """Callback for engine changes - sets event for async handler."""
    if _change_event is not None:
        _change_event.set()


async def change_broadcaster(event: asyncio.Event):
    """Background task that broadcasts changes to WebSocket clients."""
    while True:
        await event.wait()
        event.clear()

        await ws_manager.notify_diagram_updated(
            title=diagram_engine.title if diagram_engine.is_built else None,
            can_undo=diagram_engine.can_undo,
            can_redo=diagram_engine.can_redo,
        )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan handler for startup/shutdown tasks."""
    global _change_event
    _change_event = asyncio.Event()
    diagram_engine.on_change(on_diagram_change)

    # Start from the stored outline, or the sample
    if not diagram_engine.is_built:
        build_from_text(outline_store.load())
        logger.info("Built initial diagram '%s'", diagram_engine.title)

    broadcaster_task = asyncio.create_task(change_broadcaster(_change_event))

    yield

    broadcaster_task.cancel()
    try:
        await broadcaster_task
    except asyncio.CancelledError:
        pass
    _change_event = None


# --- FastAPI App ---

app = FastAPI(
    title="WBS Diagram API",
    description="Outline to work breakdown structure diagram engine",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().service.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _require_built():
    if not diagram_engine.is_built:
        raise HTTPException(status_code=400, detail="No diagram built")


def _require_node(node_id: str):
    _require_built()
    if diagram_engine.get_node(node_id) is None:
        raise HTTPException(status_code=404, detail=f"Node not found: {node_id}")


def _result(changed: bool, message: str) -> dict:
    if changed:
        return {"success": True, **diagram_engine.get_state()}
    return {"success": False, "message": message}


# --- Health Check ---

@app.get("/api/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "ok", "connections": ws_manager.connection_count}


# --- Diagram State ---

@app.post("/api/diagram/build")
async def build_diagram(request: BuildRequest):
    """
    Parse text, records or a 2-D table and rebuild the diagram.

    Blank input builds the sample outline.
    """
    if request.records:
        source = request.records
    elif request.table:
        source = request.table
    elif request.text and request.text.strip():
        source = request.text
        if request.make_first_line_root:
            source = make_first_line_root(source)
    else:
        source = SAMPLE_OUTLINE

    parser_settings = get_settings().parser
    tree = parse(
        source,
        tab_width=parser_settings.tab_width,
        root_label=parser_settings.synthetic_root_label,
    )
    diagram_engine.build(tree, layout_mode=request.layout_mode, title=request.title)
    return {"success": True, **diagram_engine.get_state()}


@app.get("/api/diagram")
async def get_diagram():
    """Get the current diagram state."""
    return diagram_engine.get_state()


@app.get("/api/diagram/export")
async def export_diagram():
    """Full-state export for image/JSON encoders."""
    try:
        return diagram_engine.export_state().to_json_dict()
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.get("/api/diagram/validate")
async def validate_diagram():
    """Check the parsed tree for structural issues."""
    _require_built()
    issues = validate_tree(diagram_engine.tree)
    return {
        "valid": not any(i.severity.value == "error" for i in issues),
        "issues": [i.to_dict() for i in issues]
    }


@app.get("/api/diagram/summary")
async def diagram_summary():
    _require_built()
    return summarize_tree(diagram_engine.tree).to_dict()


# --- Outline text ---

@app.get("/api/outline")
async def get_outline():
    """Current outline text (from the tree) and the stored slot."""
    return {
        "text": diagram_engine.outline_text,
        "stored": outline_store.load(),
        "path": str(outline_store.path)
    }


@app.post("/api/outline/save")
async def save_outline(request: OutlineSaveRequest):
    """Save the given text, or the current outline, to the store."""
    text = request.text if request.text is not None else diagram_engine.outline_text
    try:
        path = outline_store.save(text)
    except OSError as e:
        raise HTTPException(status_code=500, detail=f"Failed to save outline: {e}")
    return {"success": True, "path": str(path)}


@app.post("/api/outline/load")
async def load_outline():
    """Rebuild the diagram from the stored outline (or the sample)."""
    stored = outline_store.load()
    build_from_text(stored)
    return {"success": True, "from_store": stored is not None, **diagram_engine.get_state()}


@app.post("/api/outline/import")
async def import_rows(request: ImportRequest):
    """Convert spreadsheet records into outline text."""
    return {"text": rows_to_outline(request.records)}


@app.post("/api/outline/paste")
async def convert_paste(request: PasteRequest):
    """Convert clipboard HTML lists to outline text; plain text passes through."""
    converted = html_list_to_outline(request.html or "")
    return {"text": converted if converted is not None else (request.plain or ""),
            "converted": converted is not None}


# --- Node Operations ---

@app.post("/api/nodes/autofit-all")
async def autofit_all():
    """Fit every node's width to its label."""
    _require_built()
    return _result(diagram_engine.auto_fit_all(), "All nodes already fit")


@app.post("/api/nodes/reset-sizes")
async def reset_all_sizes():
    _require_built()
    return _result(diagram_engine.reset_all_sizes(), "No size overrides")


@app.post("/api/nodes/{node_id}/rename")
async def rename_node(node_id: str, request: RenameRequest):
    """Rename a node; empty or unchanged labels are ignored."""
    _require_node(node_id)
    return _result(diagram_engine.rename_node(node_id, request.label), "Label unchanged")


@app.post("/api/nodes/{node_id}/collapse")
async def toggle_collapse(node_id: str):
    """Collapse or expand a node's subtree."""
    _require_node(node_id)
    return _result(diagram_engine.toggle_collapse(node_id), "Node has no children")


@app.post("/api/nodes/{node_id}/autofit")
async def autofit_node(node_id: str):
    _require_node(node_id)
    return _result(diagram_engine.auto_fit(node_id), "Node already fits")


@app.post("/api/nodes/{node_id}/resize")
async def resize_node(node_id: str, request: ResizeRequest):
    _require_node(node_id)
    return _result(diagram_engine.resize_node(node_id, request.width), "Size unchanged")


@app.post("/api/nodes/{node_id}/reset-size")
async def reset_node_size(node_id: str):
    _require_node(node_id)
    return _result(diagram_engine.reset_size(node_id), "Node has no size override")


# --- Drag ---

@app.post("/api/drag/start")
async def drag_start(request: DragStartRequest):
    _require_node(request.node_id)
    diagram_engine.begin_drag(request.node_id)
    return {"success": True, "group": diagram_engine.drag_group(request.node_id)}


@app.post("/api/drag/move")
async def drag_move(request: DragMoveRequest):
    if not diagram_engine.drag_to(request.x, request.y):
        raise HTTPException(status_code=400, detail="No drag in progress")
    return {"success": True}


@app.post("/api/drag/end")
async def drag_end():
    return _result(diagram_engine.end_drag(), "Nothing moved")


# --- Selection & keyboard ---

@app.post("/api/selection")
async def set_selection(request: SelectionRequest):
    _require_built()
    return {"selected_ids": diagram_engine.select(request.node_ids, additive=request.additive)}


@app.post("/api/nudge")
async def nudge(request: NudgeRequest):
    """Arrow key down: move the selection one grid step."""
    moved = diagram_engine.handle_key_down(
        request.key, shift=request.shift, focus_in_text_field=request.focus_in_text_field
    )
    return {"success": moved}


@app.post("/api/nudge/end")
async def nudge_end():
    """Arrow key up: snap and record the nudge."""
    return _result(diagram_engine.end_nudge(), "Nothing moved")


# --- View & style ---

@app.post("/api/viewport")
async def set_viewport(request: ViewportRequest):
    try:
        viewport = diagram_engine.set_viewport(request.pan_x, request.pan_y, request.zoom)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"success": True, "viewport": viewport.model_dump()}


@app.patch("/api/style")
async def update_style(request: StyleRequest):
    """Change font and box size sliders; positions are kept."""
    style = diagram_engine.update_style(
        font_size=request.font_size,
        box_width=request.box_width,
        box_height=request.box_height,
    )
    return {"success": True, "style": style.to_dict()}


@app.post("/api/layout")
async def set_layout(request: LayoutRequest):
    _require_built()
    return _result(diagram_engine.set_layout_mode(request.mode), "Layout unchanged")


@app.post("/api/layout/reset")
async def reset_layout():
    """Force auto-layout: discard positions and place again."""
    _require_built()
    return _result(diagram_engine.reset_layout(), "Nothing to lay out")


# --- Undo/Redo ---

@app.post("/api/undo")
async def undo():
    """Undo the last action."""
    if diagram_engine.undo():
        return {"success": True, **diagram_engine.get_state()}
    return {"success": False, "message": "Nothing to undo"}


@app.post("/api/redo")
async def redo():
    """Redo the last undone action."""
    if diagram_engine.redo():
        return {"success": True, **diagram_engine.get_state()}
    return {"success": False, "message": "Nothing to redo"}


# --- WebSocket ---

@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """
    WebSocket endpoint for real-time updates.

    Clients connect here to receive diagram_updated events.
    """
    await ws_manager.connect(websocket)

    try:
        while True:
            data = await websocket.receive_text()
            if data == "ping":
                await websocket.send_text('{"type": "pong"}')
    except WebSocketDisconnect:
        await ws_manager.disconnect(websocket)


# --- Run with uvicorn ---

def run():
    """Console entry point."""
    import uvicorn

    configure_logging()
    service = get_settings().service
    uvicorn.run(app, host=service.host, port=service.port)


if __name__ == "__main__":
    run()
