"""
Integration tests for the MCP tool layer.
"""

import importlib.util
import json
from pathlib import Path

import pytest


SERVER_PATH = Path(__file__).parent.parent.parent / "mcp-server" / "server.py"


@pytest.fixture(scope="module")
def server():
    spec = importlib.util.spec_from_file_location("wbs_mcp_server", SERVER_PATH)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


@pytest.fixture
def api_calls(monkeypatch, server):
    calls = []

    def fake_request(method, endpoint, **kwargs):
        calls.append((method, endpoint, kwargs.get("json")))
        return {"success": True, "endpoint": endpoint}

    monkeypatch.setattr(server, "api_request", fake_request)
    return calls


class TestTools:
    def test_outline_build(self, server, api_calls):
        result = json.loads(server.outline_build(text="Project\n  A", layout_mode="vertical"))
        assert result["success"]
        method, endpoint, body = api_calls[0]
        assert (method, endpoint) == ("POST", "/diagram/build")
        assert body["text"] == "Project\n  A"
        assert body["make_first_line_root"] is False

    def test_node_rename(self, server, api_calls):
        server.node_rename("1.2", "Delivery")
        assert api_calls == [("POST", "/nodes/1.2/rename", {"label": "Delivery"})]

    def test_node_autofit(self, server, api_calls):
        server.node_autofit()
        server.node_autofit("1.1")
        assert [c[1] for c in api_calls] == ["/nodes/autofit-all", "/nodes/1.1/autofit"]

    def test_node_move_is_one_drag(self, server, api_calls):
        result = json.loads(server.node_move("1.1", 300, 200))
        assert [c[1] for c in api_calls] == ["/drag/start", "/drag/move", "/drag/end"]
        assert api_calls[1][2] == {"x": 300, "y": 200}
        assert result["endpoint"] == "/drag/end"

    def test_layout_and_history(self, server, api_calls):
        server.layout_set("radial")
        server.layout_reset()
        server.diagram_undo()
        server.diagram_redo()
        assert [c[1] for c in api_calls] == ["/layout", "/layout/reset", "/undo", "/redo"]

    def test_read_tools(self, server, api_calls):
        server.diagram_get_state()
        server.diagram_summarize()
        server.diagram_validate()
        server.outline_get()
        assert [c[0] for c in api_calls] == ["GET"] * 4


class TestApiRequest:
    def test_error_status_raises(self, server, monkeypatch):
        import httpx

        def handler(request):
            return httpx.Response(404, json={"detail": "Node not found: 9"})

        transport = httpx.MockTransport(handler)
        real_client = httpx.Client
        monkeypatch.setattr(server.httpx, "Client", lambda **kw: real_client(transport=transport, **kw))

        with pytest.raises(RuntimeError, match="Node not found"):
            server.api_request("POST", "/nodes/9/collapse")

    def test_unknown_method(self, server):
        with pytest.raises(ValueError):
            server.api_request("DELETE", "/diagram")
