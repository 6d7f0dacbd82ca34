import io
import json

import pytest

from mcp_loop.server import StdioToolServer, ToolHandler
from mcp_loop.servers.echo import EchoTool
from mcp_loop.transport import PROTOCOL_VERSION


class StatsTool(ToolHandler):
    name = "stats"
    description = "Returns numbers"

    def handle(self, params):
        return {"count": len(params)}


def make_server():
    server = StdioToolServer("test")
    server.register(EchoTool())
    server.register(StatsTool())
    return server


def test_dispatch_lists_and_calls_tools():
    server = make_server()

    listing = server._dispatch("tools/list", {})
    assert [tool["name"] for tool in listing["tools"]] == ["echo", "stats"]
    assert listing["tools"][0]["inputSchema"]["required"] == ["msg"]
    assert "required" not in listing["tools"][1]["inputSchema"]

    echoed = server._dispatch("tools/call", {"name": "echo", "arguments": {"msg": "hi"}})
    assert echoed == {"content": [{"type": "text", "text": "hi"}]}

    stats = server._dispatch("tools/call", {"name": "stats", "arguments": {"a": 1, "b": 2}})
    assert json.loads(stats["content"][0]["text"]) == {"count": 2}


def test_dispatch_handshake_and_errors():
    server = make_server()

    assert server._dispatch("initialize", {})["protocolVersion"] == PROTOCOL_VERSION
    assert server._dispatch("ping", {}) == {}
    with pytest.raises(ValueError, match="Unknown tool"):
        server._dispatch("tools/call", {"name": "missing"})
    with pytest.raises(ValueError, match="Unknown method"):
        server._dispatch("resources/list", {})


def test_register_requires_a_name():
    class Nameless(ToolHandler):
        def handle(self, params):
            return ""

    with pytest.raises(ValueError):
        StdioToolServer().register(Nameless())


def test_run_answers_requests_but_not_notifications(monkeypatch):
    requests = [
        {"jsonrpc": "2.0", "id": 1, "method": "initialize", "params": {}},
        {"jsonrpc": "2.0", "method": "notifications/initialized"},
        {"jsonrpc": "2.0", "id": 2, "method": "tools/call",
         "params": {"name": "echo", "arguments": {"msg": "x"}}},
        {"jsonrpc": "2.0", "id": 3, "method": "tools/call", "params": {"name": "nope"}},
    ]
    stdin = io.StringIO("\n".join(json.dumps(r) for r in requests) + "\n\nnot json\n")
    stdout = io.StringIO()
    monkeypatch.setattr("sys.stdin", stdin)
    monkeypatch.setattr("sys.stdout", stdout)

    make_server().run()

    replies = [json.loads(line) for line in stdout.getvalue().splitlines()]
    assert [reply.get("id") for reply in replies] == [1, 2, 3, None]
    assert replies[1]["result"]["content"][0]["text"] == "x"
    assert replies[2]["error"]["code"] == -32603
    assert replies[3]["error"]["code"] == -32700
