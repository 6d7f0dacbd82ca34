"""
Minimal stdio tool server.

A tool server is a standalone process that:
1. Reads newline-delimited JSON-RPC requests from stdin
2. Dispatches to registered ToolHandlers
3. Writes JSON-RPC responses to stdout

It speaks the same wire protocol StdioConnection expects and is used for
local tools and in the test suite:

    from mcp_loop.server import StdioToolServer, ToolHandler

    class MyTool(ToolHandler):
        name = "my_tool"
        description = "Does something useful"
        parameters = {
            "input": {"type": "string", "description": "The input"},
        }

        def handle(self, params: dict) -> str:
            return f"processed: {params['input']}"

    if __name__ == "__main__":
        server = StdioToolServer("my-server")
        server.register(MyTool())
        server.run()
"""

from __future__ import annotations

import json
import logging
import sys
from abc import ABC, abstractmethod
from typing import Any

from mcp_loop.transport import PROTOCOL_VERSION

logger = logging.getLogger(__name__)


class ToolHandler(ABC):
    """
    Base class for a tool implementation.

    Subclasses define what a tool does. The server handles transport.
    """

    name: str = ""
    description: str = ""
    parameters: dict[str, dict] = {}
    required: list[str] = []

    @abstractmethod
    def handle(self, params: dict[str, Any]) -> Any:
        """
        Execute the tool with the given parameters.

        Returns:
            A string (sent as one text block), a dict already holding
            "content", or any JSON value (sent as JSON text).
        """
        ...

    def get_schema(self) -> dict:
        """Return the tool descriptor for discovery."""
        schema: dict[str, Any] = {"type": "object", "properties": self.parameters}
        if self.required:
            schema["required"] = list(self.required)
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": schema,
        }


def _as_call_result(value: Any) -> dict:
    if isinstance(value, dict) and "content" in value:
        return value
    text = value if isinstance(value, str) else json.dumps(value)
    return {"content": [{"type": "text", "text": text}]}


class StdioToolServer:
    """
    JSON-RPC tool server that communicates via stdin/stdout.

    Protocol:
    - One JSON-RPC message per line
    - Supports methods:
        - "initialize" → protocol version and server info
        - "tools/list" → {"tools": [descriptor, ...]}
        - "tools/call" → {"content": [...]} from the named tool
        - "ping"       → health check
    - Notifications (no id) are never answered
    """

    def __init__(self, name: str = "mcp-loop-server"):
        self.name = name
        self._handlers: dict[str, ToolHandler] = {}

    def register(self, handler: ToolHandler) -> None:
        if not handler.name:
            raise ValueError(f"ToolHandler {handler.__class__.__name__} has no name")
        self._handlers[handler.name] = handler
        logger.info(f"Registered tool: {handler.name}")

    def run(self) -> None:
        """
        Main loop: read requests from stdin, dispatch, write responses to stdout.

        Blocks until stdin is closed (parent process terminates).
        """
        logger.info(f"Tool server {self.name} starting with {len(self._handlers)} tools: "
                    f"{list(self._handlers.keys())}")

        for line in sys.stdin:
            line = line.strip()
            if not line:
                continue

            try:
                request = json.loads(line)
            except json.JSONDecodeError as e:
                self._write_error(None, -32700, f"Parse error: {e}")
                continue

            request_id = request.get("id")
            method = request.get("method", "")
            params = request.get("params") or {}

            try:
                result = self._dispatch(method, params)
            except Exception as e:
                if request_id is not None:
                    self._write_error(request_id, -32603, str(e))
                continue
            if request_id is not None:
                self._write_result(request_id, result)

    def _dispatch(self, method: str, params: dict) -> Any:
        if method == "initialize":
            return {
                "protocolVersion": PROTOCOL_VERSION,
                "capabilities": {"tools": {}},
                "serverInfo": {"name": self.name, "version": "0.1.0"},
            }

        if method.startswith("notifications/"):
            return None

        if method == "ping":
            return {}

        if method == "tools/list":
            return {"tools": [h.get_schema() for h in self._handlers.values()]}

        if method == "tools/call":
            tool_name = params.get("name", "")
            handler = self._handlers.get(tool_name)
            if not handler:
                raise ValueError(
                    f"Unknown tool: '{tool_name}'. "
                    f"Available: {list(self._handlers.keys())}"
                )
            return _as_call_result(handler.handle(params.get("arguments") or {}))

        raise ValueError(f"Unknown method: '{method}'")

    def _write_result(self, request_id: Any, result: Any) -> None:
        self._write({"jsonrpc": "2.0", "id": request_id, "result": result})

    def _write_error(self, request_id: Any, code: int, message: str) -> None:
        self._write({"jsonrpc": "2.0", "id": request_id, "error": {"code": code, "message": message}})

    def _write(self, message: dict) -> None:
        sys.stdout.write(json.dumps(message) + "\n")
        sys.stdout.flush()
