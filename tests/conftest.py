"""Shared pytest fixtures for the mcp_loop test suite."""
from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any, Callable

import httpx
import pytest

from mcp_loop.config import ServerConfig
from tests.stub_servers import SCRIPTS

PROJECT_ROOT = Path(__file__).resolve().parent.parent


@pytest.fixture
def stub_server(tmp_path) -> Callable[..., ServerConfig]:
    """Write one of the stub server scripts and return a stdio ServerConfig for it."""

    def factory(kind: str, name: str | None = None, **overrides: Any) -> ServerConfig:
        script = tmp_path / f"{kind}_server.py"
        script.write_text(SCRIPTS[kind])
        return ServerConfig(
            name=name or kind,
            transport="stdio",
            command=sys.executable,
            args=("-u", str(script)),
            **overrides,
        )

    return factory


@pytest.fixture
def echo_module_config() -> ServerConfig:
    """The bundled echo server, launched as a module."""
    return ServerConfig(
        name="echo",
        transport="stdio",
        command=sys.executable,
        args=("-m", "mcp_loop.servers.echo"),
        env={"PYTHONPATH": str(PROJECT_ROOT)},
        initialize=True,
    )


def http_tool_server(
    tools: list[dict[str, Any]],
    seen: list[httpx.Request] | None = None,
) -> httpx.MockTransport:
    """An httpx transport answering the HTTP tool protocol in-process."""

    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        body = json.loads(request.content or b"{}")
        if request.url.path.endswith("/tools/list"):
            return httpx.Response(200, json={"tools": tools})
        if request.url.path.endswith("/tools/call"):
            arguments = body.get("arguments", {})
            if body.get("name") == "fail":
                return httpx.Response(500, text="internal failure")
            return httpx.Response(200, json={"content": [
                {"type": "text", "text": f"http:{arguments.get('q', '')}"},
            ]})
        return httpx.Response(404, text="not found")

    return httpx.MockTransport(handler)
