"""
Configuration for tool servers and the agent loop.

Server configs follow the wire shape consumed at initialization:

    [
      {"name": "files", "transport": "stdio",
       "command": "npx", "args": ["@modelcontextprotocol/server-filesystem", "./data"]},
      {"name": "search", "transport": "http",
       "url": "http://localhost:3000/mcp", "headers": {"Authorization": "Bearer ..."}}
    ]

Agent settings come from environment variables with safe fallbacks.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

from mcp_loop.errors import ConfigError

DEFAULT_REQUEST_TIMEOUT = 30.0
DEFAULT_HTTP_TIMEOUT = 30.0
DEFAULT_MAX_TURNS = 10

TRANSPORTS = ("stdio", "http")


@dataclass(frozen=True)
class ServerConfig:
    """One configured tool server. Required fields depend on transport."""
    name: str
    transport: str
    command: str | None = None
    args: tuple[str, ...] | None = None
    url: str | None = None
    headers: dict[str, str] = field(default_factory=dict)
    env: dict[str, str] | None = None
    cwd: str | None = None
    initialize: bool = False

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ServerConfig":
        if not isinstance(data, Mapping):
            raise ConfigError(f"Server entry must be an object, got {type(data).__name__}")
        name = data.get("name")
        if not name or not isinstance(name, str):
            raise ConfigError(f"Server entry missing name: {dict(data)}")
        args = data.get("args")
        if args is not None:
            if not isinstance(args, (list, tuple)):
                raise ConfigError(f"Server {name}: args must be a list")
            args = tuple(str(a) for a in args)
        headers = data.get("headers") or {}
        if not isinstance(headers, Mapping):
            raise ConfigError(f"Server {name}: headers must be an object")
        env = data.get("env")
        if env is not None and not isinstance(env, Mapping):
            raise ConfigError(f"Server {name}: env must be an object")
        for key in ("command", "url", "cwd"):
            if data.get(key) is not None and not isinstance(data[key], str):
                raise ConfigError(f"Server {name}: {key} must be a string")
        return cls(
            name=name,
            transport=str(data.get("transport", "")),
            command=data.get("command"),
            args=args,
            url=data.get("url"),
            headers={str(k): str(v) for k, v in headers.items()},
            env={str(k): str(v) for k, v in env.items()} if env is not None else None,
            cwd=data.get("cwd"),
            initialize=bool(data.get("initialize", False)),
        )


def load_server_configs(path: str | Path) -> list[ServerConfig]:
    """
    Read server configs from a JSON file.

    Accepts either a bare list of server objects or {"servers": [...]}.
    """
    try:
        raw = json.loads(Path(path).read_text())
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"Cannot read server config {path}: {e}") from e

    if isinstance(raw, dict):
        raw = raw.get("servers", [])
    if not isinstance(raw, list):
        raise ConfigError(f"Server config {path} must hold a list of servers")

    return [ServerConfig.from_dict(entry) for entry in raw]


@dataclass(frozen=True)
class AgentSettings:
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    http_timeout: float = DEFAULT_HTTP_TIMEOUT
    max_turns: int = DEFAULT_MAX_TURNS
    max_concurrent_tools: int | None = None


def _parse_positive_int(raw: str | None, fallback: int | None) -> int | None:
    """Return a positive integer parsed from *raw*, or *fallback* on failure."""
    if raw is None:
        return fallback
    try:
        value = int(raw)
    except (TypeError, ValueError):
        return fallback
    return value if value > 0 else fallback


def _parse_positive_float(raw: str | None, fallback: float) -> float:
    if raw is None:
        return fallback
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return fallback
    return value if value > 0 else fallback


def load_agent_settings() -> AgentSettings:
    """Load agent settings from MCP_LOOP_* environment variables."""
    return AgentSettings(
        request_timeout=_parse_positive_float(
            os.getenv("MCP_LOOP_REQUEST_TIMEOUT"), DEFAULT_REQUEST_TIMEOUT
        ),
        http_timeout=_parse_positive_float(
            os.getenv("MCP_LOOP_HTTP_TIMEOUT"), DEFAULT_HTTP_TIMEOUT
        ),
        max_turns=_parse_positive_int(os.getenv("MCP_LOOP_MAX_TURNS"), DEFAULT_MAX_TURNS),
        max_concurrent_tools=_parse_positive_int(
            os.getenv("MCP_LOOP_MAX_CONCURRENT_TOOLS"), None
        ),
    )
