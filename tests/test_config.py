import json

import pytest

from mcp_loop.config import (
    DEFAULT_MAX_TURNS,
    DEFAULT_REQUEST_TIMEOUT,
    ServerConfig,
    load_agent_settings,
    load_server_configs,
)
from mcp_loop.errors import ConfigError


def test_server_config_from_dict():
    config = ServerConfig.from_dict({
        "name": "files",
        "transport": "stdio",
        "command": "npx",
        "args": ["server-filesystem", "./data"],
        "env": {"DEBUG": 1},
        "unknown": "ignored",
    })

    assert config.args == ("server-filesystem", "./data")
    assert config.env == {"DEBUG": "1"}
    assert config.headers == {}
    assert config.initialize is False


@pytest.mark.parametrize("entry", [
    "not an object",
    {"transport": "stdio"},
    {"name": "x", "transport": "stdio", "command": "c", "args": "not-a-list"},
    {"name": "x", "transport": "http", "url": "u", "headers": ["bad"]},
])
def test_server_config_rejects_malformed_entries(entry):
    with pytest.raises(ConfigError):
        ServerConfig.from_dict(entry)


def test_load_server_configs_accepts_list_or_wrapper(tmp_path):
    servers = [
        {"name": "a", "transport": "stdio", "command": "python", "args": []},
        {"name": "b", "transport": "http", "url": "http://b", "headers": {"X-Key": "k"}},
    ]
    bare = tmp_path / "bare.json"
    bare.write_text(json.dumps(servers))
    wrapped = tmp_path / "wrapped.json"
    wrapped.write_text(json.dumps({"servers": servers}))

    for path in (bare, wrapped):
        configs = load_server_configs(path)
        assert [c.name for c in configs] == ["a", "b"]
        assert configs[1].headers == {"X-Key": "k"}


def test_load_server_configs_errors(tmp_path):
    with pytest.raises(ConfigError):
        load_server_configs(tmp_path / "missing.json")

    broken = tmp_path / "broken.json"
    broken.write_text("{nope")
    with pytest.raises(ConfigError):
        load_server_configs(broken)

    scalar = tmp_path / "scalar.json"
    scalar.write_text("3")
    with pytest.raises(ConfigError):
        load_server_configs(scalar)


def test_agent_settings_defaults(monkeypatch):
    for name in ("REQUEST_TIMEOUT", "HTTP_TIMEOUT", "MAX_TURNS", "MAX_CONCURRENT_TOOLS"):
        monkeypatch.delenv(f"MCP_LOOP_{name}", raising=False)

    settings = load_agent_settings()
    assert settings.request_timeout == DEFAULT_REQUEST_TIMEOUT
    assert settings.max_turns == DEFAULT_MAX_TURNS
    assert settings.max_concurrent_tools is None


def test_agent_settings_from_env(monkeypatch):
    monkeypatch.setenv("MCP_LOOP_REQUEST_TIMEOUT", "2.5")
    monkeypatch.setenv("MCP_LOOP_MAX_TURNS", "3")
    monkeypatch.setenv("MCP_LOOP_MAX_CONCURRENT_TOOLS", "4")
    monkeypatch.setenv("MCP_LOOP_HTTP_TIMEOUT", "-1")

    settings = load_agent_settings()
    assert settings.request_timeout == 2.5
    assert settings.max_turns == 3
    assert settings.max_concurrent_tools == 4
    assert settings.http_timeout == 30.0


def test_agent_settings_ignore_garbage(monkeypatch):
    monkeypatch.setenv("MCP_LOOP_MAX_TURNS", "many")
    monkeypatch.setenv("MCP_LOOP_REQUEST_TIMEOUT", "soon")

    settings = load_agent_settings()
    assert settings.max_turns == DEFAULT_MAX_TURNS
    assert settings.request_timeout == DEFAULT_REQUEST_TIMEOUT


@pytest.mark.parametrize("key, value", [
    ("command", 123),
    ("url", ["http://a"]),
    ("cwd", 7),
])
def test_server_config_requires_string_locations(key, value):
    entry = {"name": "x", "transport": "stdio", "command": "c", "args": []}
    entry[key] = value
    with pytest.raises(ConfigError, match=f"{key} must be a string"):
        ServerConfig.from_dict(entry)
