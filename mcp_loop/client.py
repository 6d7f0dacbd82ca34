"""
MCPClient: one registry of tool server connections over any transport.

The client is the bridge between the agentic scheduler and the running
tool servers.

Usage:
    client = MCPClient()

    # Connect every configured server and discover its tools
    await client.initialize([
        {"name": "files", "transport": "stdio", "command": "python",
         "args": ["-m", "mcp_loop.servers.echo"]},
        {"name": "search", "transport": "http", "url": "http://localhost:3000/mcp"},
    ])

    # Tools are namespaced by server: files_echo, search_search, ...
    tools = client.get_tools()

    # Call a tool (never raises, errors come back as ToolResult.error)
    result = await client.call_tool("files", "echo", {"msg": "hi"})

    # Stop everything
    await client.shutdown()
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping

import httpx

from mcp_loop.config import DEFAULT_HTTP_TIMEOUT, DEFAULT_REQUEST_TIMEOUT, ServerConfig
from mcp_loop.errors import AgentError, ConfigError, ServerNotFoundError, get_error_message
from mcp_loop.tools import MCPTool, Tool, ToolResult
from mcp_loop.transport import Connection, HttpConnection, StdioConnection, invoke_tool

logger = logging.getLogger(__name__)


def tool_public_name(server_name: str, tool_name: str) -> str:
    """Namespaced tool name, unique across servers."""
    return f"{server_name}_{tool_name}"


class MCPClient:
    """
    Manages connections to MCP tool servers.

    Responsibilities:
    - Build and connect one Connection per configured server
    - Discover tools on every live connection and wrap them as MCPTools
    - Route tool calls to the owning connection
    - Graceful shutdown
    """

    def __init__(
        self,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
        http_timeout: float = DEFAULT_HTTP_TIMEOUT,
        http_transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.request_timeout = request_timeout
        self.http_timeout = http_timeout
        self._http_transport = http_transport
        self._connections: dict[str, Connection] = {}
        self._tools: list[Tool] = []

    async def __aenter__(self) -> "MCPClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.shutdown()

    async def initialize(
        self, configs: Iterable[ServerConfig | Mapping[str, Any]]
    ) -> list[Tool]:
        """
        Connect every configured server, then discover tools.

        A server that fails validation or connection is logged and skipped;
        the others still come up.

        Returns:
            The discovered tools.
        """
        configs = list(configs)
        logger.info(f"Initializing MCPClient with {len(configs)} servers")

        for raw in configs:
            try:
                config = raw if isinstance(raw, ServerConfig) else ServerConfig.from_dict(raw)
            except ConfigError as e:
                logger.error(f"Invalid MCP server config: {e}")
                continue

            if config.name in self._connections:
                logger.warning(f"Duplicate MCP server name {config.name}, skipping")
                continue

            try:
                connection = self._create_connection(config)
                await connection.connect()
            except AgentError as e:
                logger.error(f"Failed to initialize MCP server {config.name}: {get_error_message(e)}")
                continue
            except Exception as e:
                logger.exception(
                    f"Unexpected error initializing MCP server {config.name}: {get_error_message(e)}"
                )
                continue

            self._connections[config.name] = connection
            logger.info(f"Initialized {config.transport} MCP server: {config.name}")

        tools = await self.discover_tools()
        logger.info(f"Initialized {len(tools)} tools from MCP servers")
        return tools

    def _create_connection(self, config: ServerConfig) -> Connection:
        if config.transport == "stdio":
            return StdioConnection(config, request_timeout=self.request_timeout)
        if config.transport == "http":
            return HttpConnection(config, timeout=self.http_timeout, transport=self._http_transport)
        raise ConfigError(f"Unknown transport type for {config.name}: {config.transport!r}")

    async def discover_tools(self) -> list[Tool]:
        """
        Rebuild the tool set from every live connection.

        A server whose tools/list fails contributes nothing. The new list
        replaces the old one in a single assignment.
        """
        discovered: list[Tool] = []

        for server_name, connection in list(self._connections.items()):
            if not connection.is_connected():
                logger.warning(f"Skipping discovery on disconnected server {server_name}")
                continue
            try:
                descriptors = await connection.list_tools()
            except AgentError as e:
                logger.error(f"Failed to list tools from {server_name}: {get_error_message(e)}")
                continue

            logger.info(f"Discovered {len(descriptors)} tools from {server_name}")
            for descriptor in descriptors:
                tool_name = descriptor["name"]
                discovered.append(MCPTool(
                    server_name=server_name,
                    remote_name=tool_name,
                    client=self,
                    name=tool_public_name(server_name, tool_name),
                    description=descriptor.get("description") or f"Tool {tool_name} from {server_name}",
                    parameters=descriptor.get("inputSchema") or descriptor.get("parameters"),
                ))

        self._tools = discovered
        return discovered

    def get_tools(self) -> list[Tool]:
        """All discovered tools."""
        return list(self._tools)

    def get_connection(self, server_name: str) -> Connection:
        connection = self._connections.get(server_name)
        if connection is None:
            raise ServerNotFoundError(server_name)
        return connection

    def list_servers(self) -> dict[str, bool]:
        """List all servers and their connection status."""
        return {name: conn.is_connected() for name, conn in self._connections.items()}

    async def call_tool(self, server_name: str, tool_name: str, args: dict[str, Any]) -> ToolResult:
        """
        Call a tool on a specific server.

        Never raises: an unknown server or a failing call comes back as an
        error ToolResult carrying the error text.
        """
        try:
            connection = self.get_connection(server_name)
        except ServerNotFoundError as e:
            logger.warning(str(e))
            return ToolResult.error(str(e), server=server_name)
        return await invoke_tool(connection, tool_name, args)

    async def shutdown(self) -> None:
        """Close every connection and forget all tools. Idempotent."""
        if self._connections:
            logger.info("Shutting down MCPClient")

        for server_name, connection in list(self._connections.items()):
            try:
                await connection.close()
            except Exception as e:
                logger.warning(f"Error closing MCP server {server_name}: {get_error_message(e)}")

        self._connections.clear()
        self._tools = []
