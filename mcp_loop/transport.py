"""
Transport layer for MCP tool servers.

Implements:
  - StdioConnection: newline-delimited JSON-RPC over a subprocess's
    stdin/stdout, with request/response correlation by id and a
    per-request deadline
  - HttpConnection: stateless JSON POSTs to <base_url>/tools/list and
    <base_url>/tools/call

Both satisfy the Connection interface. invoke_tool() wraps
Connection.call_tool with logging and converts any failure into an
error ToolResult.
"""

from __future__ import annotations

import asyncio
import codecs
import json
import logging
import os
from abc import ABC, abstractmethod
from contextlib import suppress
from dataclasses import dataclass
from enum import Enum
from typing import Any

import httpx

from mcp_loop.config import DEFAULT_HTTP_TIMEOUT, DEFAULT_REQUEST_TIMEOUT, ServerConfig
from mcp_loop.errors import (
    AgentError,
    ConfigError,
    MCPConnectionError,
    ProtocolError,
    RemoteError,
    RequestTimeoutError,
    ServerHTTPError,
    get_error_message,
)
from mcp_loop.tools import ToolResult

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 64 * 1024
KILL_GRACE_SECONDS = 5.0
PROTOCOL_VERSION = "2024-11-05"


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    CLOSED = "closed"


@dataclass
class JsonRpcRequest:
    """JSON-RPC 2.0 request. id=None makes it a notification."""
    method: str
    params: dict[str, Any]
    id: int | None = None

    def to_json(self) -> str:
        message: dict[str, Any] = {"jsonrpc": "2.0", "method": self.method, "params": self.params}
        if self.id is not None:
            message["id"] = self.id
        return json.dumps(message)


@dataclass
class JsonRpcResponse:
    """JSON-RPC 2.0 message received from a server."""
    id: int | str | None
    result: Any = None
    error: Any = None
    method: str | None = None

    @classmethod
    def from_json(cls, data: str) -> "JsonRpcResponse":
        try:
            parsed = json.loads(data)
        except json.JSONDecodeError as e:
            raise ProtocolError(data, f"not JSON: {e}") from e
        if not isinstance(parsed, dict):
            raise ProtocolError(data, "not a JSON object")
        return cls(
            id=parsed.get("id"),
            result=parsed.get("result"),
            error=parsed.get("error"),
            method=parsed.get("method"),
        )

    @property
    def is_error(self) -> bool:
        return self.error is not None

    @property
    def error_message(self) -> str:
        if isinstance(self.error, dict):
            return self.error.get("message") or "MCP request failed"
        return str(self.error)


class LineFramer:
    """
    Incremental splitter for newline-delimited messages.

    Chunks may cut a line anywhere; every complete line is returned as soon
    as its newline arrives and only the trailing fragment is kept.
    """

    def __init__(self) -> None:
        self.pending = ""

    def feed(self, chunk: str) -> list[str]:
        self.pending += chunk
        *lines, self.pending = self.pending.split("\n")
        return [line.strip() for line in lines if line.strip()]

    def flush(self) -> list[str]:
        """Return the trailing fragment (if any) and reset."""
        tail, self.pending = self.pending.strip(), ""
        return [tail] if tail else []


def _tool_descriptors(result: Any) -> list[dict[str, Any]]:
    # Servers answer tools/list with {"tools": [...]} or a bare list.
    tools = result.get("tools") if isinstance(result, dict) else result
    if not isinstance(tools, list):
        return []
    return [t for t in tools if isinstance(t, dict) and t.get("name")]


def _result_content(result: Any) -> Any:
    if isinstance(result, dict) and "content" in result:
        return result["content"]
    return result


class Connection(ABC):
    """One channel to one tool server."""

    def __init__(self, server_name: str):
        self.server_name = server_name
        self.state = ConnectionState.DISCONNECTED

    @abstractmethod
    async def connect(self) -> None:
        """Open the channel. Raises MCPConnectionError on failure."""
        ...

    @abstractmethod
    async def list_tools(self) -> list[dict[str, Any]]:
        """Return the server's tool descriptors (name, description, inputSchema)."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release the channel. Safe to call more than once."""
        ...

    @abstractmethod
    def is_connected(self) -> bool:
        ...

    @abstractmethod
    async def _call_tool_impl(self, tool_name: str, args: dict[str, Any]) -> ToolResult:
        ...

    async def call_tool(self, tool_name: str, args: dict[str, Any]) -> ToolResult:
        """Call a tool. Errors propagate; see invoke_tool() for the non-raising form."""
        if self.state is not ConnectionState.CONNECTED or not self.is_connected():
            raise MCPConnectionError(
                self.server_name, f"MCP server {self.server_name} not connected"
            )
        return await self._call_tool_impl(tool_name, args)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.server_name!r}, state={self.state.value})"


async def invoke_tool(connection: Connection, tool_name: str, args: dict[str, Any]) -> ToolResult:
    """Call a tool on a connection, logging the call and capturing any error as a result."""
    logger.debug(f"[{connection.server_name}] tool call {tool_name} args={args}")
    try:
        result = await connection.call_tool(tool_name, args)
    except Exception as e:
        logger.warning(f"[{connection.server_name}] tool {tool_name} failed: {get_error_message(e)}")
        return ToolResult.error(
            f"Tool execution failed: {get_error_message(e)}",
            server=connection.server_name,
        )
    logger.debug(f"[{connection.server_name}] tool {tool_name} -> {result.status}")
    return result


@dataclass
class _PendingRequest:
    future: asyncio.Future
    method: str
    timer: asyncio.TimerHandle


class StdioConnection(Connection):
    """
    JSON-RPC over stdin/stdout pipes to a subprocess.

    The tool server runs as a child process. Requests are written to its
    stdin one per line; a background task reads its stdout, frames lines and
    resolves the pending request whose id matches. Responses may arrive in
    any order.
    """

    def __init__(self, config: ServerConfig, request_timeout: float = DEFAULT_REQUEST_TIMEOUT):
        """
        Args:
            config: Server config; command and args are required.
            request_timeout: Seconds before a pending request is failed.
        """
        if not config.command or config.args is None:
            raise ConfigError(f"Stdio server {config.name} missing command or args")
        super().__init__(config.name)
        self.config = config
        self.request_timeout = request_timeout
        self.exit_code: int | None = None
        self._process: asyncio.subprocess.Process | None = None
        self._request_id = 0
        self._pending: dict[int, _PendingRequest] = {}
        self._framer = LineFramer()
        self._write_lock = asyncio.Lock()
        self._tasks: list[asyncio.Task] = []

    async def connect(self) -> None:
        """Spawn the server process and complete an initial tools/list round-trip."""
        if self.state is ConnectionState.CONNECTED and self.is_connected():
            return

        command = [self.config.command, *self.config.args]
        command_line = " ".join(str(part) for part in command)
        logger.info(f"Connecting to stdio MCP server {self.server_name}: {command_line}")
        self.state = ConnectionState.CONNECTING
        env = {**os.environ, **self.config.env} if self.config.env else None

        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
                cwd=self.config.cwd,
            )
        except (OSError, ValueError, TypeError) as e:
            self.state = ConnectionState.DISCONNECTED
            raise MCPConnectionError(
                self.server_name,
                f"Failed to spawn MCP server process {self.server_name}: {e}",
            ) from e

        self._process = process
        self.exit_code = None
        if process.stdin is None or process.stdout is None:
            await self.close()
            raise MCPConnectionError(
                self.server_name, f"MCP server process {self.server_name} has no stdio pipes"
            )

        self._framer = LineFramer()
        self._tasks = [asyncio.create_task(self._read_loop(process))]
        if process.stderr is not None:
            self._tasks.append(asyncio.create_task(self._log_stderr(process.stderr)))

        try:
            if self.config.initialize:
                await self._handshake()
            await self._request("tools/list", {})
        except AgentError as e:
            await self.close()
            raise MCPConnectionError(
                self.server_name,
                f"Failed to connect to stdio MCP server {self.server_name}: {get_error_message(e)}",
            ) from e

        self.state = ConnectionState.CONNECTED
        logger.info(f"Connected to stdio MCP server: {self.server_name} (pid={process.pid})")

    async def _handshake(self) -> None:
        await self._request("initialize", {
            "protocolVersion": PROTOCOL_VERSION,
            "capabilities": {},
            "clientInfo": {"name": "mcp-loop", "version": "0.1.0"},
        })
        await self._write(JsonRpcRequest(method="notifications/initialized", params={}).to_json())

    async def list_tools(self) -> list[dict[str, Any]]:
        if self.state is not ConnectionState.CONNECTED:
            raise MCPConnectionError(
                self.server_name, f"MCP server {self.server_name} not connected"
            )
        return _tool_descriptors(await self._request("tools/list", {}))

    async def _call_tool_impl(self, tool_name: str, args: dict[str, Any]) -> ToolResult:
        result = await self._request("tools/call", {"name": tool_name, "arguments": args})
        return ToolResult.success(_result_content(result), server=self.server_name)

    async def close(self) -> None:
        """Terminate the server process. Idempotent."""
        if self.state is ConnectionState.CLOSED and self._process is None:
            return
        self.state = ConnectionState.CLOSED
        process, self._process = self._process, None
        tasks, self._tasks = self._tasks, []

        for task in tasks:
            task.cancel()
        self._fail_pending(
            MCPConnectionError(self.server_name, f"MCP server {self.server_name} connection closed")
        )

        if process is not None and process.returncode is None:
            with suppress(ProcessLookupError):
                process.terminate()
            try:
                await asyncio.wait_for(process.wait(), timeout=KILL_GRACE_SECONDS)
            except asyncio.TimeoutError:
                with suppress(ProcessLookupError):
                    process.kill()
                await process.wait()
            self.exit_code = process.returncode

        for task in tasks:
            with suppress(asyncio.CancelledError):
                await task
        logger.info(f"Closed stdio MCP connection: {self.server_name}")

    def is_connected(self) -> bool:
        """True while a live process exists and has not exited."""
        return (
            self._process is not None
            and self._process.returncode is None
            and self.state is not ConnectionState.CLOSED
        )

    def next_id(self) -> int:
        """Generate the next request ID."""
        self._request_id += 1
        return self._request_id

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    # -- request path ---------------------------------------------------------

    async def _request(self, method: str, params: dict[str, Any]) -> Any:
        if not self.is_connected():
            raise MCPConnectionError(
                self.server_name, f"MCP server {self.server_name} not connected"
            )

        request = JsonRpcRequest(method=method, params=params, id=self.next_id())
        loop = asyncio.get_running_loop()
        future = loop.create_future()
        timer = loop.call_later(self.request_timeout, self._expire, request.id)
        self._pending[request.id] = _PendingRequest(future=future, method=method, timer=timer)
        logger.debug(f"[{self.server_name}] -> {method} id={request.id}")

        try:
            await self._write(request.to_json())
        except (ConnectionError, OSError) as e:
            self._settle(request.id, error=MCPConnectionError(
                self.server_name, f"Failed to write to MCP server {self.server_name}: {e}"
            ))

        try:
            return await future
        finally:
            # Only still present if the caller was cancelled.
            entry = self._pending.pop(request.id, None)
            if entry is not None:
                entry.timer.cancel()

    async def _write(self, line: str) -> None:
        process = self._process
        if process is None or process.stdin is None:
            raise MCPConnectionError(
                self.server_name, f"MCP server {self.server_name} not connected"
            )
        # One message is written and drained before the next.
        async with self._write_lock:
            process.stdin.write((line + "\n").encode("utf-8"))
            await process.stdin.drain()

    def _settle(self, request_id: int, *, result: Any = None, error: BaseException | None = None) -> bool:
        """Complete a pending request exactly once. Returns False if it was already gone."""
        entry = self._pending.pop(request_id, None)
        if entry is None:
            return False
        entry.timer.cancel()
        if entry.future.done():
            return False
        if error is not None:
            entry.future.set_exception(error)
        else:
            entry.future.set_result(result)
        return True

    def _expire(self, request_id: int) -> None:
        entry = self._pending.get(request_id)
        if entry is None:
            return
        logger.warning(f"[{self.server_name}] request {entry.method} id={request_id} timed out")
        self._settle(request_id, error=RequestTimeoutError(
            self.server_name, entry.method, request_id, self.request_timeout
        ))

    def _fail_pending(self, error: AgentError) -> None:
        for request_id in list(self._pending):
            self._settle(request_id, error=error)

    # -- read path ------------------------------------------------------------

    async def _read_loop(self, process: asyncio.subprocess.Process) -> None:
        stdout = process.stdout
        if stdout is None:
            self._handle_exit(await process.wait())
            return

        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            chunk = await stdout.read(READ_CHUNK_SIZE)
            if not chunk:
                break
            for line in self._framer.feed(decoder.decode(chunk)):
                self._handle_line(line)

        self._framer.feed(decoder.decode(b"", final=True))
        for line in self._framer.flush():
            self._handle_line(line)

        returncode = await process.wait()
        self._handle_exit(returncode)

    def _handle_line(self, line: str) -> None:
        try:
            message = JsonRpcResponse.from_json(line)
        except ProtocolError as e:
            logger.warning(f"Failed to parse MCP response from {self.server_name}: {e}")
            return

        if message.method is not None:
            logger.debug(f"[{self.server_name}] ignoring server message {message.method}")
            return
        if not isinstance(message.id, int) or isinstance(message.id, bool):
            logger.debug(f"[{self.server_name}] dropping response without usable id: {line[:200]}")
            return

        if message.is_error:
            entry = self._pending.get(message.id)
            method = entry.method if entry else ""
            error_obj = message.error if isinstance(message.error, dict) else {}
            settled = self._settle(message.id, error=RemoteError(
                self.server_name, method, message.error_message, error_obj.get("code")
            ))
        else:
            settled = self._settle(message.id, result=message.result)

        if settled:
            logger.debug(f"[{self.server_name}] <- id={message.id}")
        else:
            logger.debug(f"[{self.server_name}] dropping unmatched response id={message.id}")

    def _handle_exit(self, returncode: int) -> None:
        self.exit_code = returncode
        if self.state is ConnectionState.CLOSED:
            return
        logger.info(f"MCP server {self.server_name} exited with code {returncode}")
        self.state = ConnectionState.CLOSED
        self._fail_pending(MCPConnectionError(
            self.server_name, f"MCP server {self.server_name} exited with code {returncode}"
        ))

    async def _log_stderr(self, stream: asyncio.StreamReader) -> None:
        framer = LineFramer()
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            chunk = await stream.read(READ_CHUNK_SIZE)
            if not chunk:
                break
            for line in framer.feed(decoder.decode(chunk)):
                logger.warning(f"MCP server {self.server_name} stderr: {line}")
        for line in framer.flush():
            logger.warning(f"MCP server {self.server_name} stderr: {line}")


class HttpConnection(Connection):
    """
    MCP over plain HTTP POSTs.

    Stateless: every request opens its own httpx.AsyncClient, so concurrent
    calls on one connection share nothing.
    """

    def __init__(
        self,
        config: ServerConfig,
        timeout: float = DEFAULT_HTTP_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Args:
            config: Server config; url is required.
            timeout: Per-request timeout in seconds.
            transport: Optional httpx transport (e.g. httpx.MockTransport in tests).
        """
        if not config.url:
            raise ConfigError(f"HTTP server {config.name} missing url")
        super().__init__(config.name)
        self.base_url = config.url.rstrip("/")
        self.headers = {"Content-Type": "application/json", **config.headers}
        self.timeout = timeout
        self._transport = transport
        self.state = ConnectionState.CONNECTED

    async def connect(self) -> None:
        """Verify the server answers tools/list."""
        logger.info(f"Connecting to HTTP MCP server: {self.server_name} at {self.base_url}")
        try:
            await self.list_tools()
        except AgentError as e:
            raise MCPConnectionError(
                self.server_name,
                f"Failed to connect to HTTP MCP server {self.server_name}: {get_error_message(e)}",
            ) from e
        logger.info(f"Connected to HTTP MCP server: {self.server_name}")

    async def list_tools(self) -> list[dict[str, Any]]:
        return _tool_descriptors(await self._post("/tools/list", {}))

    async def _call_tool_impl(self, tool_name: str, args: dict[str, Any]) -> ToolResult:
        response = await self._post("/tools/call", {"name": tool_name, "arguments": args})
        return ToolResult.success(_result_content(response), server=self.server_name)

    async def close(self) -> None:
        if self.state is ConnectionState.CLOSED:
            return
        self.state = ConnectionState.CLOSED
        logger.info(f"Closed HTTP MCP connection: {self.server_name}")

    def is_connected(self) -> bool:
        return self.state is not ConnectionState.CLOSED

    async def _post(self, path: str, body: dict[str, Any]) -> Any:
        if self.state is ConnectionState.CLOSED:
            raise MCPConnectionError(
                self.server_name, f"MCP server {self.server_name} not connected"
            )
        url = f"{self.base_url}{path}"
        logger.debug(f"[{self.server_name}] POST {url}")
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, headers=self.headers, transport=self._transport
            ) as client:
                response = await client.post(url, json=body)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise MCPConnectionError(
                self.server_name, f"HTTP request to {url} failed: {get_error_message(e)}"
            ) from e

        if not response.is_success:
            raise ServerHTTPError(self.server_name, response.status_code, response.text)
        try:
            return response.json()
        except ValueError as e:
            raise ProtocolError(response.text, "HTTP response is not JSON") from e
