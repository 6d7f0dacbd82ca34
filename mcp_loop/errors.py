"""
Error taxonomy for the tool client and the agentic scheduler.

Errors below the MCPClient boundary (connection, protocol, timeout, remote)
are converted to ToolResult values before they reach the scheduler.
Errors at or above the scheduler boundary (model behavior, security) end a
run as a failed outcome instead of propagating to the caller.
"""

from __future__ import annotations

import traceback
from typing import Any

TRUNCATE_LIMIT = 200


class AgentError(Exception):
    """Base class for every error raised by mcp_loop."""


class MCPConnectionError(AgentError):
    """A tool server could not be reached, spawned, or is no longer connected."""

    def __init__(self, server_name: str, message: str):
        super().__init__(message)
        self.server_name = server_name


class ServerHTTPError(MCPConnectionError):
    """An HTTP tool server answered with a non-2xx status."""

    def __init__(self, server_name: str, status_code: int, body: str):
        super().__init__(server_name, f"HTTP {status_code}: {body}")
        self.status_code = status_code
        self.body = body


class ServerNotFoundError(MCPConnectionError):
    def __init__(self, server_name: str):
        super().__init__(server_name, f"MCP server '{server_name}' not found")


class ProtocolError(AgentError):
    """An inbound line could not be decoded as a JSON-RPC message."""

    def __init__(self, line: str, reason: str):
        super().__init__(f"Invalid message ({reason}): {line[:TRUNCATE_LIMIT]}")
        self.line = line
        self.reason = reason


class RequestTimeoutError(AgentError):
    def __init__(self, server_name: str, method: str, request_id: int, timeout: float):
        super().__init__(
            f"MCP request timeout: {method} (id={request_id}, "
            f"server={server_name}, after {timeout:g}s)"
        )
        self.server_name = server_name
        self.method = method
        self.request_id = request_id
        self.timeout = timeout


class RemoteError(AgentError):
    """The tool server answered a request with a JSON-RPC error object."""

    def __init__(self, server_name: str, method: str, message: str, code: int | None = None):
        super().__init__(message)
        self.server_name = server_name
        self.method = method
        self.code = code


class ToolExecutionError(AgentError):
    """
    A tool call failed.

    Carries the attempt number so a retry layer (or the model, reading the
    error text) can tell a first failure from a repeated one.
    """

    def __init__(self, tool_name: str, original_error: BaseException, attempt: int):
        super().__init__(
            f"Tool '{tool_name}' failed on attempt {attempt}: "
            f"{get_error_message(original_error)}"
        )
        self.tool_name = tool_name
        self.original_error = original_error
        self.attempt = attempt

    def full_details(self) -> str:
        """Message plus the traceback of the original error."""
        original = "".join(
            traceback.format_exception(
                type(self.original_error),
                self.original_error,
                self.original_error.__traceback__,
            )
        )
        return f"{self}\n\nOriginal Error:\n{original}"


class ModelBehaviorError(AgentError):
    """The model produced a response the scheduler cannot act on."""

    def __init__(self, response: str, message: str):
        super().__init__(message)
        self.response = response

    def truncated_response(self) -> str:
        if len(self.response) <= TRUNCATE_LIMIT:
            return self.response
        return self.response[:TRUNCATE_LIMIT] + "..."


class SecurityError(AgentError):
    """An external resource reference failed validation."""


class ConfigError(AgentError):
    """A server configuration entry is malformed."""


def get_error_message(error: Any) -> str:
    """Return a printable message for any raised value."""
    if isinstance(error, BaseException):
        # asyncio.TimeoutError() and friends stringify to ""
        return str(error) or type(error).__name__
    return str(error)
