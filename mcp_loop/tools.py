"""
Uniform Tool interface used by the scheduler.

Two kinds of tools satisfy it:
  - FunctionTool: a tool implemented in-process by a Python callable
  - MCPTool: a tool discovered on an MCP server, called through MCPClient

Either kind can be turned into a LangChain StructuredTool so it can be
declared to a chat model with bind_tools().
"""

from __future__ import annotations

import inspect
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Literal

from langchain_core.tools import StructuredTool

if TYPE_CHECKING:
    from mcp_loop.client import MCPClient

ToolStatus = Literal["success", "error"]

EMPTY_SCHEMA: dict[str, Any] = {"type": "object", "properties": {}}


def _serialize(payload: Any) -> str:
    if isinstance(payload, str):
        return payload
    return json.dumps(payload, default=str)


@dataclass(frozen=True)
class ToolResult:
    """Outcome of one tool call. Produced once, never mutated."""
    status: ToolStatus
    content: str
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def success(cls, content: Any, **metadata: Any) -> "ToolResult":
        return cls(status="success", content=_serialize(content), metadata=metadata)

    @classmethod
    def error(cls, content: Any, **metadata: Any) -> "ToolResult":
        return cls(status="error", content=_serialize(content), metadata=metadata)

    @property
    def is_error(self) -> bool:
        return self.status == "error"


@dataclass
class RunContext:
    """Per-call context handed to Tool.execute."""
    session_id: str | None = None
    turn: int = 0


class Tool(ABC):
    """
    A named, schema-described capability.

    Subclasses set name, description and parameters (a JSON schema for the
    arguments object) and implement execute().
    """

    name: str = ""
    description: str = ""
    parameters: dict[str, Any] = EMPTY_SCHEMA

    @abstractmethod
    async def execute(self, args: dict[str, Any], context: RunContext) -> ToolResult:
        """
        Run the tool.

        Args:
            args: Arguments object produced by the model
            context: Session and turn the call belongs to

        Returns:
            The ToolResult. Implementations may raise; the scheduler turns
            exceptions into error results.
        """
        ...

    def get_schema(self) -> dict[str, Any]:
        """Return the tool descriptor in MCP shape."""
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.parameters,
        }

    def as_langchain_tool(self) -> StructuredTool:
        """
        Create a LangChain StructuredTool that proxies to execute().

        The scheduler runs tools itself; the StructuredTool is mainly used to
        declare the tool to a chat model, but it is fully callable.
        """

        async def _call(**kwargs: Any) -> str:
            result = await self.execute(kwargs, RunContext())
            return result.content

        return StructuredTool.from_function(
            coroutine=_call,
            name=self.name,
            description=self.description or f"Tool {self.name}",
            args_schema=self.parameters or EMPTY_SCHEMA,
        )

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"


class FunctionTool(Tool):
    """
    A locally defined tool backed by a plain (or async) callable.

        def add(params):
            return params["a"] + params["b"]

        tool = FunctionTool("add", "Add two numbers", add, parameters={...})
    """

    def __init__(
        self,
        name: str,
        description: str,
        handler: Callable[[dict[str, Any]], Any],
        parameters: dict[str, Any] | None = None,
    ):
        if not name:
            raise ValueError("FunctionTool needs a name")
        self.name = name
        self.description = description
        self.parameters = parameters or EMPTY_SCHEMA
        self._handler = handler

    async def execute(self, args: dict[str, Any], context: RunContext) -> ToolResult:
        result = self._handler(args)
        if inspect.isawaitable(result):
            result = await result
        if isinstance(result, ToolResult):
            return result
        return ToolResult.success(result)


class MCPTool(Tool):
    """
    A tool living on an MCP server.

    Holds (server_name, remote_name, client) and forwards execute() to
    MCPClient.call_tool, which never raises.
    """

    def __init__(
        self,
        server_name: str,
        remote_name: str,
        client: "MCPClient",
        name: str,
        description: str,
        parameters: dict[str, Any] | None = None,
    ):
        self.server_name = server_name
        self.remote_name = remote_name
        self.client = client
        self.name = name
        self.description = description
        self.parameters = parameters or EMPTY_SCHEMA

    async def execute(self, args: dict[str, Any], context: RunContext) -> ToolResult:
        return await self.client.call_tool(self.server_name, self.remote_name, args)
