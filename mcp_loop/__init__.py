"""
mcp_loop: multi-transport MCP tool client and turn-bounded agent loop.

Architecture:
    ┌──────────────────┐            ┌───────────┐   stdio    ┌──────────────┐
    │ AgenticScheduler │ ─────────> │ MCPClient │ ─────────> │ Tool Server  │
    │   (turn loop)    │  MCPTool   │ (routing) │  JSON-RPC  │ (subprocess) │
    └──────────────────┘            └───────────┘            └──────────────┘
             │                            │          HTTP    ┌──────────────┐
             v                            └────────────────> │ Tool Server  │
      ModelService (LLM)                                     │   (remote)   │
                                                             └──────────────┘

Each configured server gets one Connection (StdioConnection or
HttpConnection). MCPClient discovers their tools, namespaces them as
<server>_<tool>, and routes calls back to the owning connection. The
AgenticScheduler offers those tools to the model and runs the requested
calls turn after turn until the model answers or max_turns is reached.
"""

from mcp_loop.client import MCPClient
from mcp_loop.config import AgentSettings, ServerConfig, load_agent_settings, load_server_configs
from mcp_loop.conversation import ConversationSession, ConversationStore
from mcp_loop.errors import (
    AgentError,
    ConfigError,
    MCPConnectionError,
    ModelBehaviorError,
    ProtocolError,
    RemoteError,
    RequestTimeoutError,
    SecurityError,
    ServerHTTPError,
    ServerNotFoundError,
    ToolExecutionError,
)
from mcp_loop.model import ChatModelService, ModelService, build_user_message
from mcp_loop.scheduler import AgenticScheduler, RunOptions, RunResult, RunStatus, format_result
from mcp_loop.tools import FunctionTool, MCPTool, RunContext, Tool, ToolResult
from mcp_loop.transport import Connection, ConnectionState, HttpConnection, StdioConnection

__all__ = [
    "AgentError",
    "AgentSettings",
    "AgenticScheduler",
    "ChatModelService",
    "ConfigError",
    "Connection",
    "ConnectionState",
    "ConversationSession",
    "ConversationStore",
    "FunctionTool",
    "HttpConnection",
    "MCPClient",
    "MCPConnectionError",
    "MCPTool",
    "ModelBehaviorError",
    "ModelService",
    "ProtocolError",
    "RemoteError",
    "RequestTimeoutError",
    "RunContext",
    "RunOptions",
    "RunResult",
    "RunStatus",
    "SecurityError",
    "ServerConfig",
    "ServerHTTPError",
    "ServerNotFoundError",
    "StdioConnection",
    "Tool",
    "ToolExecutionError",
    "ToolResult",
    "build_user_message",
    "format_result",
    "load_agent_settings",
    "load_server_configs",
]
