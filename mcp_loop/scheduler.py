"""
Agentic scheduler: the turn loop.

Each turn sends the conversation and the declared tools to the model
service. If the reply requests tools, every requested call runs
concurrently and the results are appended as ToolMessages in request
order; otherwise the reply is the final answer. The loop stops at
max_turns with a partial result.

A failing tool never aborts the run: its error becomes a ToolMessage with
status="error" and the model decides what to do next. Model-service
failures and unsafe attachments end the run as RunStatus.FAILED instead of
raising.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Sequence

from langchain_core.messages import AIMessage, BaseMessage, ToolMessage

from mcp_loop.client import MCPClient
from mcp_loop.config import DEFAULT_MAX_TURNS
from mcp_loop.conversation import ConversationStore
from mcp_loop.errors import ModelBehaviorError, SecurityError, ToolExecutionError, get_error_message
from mcp_loop.model import ModelService, build_user_message
from mcp_loop.tools import RunContext, Tool, ToolResult

logger = logging.getLogger(__name__)

REASONING_BLOCK_TYPES = ("thinking", "reasoning")


class RunStatus(Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    MAX_TURNS_EXCEEDED = "max_turns_exceeded"
    FAILED = "failed"


@dataclass
class RunOptions:
    session_id: str | None = None
    max_turns: int = DEFAULT_MAX_TURNS
    # 1 = surface a failure once and let the model decide.
    tool_attempts: int = 1
    max_concurrent_tools: int | None = None
    allow_file_uris: bool = False
    verbose: bool = False


@dataclass
class RunResult:
    final_output: str
    messages: list[BaseMessage]
    turns_used: int
    tool_calls_count: int
    reasoning_steps_count: int
    status: RunStatus
    error: str | None = None

    @property
    def completed(self) -> bool:
        return self.status is RunStatus.COMPLETED


@dataclass
class _TurnRecord:
    index: int
    response: AIMessage
    tool_calls: list[dict[str, Any]]
    results: list[ToolResult] = field(default_factory=list)


def message_text(content: Any) -> str:
    """Plain text of a message's content (string or list of blocks)."""
    if isinstance(content, str):
        return content
    texts = []
    for block in content or []:
        if isinstance(block, str):
            texts.append(block)
        elif isinstance(block, Mapping) and block.get("type") == "text":
            texts.append(block.get("text", ""))
    return "".join(texts)


def count_reasoning_steps(message: AIMessage) -> int:
    if not isinstance(message.content, list):
        return 0
    return sum(
        1 for block in message.content
        if isinstance(block, Mapping) and block.get("type") in REASONING_BLOCK_TYPES
    )


def extract_tool_calls(response: Any, turn: int) -> list[dict[str, Any]]:
    """
    Tool-call requests embedded in a model reply.

    Raises ModelBehaviorError when the reply is not an AIMessage or holds a
    tool call that cannot be executed.
    """
    if not isinstance(response, AIMessage):
        raise ModelBehaviorError(
            repr(response),
            f"Model service returned {type(response).__name__}, expected AIMessage",
        )
    if response.invalid_tool_calls:
        bad = response.invalid_tool_calls[0]
        raise ModelBehaviorError(
            str(bad.get("args")),
            f"Malformed tool call request for {bad.get('name')!r}: {bad.get('error') or 'unparseable arguments'}",
        )

    calls = []
    for index, call in enumerate(response.tool_calls):
        if not call.get("name"):
            raise ModelBehaviorError(
                json.dumps(call, default=str), "Tool call request without a tool name"
            )
        calls.append({
            "name": call["name"],
            "args": call.get("args") or {},
            "id": call.get("id") or f"call_{turn}_{index}",
        })
    return calls


class _AgentRun:
    """State of one scheduler invocation."""

    def __init__(self, options: RunOptions):
        self.options = options
        self.status = RunStatus.RUNNING
        self.turns: list[_TurnRecord] = []
        self.messages: list[BaseMessage] = []
        self.tool_calls_count = 0
        self.reasoning_steps_count = 0
        self.attempts: Counter = Counter()

    def last_output(self) -> str:
        for record in reversed(self.turns):
            text = message_text(record.response.content)
            if text:
                return text
        if self.turns and self.turns[-1].results:
            return "\n".join(result.content for result in self.turns[-1].results)
        return ""

    def finish(self, status: RunStatus, final_output: str, error: str | None = None) -> RunResult:
        self.status = status
        return RunResult(
            final_output=final_output,
            messages=list(self.messages),
            turns_used=len(self.turns),
            tool_calls_count=self.tool_calls_count,
            reasoning_steps_count=self.reasoning_steps_count,
            status=status,
            error=error,
        )


class AgenticScheduler:
    """
    Drives model-query → tool-execution cycles.

    Args:
        model: The model service.
        client: MCPClient whose discovered tools are offered to the model.
        tools: Locally defined tools offered in addition to the client's.
        store: Conversation store; when given, runs with a session_id read
               their history from it and append their new messages to it.
    """

    def __init__(
        self,
        model: ModelService,
        client: MCPClient | None = None,
        *,
        tools: Sequence[Tool] = (),
        store: ConversationStore | None = None,
    ):
        self.model = model
        self.client = client
        self.tools = list(tools)
        self.store = store

    def available_tools(self) -> list[Tool]:
        tools = list(self.tools)
        if self.client is not None:
            tools.extend(self.client.get_tools())
        return tools

    async def run(
        self,
        prompt: str,
        history: Sequence[BaseMessage] | None = None,
        options: RunOptions | None = None,
        parts: Sequence[Mapping[str, Any]] | None = None,
    ) -> RunResult:
        """
        Run the turn loop until the model answers or max_turns is reached.

        Never raises for model or tool failures; inspect RunResult.status.
        """
        options = options or RunOptions()
        if options.max_turns < 1:
            raise ValueError("max_turns must be at least 1")
        if options.tool_attempts < 1:
            raise ValueError("tool_attempts must be at least 1")

        log = logger.info if options.verbose else logger.debug
        if history is None and self.store is not None and options.session_id:
            history = self.store.get_history(options.session_id)
        history = list(history or [])

        tools = self.available_tools()
        tool_map = {tool.name: tool for tool in tools}
        run = _AgentRun(options)

        try:
            run.messages.append(build_user_message(prompt, parts, options.allow_file_uris))
        except SecurityError as e:
            logger.error(f"Rejected request: {e}")
            message = f"Security error: {e}"
            return run.finish(RunStatus.FAILED, message, error=message)

        for turn in range(1, options.max_turns + 1):
            log(f"Turn {turn}/{options.max_turns}: querying model with {len(tools)} tools")
            try:
                response = await self.model.complete(history + run.messages, tools)
                tool_calls = extract_tool_calls(response, turn)
            except ModelBehaviorError as e:
                logger.error(f"Model behavior error: {e} (response: {e.truncated_response()})")
                message = f"Model behavior error: {e}"
                return run.finish(RunStatus.FAILED, message, error=message)
            except Exception as e:
                logger.error(f"Model service error on turn {turn}: {get_error_message(e)}")
                message = f"Model service error: {get_error_message(e)}"
                return run.finish(RunStatus.FAILED, message, error=message)

            record = _TurnRecord(index=turn, response=response, tool_calls=tool_calls)
            run.turns.append(record)
            run.messages.append(response)
            run.reasoning_steps_count += count_reasoning_steps(response)

            if not tool_calls:
                log(f"Turn {turn}: final answer")
                result = run.finish(RunStatus.COMPLETED, message_text(response.content))
                self._save(options, result)
                return result

            log(f"Turn {turn}: executing {len(tool_calls)} tool calls")
            context = RunContext(session_id=options.session_id, turn=turn)
            record.results = await self._execute_tool_calls(run, tool_calls, tool_map, context)
            run.tool_calls_count += len(tool_calls)
            for call, tool_result in zip(tool_calls, record.results):
                run.messages.append(ToolMessage(
                    content=tool_result.content,
                    tool_call_id=call["id"],
                    name=call["name"],
                    status=tool_result.status,
                ))

        logger.warning(f"Max turns ({options.max_turns}) reached without a final answer")
        result = run.finish(RunStatus.MAX_TURNS_EXCEEDED, run.last_output())
        self._save(options, result)
        return result

    async def _execute_tool_calls(
        self,
        run: _AgentRun,
        calls: list[dict[str, Any]],
        tool_map: dict[str, Tool],
        context: RunContext,
    ) -> list[ToolResult]:
        limit = run.options.max_concurrent_tools
        semaphore = asyncio.Semaphore(limit) if limit else None

        async def _bounded(call: dict[str, Any]) -> ToolResult:
            if semaphore is None:
                return await self._execute_tool_call(run, call, tool_map, context)
            async with semaphore:
                return await self._execute_tool_call(run, call, tool_map, context)

        # gather keeps request order regardless of completion order
        return list(await asyncio.gather(*(_bounded(call) for call in calls)))

    async def _execute_tool_call(
        self,
        run: _AgentRun,
        call: dict[str, Any],
        tool_map: dict[str, Tool],
        context: RunContext,
    ) -> ToolResult:
        name, args = call["name"], call["args"]
        tool = tool_map.get(name)
        if tool is None:
            logger.warning(f"Model requested unknown tool {name}")
            return ToolResult.error(f"Unknown tool '{name}'. Available: {sorted(tool_map)}")

        key = (name, json.dumps(args, sort_keys=True, default=str))
        result = None
        for _ in range(run.options.tool_attempts):
            run.attempts[key] += 1
            attempt = run.attempts[key]
            try:
                result = await tool.execute(args, context)
            except Exception as e:
                error = ToolExecutionError(name, e, attempt)
                logger.warning(str(error))
                result = ToolResult.error(str(error), attempt=attempt)
            else:
                if result.is_error:
                    logger.warning(f"Tool '{name}' returned an error on attempt {attempt}")
                    result = ToolResult.error(result.content, **{**result.metadata, "attempt": attempt})
            if not result.is_error:
                break
        return result

    def _save(self, options: RunOptions, result: RunResult) -> None:
        if self.store is not None and options.session_id:
            self.store.add_messages(options.session_id, result.messages)


def format_result(result: RunResult, session_id: str | None = None) -> str:
    """Render a run result for display."""
    parts = []
    if session_id:
        parts.append(f"[Session: {session_id}]")
    if result.tool_calls_count > 0 or result.reasoning_steps_count > 0:
        parts.append(
            f"[Stats: {result.turns_used} turns, {result.tool_calls_count} tool calls, "
            f"{result.reasoning_steps_count} reasoning steps]"
        )
    if result.status is RunStatus.MAX_TURNS_EXCEEDED:
        parts.append(f"[Stopped after {result.turns_used} turns without a final answer]")
    parts.append(result.final_output)
    return "\n\n".join(parts)
