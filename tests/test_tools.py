import asyncio
import json

import pytest

from mcp_loop.tools import EMPTY_SCHEMA, FunctionTool, RunContext, ToolResult

ADD_SCHEMA = {
    "type": "object",
    "properties": {"a": {"type": "number"}, "b": {"type": "number"}},
    "required": ["a", "b"],
}


def test_tool_result_serializes_non_text_payloads():
    assert ToolResult.success("plain").content == "plain"
    assert json.loads(ToolResult.success({"n": 1}).content) == {"n": 1}
    assert ToolResult.success([1, 2]).content == "[1, 2]"

    error = ToolResult.error("nope", server="files")
    assert error.is_error
    assert error.metadata == {"server": "files"}
    assert not ToolResult.success("ok").is_error


def test_tool_result_is_immutable():
    result = ToolResult.success("ok")
    with pytest.raises(Exception):
        result.content = "changed"


def test_function_tool_accepts_sync_and_async_handlers():
    async def slow_add(params):
        await asyncio.sleep(0)
        return params["a"] + params["b"]

    sync_tool = FunctionTool("add", "Add", lambda p: p["a"] + p["b"], parameters=ADD_SCHEMA)
    async_tool = FunctionTool("slow_add", "Add slowly", slow_add)
    passthrough = FunctionTool("raw", "Returns a result", lambda p: ToolResult.error("bad"))

    async def _run():
        return (
            await sync_tool.execute({"a": 1, "b": 2}, RunContext()),
            await async_tool.execute({"a": 3, "b": 4}, RunContext(turn=2)),
            await passthrough.execute({}, RunContext()),
        )

    sync_result, async_result, raw_result = asyncio.run(_run())

    assert sync_result == ToolResult.success(3)
    assert async_result.content == "7"
    assert raw_result.is_error and raw_result.content == "bad"


def test_function_tool_needs_a_name():
    with pytest.raises(ValueError):
        FunctionTool("", "nameless", lambda p: None)


def test_schema_in_mcp_shape():
    tool = FunctionTool("add", "Add two numbers", lambda p: None, parameters=ADD_SCHEMA)
    assert tool.get_schema() == {
        "name": "add",
        "description": "Add two numbers",
        "inputSchema": ADD_SCHEMA,
    }
    assert FunctionTool("bare", "", lambda p: None).parameters == EMPTY_SCHEMA
    assert repr(tool) == "FunctionTool(name='add')"


def test_langchain_tool_proxies_to_execute():
    tool = FunctionTool("add", "Add two numbers", lambda p: p["a"] + p["b"], parameters=ADD_SCHEMA)
    structured = tool.as_langchain_tool()

    assert structured.name == "add"
    assert structured.description == "Add two numbers"
    assert asyncio.run(structured.ainvoke({"a": 2, "b": 5})) == "7"
