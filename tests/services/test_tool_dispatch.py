"""Tool Dispatch — tests for explicit tool routing and per-call error boundaries.

Tests cover:
    - Sync and async handlers, results encoded as JSON
    - Unknown tool, invalid arguments and handler failures become error results
    - execute_all runs concurrently and preserves call order
"""

import asyncio
import json

from agent_stream.core.conversation import ToolCall
from agent_stream.services.tool_dispatch import ToolDispatch


def _call(name, arguments="{}", call_id="t1"):
    return ToolCall(id=call_id, name=name, arguments=arguments)


async def test_sync_handler_result_is_encoded():
    dispatch = ToolDispatch({"add": lambda args: args["a"] + args["b"]})
    result = await dispatch.execute(_call("add", '{"a": 1, "b": 2}'))
    assert result.result == 3
    assert result.content == "3"
    assert result.failed is False


async def test_async_handler_is_awaited():
    async def lookup(args):
        return {"found": args["q"]}

    dispatch = ToolDispatch({"lookup": lookup})
    result = await dispatch.execute(_call("lookup", '{"q": "x"}'))
    assert json.loads(result.content) == {"found": "x"}


async def test_unknown_tool_is_error_result():
    result = await ToolDispatch({}).execute(_call("missing"))
    assert result.error == "No handler for tool: missing"
    assert json.loads(result.content) == {"error": "No handler for tool: missing"}


async def test_invalid_arguments_is_error_result():
    called = []
    dispatch = ToolDispatch({"t": called.append})
    result = await dispatch.execute(_call("t", "{oops"))
    assert result.error.startswith("Invalid tool arguments:")
    assert called == []


async def test_handler_exception_is_error_result():
    def boom(_):
        raise ValueError("disk full")

    def silent(_):
        raise RuntimeError()

    dispatch = ToolDispatch({"boom": boom, "silent": silent})
    assert (await dispatch.execute(_call("boom"))).error == "disk full"
    assert (await dispatch.execute(_call("silent"))).error == "Tool execution failed"


async def test_empty_arguments_parse_as_empty_object():
    dispatch = ToolDispatch({"echo": lambda args: args})
    result = await dispatch.execute(_call("echo", ""))
    assert result.result == {}


async def test_execute_all_is_concurrent_and_ordered():
    started = []
    release = asyncio.Event()

    async def slow(args):
        started.append(args["n"])
        await release.wait()
        return args["n"]

    dispatch = ToolDispatch({"slow": slow})
    calls = [_call("slow", json.dumps({"n": i}), f"t{i}") for i in range(3)]
    task = asyncio.create_task(dispatch.execute_all(calls))
    await asyncio.sleep(0)
    await asyncio.sleep(0)
    assert sorted(started) == [0, 1, 2]

    release.set()
    results = await task
    assert [r.tool_call.id for r in results] == ["t0", "t1", "t2"]
    assert [r.result for r in results] == [0, 1, 2]


def test_contains():
    dispatch = ToolDispatch({"a": lambda _: None})
    assert "a" in dispatch
    assert "b" not in dispatch
