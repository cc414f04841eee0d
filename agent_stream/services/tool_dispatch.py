"""Tool Dispatch — explicit routing from tool name to caller-supplied handler.

Invariants:
    - Every tool→handler mapping is supplied explicitly (no auto-discovery)
    - execute() never raises: unknown tool, bad arguments and handler failures
      all become error ToolResults
    - execute_all() runs every call concurrently and returns only after ALL settle
    - ToolResult.content is always JSON: the result, or {"error": message}

Design Decisions:
    - Sync and async handlers both accepted; awaitables are awaited
    - asyncio.CancelledError is not an error result: it propagates
"""

import asyncio
import inspect
import json
import logging
from typing import Any, Mapping

from agent_stream.core.conversation import ToolCall, ToolHandler, ToolResult

logger = logging.getLogger(__name__)


class ToolDispatch:
    """Routes tool_name → handler with a per-call error boundary."""

    def __init__(self, handlers: Mapping[str, ToolHandler]):
        self._handlers = dict(handlers)

    def __contains__(self, tool_name: str) -> bool:
        return tool_name in self._handlers

    async def execute_all(self, calls: list[ToolCall]) -> list[ToolResult]:
        """Fan-out/fan-in. Results are returned in call order."""
        return list(await asyncio.gather(*(self.execute(c) for c in calls)))

    async def execute(self, call: ToolCall) -> ToolResult:
        handler = self._handlers.get(call.name)
        if handler is None:
            logger.warning("No handler registered", extra={
                "tool_name": call.name, "tool_call_id": call.id,
            })
            return error_result(call, f"No handler for tool: {call.name}")

        try:
            arguments = json.loads(call.arguments) if call.arguments else {}
        except json.JSONDecodeError as e:
            logger.warning("Invalid tool arguments: %s", e, extra={
                "tool_name": call.name, "tool_call_id": call.id,
            })
            return error_result(call, f"Invalid tool arguments: {e.msg}")

        try:
            result = handler(arguments)
            if inspect.isawaitable(result):
                result = await result
        except Exception as e:
            logger.warning("Tool handler failed: %s", e, extra={
                "tool_name": call.name, "tool_call_id": call.id,
            })
            return error_result(call, str(e) or "Tool execution failed")

        return ToolResult(
            tool_call=call, content=_encode(result), result=result,
        )


def error_result(call: ToolCall, message: str) -> ToolResult:
    return ToolResult(
        tool_call=call, content=_encode({"error": message}), error=message,
    )


def _encode(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, default=str)
