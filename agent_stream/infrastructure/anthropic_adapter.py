"""Anthropic Adapter — Messages streaming API → raw stream events.

Invariants:
    - tool_call_start is emitted on content_block_start(tool_use), before any
      delta or complete for that id
    - Exactly one tool_call_complete per tool_use block: on content_block_stop
      when argument JSON was streamed, else after get_final_message() with the
      final block input
    - The returned RoundResult lists tool calls in content-block order
    - Each thinking block maps to reasoning_start, reasoning_delta(s) and one
      reasoning_end carrying the block signature

Design Decisions:
    - get_final_message() for usage and for tool inputs that arrived unstreamed
    - Errors are mapped by ResilientAnthropicClient; exceptions raised by the
      event sink (cancellation) propagate untouched and close the stream
"""

import json
import logging
from dataclasses import dataclass
from typing import Any

from agent_stream.core.boundary_protocols import EventSink, ProviderRequest
from agent_stream.core.conversation import RoundResult, ToolCall, ToolDefinition
from agent_stream.core.domain_types import ReasoningFormat
from agent_stream.core.errors import ErrorContext
from agent_stream.core.history_builders import AnthropicHistoryBuilder
from agent_stream.core.stream_events import (
    MessageEvent,
    ReasoningDeltaEvent,
    ReasoningEndEvent,
    ReasoningStartEvent,
    TokenEvent,
    ToolCallCompleteEvent,
    ToolCallDeltaEvent,
    ToolCallStartEvent,
)
from agent_stream.infrastructure.anthropic_client import ResilientAnthropicClient

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "claude-sonnet-4-5"


@dataclass
class _PendingTool:
    id: str
    name: str
    arguments: str = ""
    completed: bool = False


@dataclass
class _PendingThinking:
    content: str = ""
    signature: str = ""


def anthropic_tools(tools: list[ToolDefinition]) -> list[dict]:
    return [
        {"name": t.name, "description": t.description, "input_schema": t.schema}
        for t in tools
    ]


class AnthropicAdapter:
    """Native streaming for ModelService.ANTHROPIC."""

    name = "anthropic"

    def __init__(
        self,
        client: ResilientAnthropicClient,
        max_tokens: int = 8192,
        default_model: str = DEFAULT_MODEL,
    ):
        self._client = client
        self._max_tokens = max_tokens
        self._default_model = default_model
        self.history_builder = AnthropicHistoryBuilder()

    async def stream(self, request: ProviderRequest, emit: EventSink) -> RoundResult:
        spec = request.specification
        tools: dict[int, _PendingTool] = {}
        thinking: dict[int, _PendingThinking] = {}
        text_parts: list[str] = []

        async with self._client.stream_message(
            model=spec.model_name or self._default_model,
            max_tokens=spec.completion_token_limit or self._max_tokens,
            system=request.messages.system,
            tools=anthropic_tools(request.tools),
            messages=request.messages.messages,
            context=ErrorContext(),
        ) as stream:
            async for event in stream:
                self._handle_event(event, tools, thinking, text_parts, emit)
            final = await stream.get_final_message()

        final_inputs = {
            b.id: getattr(b, "input", None) or {}
            for b in final.content
            if getattr(b, "type", None) == "tool_use"
        }
        calls = []
        for pending in tools.values():
            if not pending.completed:
                if not pending.arguments:
                    pending.arguments = json.dumps(
                        final_inputs.get(pending.id, {}), ensure_ascii=False,
                    )
                self._complete(pending, emit)
            calls.append(ToolCall(
                id=pending.id, name=pending.name, arguments=pending.arguments,
            ))

        text = "".join(text_parts)
        if not text:
            text = _final_text(final)
            if text:
                emit(MessageEvent(text=text))
        usage = _usage(final)
        logger.info("Anthropic round complete", extra={
            "provider": self.name,
            "input_tokens": usage.get("input_tokens"),
            "output_tokens": usage.get("output_tokens"),
        })
        return RoundResult(message=text, tool_calls=calls, usage=usage)

    def _handle_event(
        self,
        event: Any,
        tools: dict[int, _PendingTool],
        thinking: dict[int, _PendingThinking],
        text_parts: list[str],
        emit: EventSink,
    ) -> None:
        etype = getattr(event, "type", None)
        index = getattr(event, "index", None)

        if etype == "content_block_start":
            block = event.content_block
            btype = getattr(block, "type", None)
            if btype == "thinking":
                thinking[index] = _PendingThinking()
                emit(ReasoningStartEvent(format=ReasoningFormat.THINKING_TAG))
            elif btype == "tool_use":
                pending = _PendingTool(id=block.id, name=block.name)
                tools[index if index is not None else len(tools)] = pending
                emit(ToolCallStartEvent(id=pending.id, name=pending.name))

        elif etype == "content_block_delta":
            delta = event.delta
            dtype = getattr(delta, "type", None)
            if dtype == "text_delta" and delta.text:
                text_parts.append(delta.text)
                emit(TokenEvent(text=delta.text))
            elif dtype == "input_json_delta":
                pending = tools.get(index)
                if pending is not None and delta.partial_json:
                    pending.arguments += delta.partial_json
                    emit(ToolCallDeltaEvent(
                        id=pending.id, argument_delta=delta.partial_json,
                    ))
            elif dtype == "thinking_delta":
                reasoning = thinking.get(index)
                if reasoning is not None and delta.thinking:
                    reasoning.content += delta.thinking
                    emit(ReasoningDeltaEvent(
                        content=delta.thinking, format=ReasoningFormat.THINKING_TAG,
                    ))
            elif dtype == "signature_delta":
                reasoning = thinking.get(index)
                if reasoning is not None:
                    reasoning.signature += delta.signature

        elif etype == "content_block_stop":
            reasoning = thinking.pop(index, None)
            if reasoning is not None:
                emit(ReasoningEndEvent(
                    full_content=reasoning.content,
                    signature=reasoning.signature or None,
                ))
                return
            pending = tools.get(index)
            if pending is not None and pending.arguments and not pending.completed:
                self._complete(pending, emit)

    @staticmethod
    def _complete(pending: _PendingTool, emit: EventSink) -> None:
        pending.completed = True
        emit(ToolCallCompleteEvent(
            id=pending.id, name=pending.name, arguments=pending.arguments,
        ))


def _final_text(message: Any) -> str:
    return "".join(
        b.text for b in message.content if getattr(b, "type", None) == "text"
    )


def _usage(message: Any) -> dict:
    usage = getattr(message, "usage", None)
    if usage is None:
        return {}
    return {
        "input_tokens": getattr(usage, "input_tokens", 0),
        "output_tokens": getattr(usage, "output_tokens", 0),
    }
