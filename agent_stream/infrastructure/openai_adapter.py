"""OpenAI Adapter — Chat Completions streaming → raw stream events.

Invariants:
    - Tool calls are keyed by the chunk's tool_call index; tool_call_start is
      emitted the first time an index is seen
    - tool_call_complete is emitted once per tool call, after the stream ends,
      in index order
    - All openai SDK failures surface as ProviderAPIError(provider="openai")

Design Decisions:
    - stream_options.include_usage so the final chunk carries token usage
    - The system prompt travels as the first message (no separate field)
    - No retry here: setup retries are the SDK's own max_retries; turn-level
      retries belong to the runner
"""

import logging
import uuid
from dataclasses import dataclass
from typing import Any

import openai
from openai import (
    APIConnectionError,
    APIError,
    APITimeoutError,
    InternalServerError,
    RateLimitError,
)

from agent_stream.core.boundary_protocols import EventSink, ProviderRequest
from agent_stream.core.conversation import RoundResult, ToolCall, ToolDefinition
from agent_stream.core.errors import ErrorContext, ProviderAPIError
from agent_stream.core.history_builders import OpenAIHistoryBuilder
from agent_stream.core.stream_events import (
    TokenEvent,
    ToolCallCompleteEvent,
    ToolCallDeltaEvent,
    ToolCallStartEvent,
)

logger = logging.getLogger(__name__)

PROVIDER = "openai"
DEFAULT_MODEL = "gpt-4o"


@dataclass
class _PendingTool:
    id: str
    name: str = ""
    arguments: str = ""


def openai_tools(tools: list[ToolDefinition]) -> list[dict]:
    return [
        {
            "type": "function",
            "function": {
                "name": t.name,
                "description": t.description,
                "parameters": t.schema,
            },
        }
        for t in tools
    ]


def map_openai_error(e: APIError, context: ErrorContext | None = None) -> ProviderAPIError:
    if isinstance(e, RateLimitError):
        return ProviderAPIError(
            "Rate limit exceeded", PROVIDER, "rate_limit",
            retryable=True, retry_after_ms=_retry_after_ms(e), context=context,
        )
    # APITimeoutError subclasses APIConnectionError
    if isinstance(e, APITimeoutError):
        return ProviderAPIError(
            "API timeout", PROVIDER, "timeout", retryable=True, context=context,
        )
    if isinstance(e, (APIConnectionError, InternalServerError)):
        return ProviderAPIError(
            f"Connection error: {e}", PROVIDER, "connection_error",
            retryable=True, context=context,
        )
    return ProviderAPIError(str(e), PROVIDER, "client_error", context=context)


def _retry_after_ms(e: APIError) -> int | None:
    response = getattr(e, "response", None)
    if response is None:
        return None
    value = response.headers.get("retry-after")
    if not value:
        return None
    try:
        return int(float(value) * 1000)
    except ValueError:
        return None


class OpenAIAdapter:
    """Native streaming for ModelService.OPENAI (and compatible endpoints)."""

    name = PROVIDER

    def __init__(
        self,
        client: openai.AsyncOpenAI,
        default_model: str = DEFAULT_MODEL,
    ):
        self._client = client
        self._default_model = default_model
        self.history_builder = OpenAIHistoryBuilder()

    async def stream(self, request: ProviderRequest, emit: EventSink) -> RoundResult:
        spec = request.specification
        messages = list(request.messages.messages)
        if request.messages.system:
            messages.insert(0, {"role": "system", "content": request.messages.system})

        params: dict[str, Any] = {
            "model": spec.model_name or self._default_model,
            "messages": messages,
            "stream": True,
            "stream_options": {"include_usage": True},
        }
        if spec.completion_token_limit:
            params["max_completion_tokens"] = spec.completion_token_limit
        if request.tools:
            params["tools"] = openai_tools(request.tools)

        tools: dict[int, _PendingTool] = {}
        text_parts: list[str] = []
        usage: dict = {}
        try:
            stream = await self._client.chat.completions.create(**params)
            async for chunk in stream:
                if getattr(chunk, "usage", None) is not None:
                    usage = {
                        "input_tokens": chunk.usage.prompt_tokens,
                        "output_tokens": chunk.usage.completion_tokens,
                    }
                if not chunk.choices:
                    continue
                self._handle_delta(chunk.choices[0].delta, tools, text_parts, emit)
        except APIError as e:
            raise map_openai_error(e, ErrorContext()) from e

        calls = []
        for index in sorted(tools):
            pending = tools[index]
            emit(ToolCallCompleteEvent(
                id=pending.id, name=pending.name, arguments=pending.arguments,
            ))
            calls.append(ToolCall(
                id=pending.id, name=pending.name, arguments=pending.arguments,
            ))

        logger.info("OpenAI round complete", extra={
            "provider": self.name,
            "input_tokens": usage.get("input_tokens"),
            "output_tokens": usage.get("output_tokens"),
        })
        return RoundResult(message="".join(text_parts), tool_calls=calls, usage=usage)

    def _handle_delta(
        self,
        delta: Any,
        tools: dict[int, _PendingTool],
        text_parts: list[str],
        emit: EventSink,
    ) -> None:
        if delta is None:
            return
        if delta.content:
            text_parts.append(delta.content)
            emit(TokenEvent(text=delta.content))

        for tc in delta.tool_calls or ():
            function = getattr(tc, "function", None)
            name = getattr(function, "name", None)
            arguments = getattr(function, "arguments", None)

            pending = tools.get(tc.index)
            if pending is None:
                pending = _PendingTool(
                    id=tc.id or f"tool_{uuid.uuid4().hex[:12]}_{tc.index}",
                    name=name or "",
                )
                tools[tc.index] = pending
                emit(ToolCallStartEvent(id=pending.id, name=pending.name))
            elif name:
                pending.name = name

            if arguments:
                pending.arguments += arguments
                emit(ToolCallDeltaEvent(id=pending.id, argument_delta=arguments))
