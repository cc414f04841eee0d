"""Fallback Round — non-streaming rounds with a synthesized token stream.

Invariants:
    - First round: prompt_conversation; later rounds: continue_conversation
      with the previous round's tool responses
    - Event cadence matches native streaming: token* → message → per tool call
      tool_call_start + tool_call_complete
    - The backend persists the assistant message itself (persists_final_message)
"""

import logging
import uuid

from agent_stream.core.boundary_protocols import ConversationBackend, EventSink
from agent_stream.core.context_window import ContextStrategy
from agent_stream.core.conversation import (
    ConversationMessage,
    RoundResult,
    Specification,
    ToolCall,
    ToolDefinition,
    ToolResult,
)
from agent_stream.core.stream_events import (
    MessageEvent,
    TokenEvent,
    ToolCallCompleteEvent,
    ToolCallStartEvent,
)
from agent_stream.core.synthetic_stream import synthetic_tokens
from agent_stream.core.tokenizer import Tokenizer
from agent_stream.services.agent_runner_helpers import (
    tool_responses,
    tool_round_messages,
)

logger = logging.getLogger(__name__)


class FallbackRound:
    """Round driver for providers/models without native streaming."""

    persists_final_message = True

    def __init__(
        self,
        backend: ConversationBackend,
        specification: Specification,
        conversation_id: str,
        prompt: str,
        tools: list[ToolDefinition],
        strategy: ContextStrategy,
        tokenizer: Tokenizer | None = None,
    ):
        self._backend = backend
        self._spec = specification
        self._conversation_id = conversation_id
        self._prompt = prompt
        self._tools = tools
        self._strategy = strategy
        self._tokenizer = tokenizer
        self._pending_responses: list[dict] | None = None

    async def prepare(self) -> None:
        logger.info("Using non-streaming fallback", extra={
            "conversation_id": self._conversation_id,
            "provider": self._spec.service_type.value,
        })

    async def run_round(self, round_number: int, emit: EventSink) -> RoundResult:
        if self._pending_responses is None:
            message = await self._backend.prompt_conversation(
                self._prompt, self._conversation_id, self._spec.id, self._tools,
            )
        else:
            responses, self._pending_responses = self._pending_responses, None
            message = await self._backend.continue_conversation(
                self._conversation_id, responses,
            )
        return _replay(message, emit)

    def add_tool_round(self, round_result: RoundResult, results: list[ToolResult]) -> None:
        messages = tool_round_messages(
            round_result, results, self._strategy, self._tokenizer,
        )
        self._pending_responses = tool_responses(messages)

    def context_usage(self) -> dict | None:
        return None


def _replay(message: ConversationMessage | None, emit: EventSink) -> RoundResult:
    """Emit a complete backend message as if it had been streamed."""
    if message is None:
        return RoundResult()

    text = message.text or ""
    if text:
        for token in synthetic_tokens(text):
            emit(TokenEvent(text=token))
        emit(MessageEvent(text=text))

    calls = [
        ToolCall(
            id=c.id or f"tool-{uuid.uuid4().hex[:12]}",
            name=c.name, arguments=c.arguments or "",
        )
        for c in message.tool_calls
    ]
    for call in calls:
        emit(ToolCallStartEvent(id=call.id, name=call.name))
        emit(ToolCallCompleteEvent(
            id=call.id, name=call.name, arguments=call.arguments,
        ))
    return RoundResult(message=text, tool_calls=calls)
