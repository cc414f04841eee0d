"""Streaming Round — drives one turn's rounds through a native provider adapter.

Invariants:
    - format_conversation and get_conversation are called ONCE per turn (prepare)
    - Header = system prompt + prior history (minus the message just added)
      + formatted user message; windowing never touches it
    - Does not persist the final message (the runner calls complete_conversation)

Design Decisions:
    - Provider-neutral history kept here; the adapter's history builder shapes it
      per vendor on every round
    - Budget tracker seeded from server accounting; windowing only once usage
      crosses the rebudget threshold
"""

import logging

from agent_stream.core.boundary_protocols import (
    ConversationBackend,
    EventSink,
    ProviderAdapter,
    ProviderRequest,
)
from agent_stream.core.context_window import (
    ContextStrategy,
    TokenBudgetTracker,
    message_tokens,
    window_tool_rounds,
)
from agent_stream.core.conversation import (
    ConversationMessage,
    RoundResult,
    Specification,
    ToolDefinition,
    ToolResult,
)
from agent_stream.core.domain_types import MessageRole
from agent_stream.core.errors import ErrorContext, FormatConversationError
from agent_stream.core.tokenizer import Tokenizer
from agent_stream.services.agent_runner_helpers import tool_round_messages

logger = logging.getLogger(__name__)


class StreamingRound:
    """Round driver over a native streaming ProviderAdapter."""

    persists_final_message = False

    def __init__(
        self,
        backend: ConversationBackend,
        adapter: ProviderAdapter,
        specification: Specification,
        conversation_id: str,
        prompt: str,
        tools: list[ToolDefinition],
        strategy: ContextStrategy,
        tokenizer: Tokenizer | None = None,
    ):
        self._backend = backend
        self._adapter = adapter
        self._spec = specification
        self._conversation_id = conversation_id
        self._prompt = prompt
        self._tools = tools
        self._strategy = strategy
        self._tokenizer = tokenizer
        self._messages: list[ConversationMessage] = []
        self._tracker: TokenBudgetTracker | None = None

    @property
    def messages(self) -> list[ConversationMessage]:
        return self._messages

    @property
    def tracker(self) -> TokenBudgetTracker | None:
        return self._tracker

    async def prepare(self) -> None:
        formatted = await self._backend.format_conversation(
            self._prompt, self._conversation_id, self._spec.id, self._tools,
        )
        if formatted is None or not formatted.message:
            raise FormatConversationError(
                ErrorContext(conversation_id=self._conversation_id),
            )

        history = await self._backend.get_conversation(self._conversation_id)
        messages: list[ConversationMessage] = []
        if self._spec.system_prompt:
            messages.append(ConversationMessage(
                role=MessageRole.SYSTEM, text=self._spec.system_prompt,
            ))
        messages.extend(history[:-1])
        messages.append(ConversationMessage(
            role=MessageRole.USER, text=formatted.message,
        ))
        self._messages = messages

        self._tracker = TokenBudgetTracker.from_details(
            formatted.token_limit or self._spec.token_limit,
            formatted.completion_token_limit or self._spec.completion_token_limit,
            formatted.message_tokens,
            self._tokenizer,
        )
        logger.debug("Streaming round prepared", extra={
            "conversation_id": self._conversation_id,
            "history_messages": len(history),
            "provider": self._adapter.name,
        })

    async def run_round(self, round_number: int, emit: EventSink) -> RoundResult:
        request = ProviderRequest(
            specification=self._spec,
            messages=self._adapter.history_builder.build(self._messages),
            tools=self._tools,
        )
        logger.info("Streaming round", extra={
            "conversation_id": self._conversation_id,
            "round_number": round_number,
            "provider": self._adapter.name,
        })
        return await self._adapter.stream(request, emit)

    def add_tool_round(self, round_result: RoundResult, results: list[ToolResult]) -> None:
        added = tool_round_messages(
            round_result, results, self._strategy, self._tokenizer,
        )
        self._messages.extend(added)
        if self._tracker is None:
            return

        for msg in added:
            self._tracker.add_message(None, message_tokens(msg, self._tokenizer))
        if not self._tracker.needs_rebudget(self._strategy.rebudget_threshold):
            return

        windowed = window_tool_rounds(self._messages, self._strategy.tool_round_limit)
        if windowed is self._messages:
            return
        before = self._tracker.usage_percent
        self._messages = windowed
        self._tracker.reset_from_messages(windowed)
        logger.info("Tool rounds windowed", extra={
            "conversation_id": self._conversation_id,
            "usage_before": before,
            "usage_after": self._tracker.usage_percent,
            "kept_rounds": self._strategy.tool_round_limit,
        })

    def context_usage(self) -> dict | None:
        return self._tracker.snapshot() if self._tracker else None
