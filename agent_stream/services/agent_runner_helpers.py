"""Agent Runner Helpers — round bookkeeping shared by the round drivers and the runner.

Invariants:
    - tool_round_messages() yields ONE assistant message (carrying every tool
      call of the round) followed by one tool message per result, in call order
    - Tool message content is truncated to the tool result token limit

Design Decisions:
    - Extracted from agent_runner.py so drivers share it without importing the runner
"""

from agent_stream.core.context_window import ContextStrategy, truncate_tool_result
from agent_stream.core.conversation import (
    ConversationMessage,
    RoundResult,
    ToolResult,
)
from agent_stream.core.domain_types import MessageRole
from agent_stream.core.tokenizer import Tokenizer


DEFAULT_CONVERSATION_NAME = "Streaming agent conversation"


def tool_round_messages(
    round_result: RoundResult,
    results: list[ToolResult],
    strategy: ContextStrategy,
    tokenizer: Tokenizer | None = None,
) -> list[ConversationMessage]:
    messages = [ConversationMessage(
        role=MessageRole.ASSISTANT,
        text=round_result.message,
        tool_calls=list(round_result.tool_calls),
    )]
    for result in results:
        messages.append(ConversationMessage(
            role=MessageRole.TOOL,
            text=truncate_tool_result(
                result.content, strategy.tool_result_token_limit,
                result.tool_call.name, tokenizer,
            ),
            tool_call_id=result.tool_call.id,
        ))
    return messages


def tool_responses(messages: list[ConversationMessage]) -> list[dict]:
    """Tool messages → backend continue_conversation payload."""
    return [
        {"id": m.tool_call_id, "content": m.text}
        for m in messages
        if m.role == MessageRole.TOOL
    ]


