"""Conversation Types — turn, message, tool and specification value objects.

Invariants:
    - ConversationMessage order is append-only within a turn (tail may be windowed)
    - ToolCall.arguments is the raw JSON text as produced by the model
    - ToolResult.content is always a JSON string (result or {"error": ...})
"""

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Union

from agent_stream.core.domain_types import MessageRole, ModelService


ToolHandler = Callable[[Any], Union[Any, Awaitable[Any]]]


@dataclass(frozen=True)
class ToolDefinition:
    """Tool exposed to the model: name, description, JSON schema of arguments."""
    name: str
    description: str = ""
    schema: dict = field(default_factory=lambda: {"type": "object", "properties": {}})


@dataclass(frozen=True)
class ToolCall:
    id: str
    name: str
    arguments: str = ""


@dataclass(frozen=True)
class ToolResult:
    tool_call: ToolCall
    content: str
    result: Any = None
    error: str | None = None

    @property
    def failed(self) -> bool:
        return self.error is not None


@dataclass
class ConversationMessage:
    """Provider-neutral message; history builders turn these into vendor shapes."""
    role: MessageRole
    text: str = ""
    tokens: int | None = None
    tool_calls: list[ToolCall] = field(default_factory=list)
    tool_call_id: str | None = None

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)


@dataclass(frozen=True)
class Specification:
    """Backend-resolved model selection for a turn."""
    id: str
    service_type: ModelService
    model_name: str | None = None
    system_prompt: str | None = None
    supports_streaming: bool = True
    token_limit: int | None = None
    completion_token_limit: int | None = None


@dataclass(frozen=True)
class FormattedConversation:
    """format_conversation result: formatted prompt + server token accounting."""
    message: str | None
    token_limit: int | None = None
    completion_token_limit: int | None = None
    message_tokens: list[int | None] = field(default_factory=list)


@dataclass(frozen=True)
class RoundResult:
    """What a provider round (or a fallback round) produced."""
    message: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    usage: dict | None = None
