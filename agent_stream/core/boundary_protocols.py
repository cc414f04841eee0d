"""Boundary Protocols — contracts between the engine and its external collaborators.

Invariants:
    - Core NEVER imports from shell — dependency arrows point inward only
    - Every IO collaborator (backend, provider, timers) is reached through a Protocol
    - Implementations provided by the shell via dependency injection

Design Decisions:
    - Protocol over ABC: structural subtyping, fakes in tests need no base class
    - Async in Protocol: boundary methods do IO; pure helpers stay sync
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Protocol

from agent_stream.core.conversation import (
    ConversationMessage,
    FormattedConversation,
    RoundResult,
    Specification,
    ToolDefinition,
)
from agent_stream.core.stream_events import RawStreamEvent


EventSink = Callable[[RawStreamEvent], None]


class ConversationBackend(Protocol):
    """Remote conversation store + specification registry."""
    async def get_specification(self, specification_id: str) -> Specification | None: ...
    async def create_conversation(
        self, name: str, specification_id: str | None,
        tools: list[ToolDefinition] | None = None,
    ) -> str | None: ...
    async def get_conversation(self, conversation_id: str) -> list[ConversationMessage]: ...
    async def format_conversation(
        self, prompt: str, conversation_id: str, specification_id: str | None,
        tools: list[ToolDefinition] | None = None,
    ) -> FormattedConversation: ...
    async def prompt_conversation(
        self, prompt: str, conversation_id: str, specification_id: str | None,
        tools: list[ToolDefinition] | None = None,
    ) -> ConversationMessage | None: ...
    async def continue_conversation(
        self, conversation_id: str, tool_responses: list[dict],
    ) -> ConversationMessage | None: ...
    async def complete_conversation(self, message: str, conversation_id: str) -> None: ...


class HistoryBuilder(Protocol):
    """Turns provider-neutral history into one vendor's message shape."""
    def build(self, messages: list[ConversationMessage]) -> "ProviderMessages": ...


@dataclass
class ProviderMessages:
    system: str | None = None
    messages: list[dict] = field(default_factory=list)


@dataclass
class ProviderRequest:
    specification: Specification
    messages: ProviderMessages
    tools: list[ToolDefinition] = field(default_factory=list)


class ProviderAdapter(Protocol):
    """Native streaming adapter: emits raw events, returns the round result."""
    name: str
    history_builder: HistoryBuilder

    async def stream(self, request: ProviderRequest, emit: EventSink) -> RoundResult: ...


class TimerHandle(Protocol):
    def cancel(self) -> Any: ...


class Scheduler(Protocol):
    """Clock + single-shot delayed callbacks (seconds)."""
    def now(self) -> float: ...
    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle: ...
