"""Raw Stream Events — the canonical low-level units consumed by the normalizer.

Invariants:
    - Every event class carries a class-level `type` (RawEventType)
    - For one tool-call id: ToolCallStart precedes any ToolCallDelta/ToolCallComplete
    - At most one ToolCallComplete per tool-call id per round
    - ReasoningStart opens a block; ReasoningDelta extends it; ReasoningEnd closes it

Design Decisions:
    - Frozen dataclasses: events are values, never mutated after emission
    - ClassVar discriminator instead of a union tag field: dispatch by event.type
"""

from dataclasses import dataclass
from typing import ClassVar, Union

from agent_stream.core.domain_types import RawEventType, ReasoningFormat


@dataclass(frozen=True)
class StartEvent:
    type: ClassVar[RawEventType] = RawEventType.START
    conversation_id: str


@dataclass(frozen=True)
class TokenEvent:
    type: ClassVar[RawEventType] = RawEventType.TOKEN
    text: str


@dataclass(frozen=True)
class MessageEvent:
    """A complete, non-incremental message for the current round."""
    type: ClassVar[RawEventType] = RawEventType.MESSAGE
    text: str


@dataclass(frozen=True)
class ToolCallStartEvent:
    type: ClassVar[RawEventType] = RawEventType.TOOL_CALL_START
    id: str
    name: str


@dataclass(frozen=True)
class ToolCallDeltaEvent:
    type: ClassVar[RawEventType] = RawEventType.TOOL_CALL_DELTA
    id: str
    argument_delta: str


@dataclass(frozen=True)
class ToolCallCompleteEvent:
    """Full argument JSON text for a tool call."""
    type: ClassVar[RawEventType] = RawEventType.TOOL_CALL_COMPLETE
    id: str
    name: str
    arguments: str


@dataclass(frozen=True)
class CompleteEvent:
    type: ClassVar[RawEventType] = RawEventType.COMPLETE
    message_id: str | None = None
    conversation_id: str | None = None


@dataclass(frozen=True)
class ErrorEvent:
    """Provider or orchestration error. fatal=True is never recoverable."""
    type: ClassVar[RawEventType] = RawEventType.ERROR
    message: str
    fatal: bool = False


@dataclass(frozen=True)
class ContextWindowEvent:
    type: ClassVar[RawEventType] = RawEventType.CONTEXT_WINDOW
    usage: dict


@dataclass(frozen=True)
class ReasoningStartEvent:
    type: ClassVar[RawEventType] = RawEventType.REASONING_START
    format: ReasoningFormat = ReasoningFormat.THINKING_TAG


@dataclass(frozen=True)
class ReasoningDeltaEvent:
    type: ClassVar[RawEventType] = RawEventType.REASONING_DELTA
    content: str
    format: ReasoningFormat = ReasoningFormat.THINKING_TAG


@dataclass(frozen=True)
class ReasoningEndEvent:
    """Closes a reasoning block. signature is opaque provider verification data."""
    type: ClassVar[RawEventType] = RawEventType.REASONING_END
    full_content: str
    signature: str | None = None


RawStreamEvent = Union[
    StartEvent, TokenEvent, MessageEvent,
    ToolCallStartEvent, ToolCallDeltaEvent, ToolCallCompleteEvent,
    CompleteEvent, ErrorEvent, ContextWindowEvent,
    ReasoningStartEvent, ReasoningDeltaEvent, ReasoningEndEvent,
]
