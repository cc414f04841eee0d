"""UI Events — coalesced, caller-facing events and their SSE envelope.

Invariants:
    - MessageUpdate.text never shrinks within a turn
    - ToolUpdate carries a snapshot (copy) of the tool call, never the live object
    - to_sse_event() always returns {"type": <UIEventType value>, "data": {...}}

Design Decisions:
    - Dataclasses + explicit to_sse_event(): same envelope as the error hierarchy
"""

import copy
from dataclasses import dataclass, field
from typing import Any, ClassVar, Union

from agent_stream.core.domain_types import ReasoningFormat, ToolCallStatus, UIEventType


@dataclass
class UIToolCall:
    """Tool call as tracked by the normalizer (one per provider tool-call id)."""
    id: str
    name: str
    description: str
    arguments: str = ""
    status: ToolCallStatus = ToolCallStatus.PREPARING
    result: Any = None
    error: str | None = None

    def snapshot(self) -> "UIToolCall":
        return copy.deepcopy(self)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "arguments": self.arguments,
            "status": self.status.value,
            "result": self.result,
            "error": self.error,
        }


@dataclass(frozen=True)
class ConversationStarted:
    type: ClassVar[UIEventType] = UIEventType.CONVERSATION_STARTED
    conversation_id: str
    model: str | None = None

    def to_sse_event(self) -> dict:
        return {"type": self.type.value, "data": {
            "conversation_id": self.conversation_id, "model": self.model,
        }}


@dataclass(frozen=True)
class MessageUpdate:
    type: ClassVar[UIEventType] = UIEventType.MESSAGE_UPDATE
    text: str
    is_streaming: bool
    conversation_id: str | None = None

    def to_sse_event(self) -> dict:
        return {"type": self.type.value, "data": {
            "text": self.text,
            "is_streaming": self.is_streaming,
            "conversation_id": self.conversation_id,
        }}


@dataclass(frozen=True)
class ToolUpdate:
    type: ClassVar[UIEventType] = UIEventType.TOOL_UPDATE
    tool_call: UIToolCall
    status: ToolCallStatus
    result: Any = None
    error: str | None = None

    def to_sse_event(self) -> dict:
        return {"type": self.type.value, "data": {
            "tool_call": self.tool_call.to_dict(),
            "status": self.status.value,
            "result": self.result,
            "error": self.error,
        }}


@dataclass(frozen=True)
class ConversationCompleted:
    type: ClassVar[UIEventType] = UIEventType.CONVERSATION_COMPLETED
    text: str
    tool_calls: list[UIToolCall] = field(default_factory=list)
    conversation_id: str | None = None
    metrics: dict = field(default_factory=dict)
    context_window: dict | None = None

    def to_sse_event(self) -> dict:
        data = {
            "text": self.text,
            "tool_calls": [t.to_dict() for t in self.tool_calls],
            "conversation_id": self.conversation_id,
            "metrics": self.metrics,
        }
        if self.context_window is not None:
            data["context_window"] = self.context_window
        return {"type": self.type.value, "data": data}


@dataclass(frozen=True)
class StreamError:
    type: ClassVar[UIEventType] = UIEventType.ERROR
    message: str
    recoverable: bool
    conversation_id: str | None = None
    code: str | None = None

    def to_sse_event(self) -> dict:
        return {"type": self.type.value, "data": {
            "message": self.message,
            "recoverable": self.recoverable,
            "conversation_id": self.conversation_id,
            "code": self.code,
        }}


@dataclass(frozen=True)
class ContextWindowUpdate:
    type: ClassVar[UIEventType] = UIEventType.CONTEXT_WINDOW
    usage: dict

    def to_sse_event(self) -> dict:
        return {"type": self.type.value, "data": dict(self.usage)}


@dataclass(frozen=True)
class ReasoningUpdate:
    """Accumulated reasoning of the current block. is_complete marks its last update."""
    type: ClassVar[UIEventType] = UIEventType.REASONING_UPDATE
    content: str
    format: ReasoningFormat
    is_complete: bool
    conversation_id: str | None = None

    def to_sse_event(self) -> dict:
        return {"type": self.type.value, "data": {
            "content": self.content,
            "format": self.format.value,
            "is_complete": self.is_complete,
            "conversation_id": self.conversation_id,
        }}


UIEvent = Union[
    ConversationStarted, MessageUpdate, ToolUpdate,
    ConversationCompleted, StreamError, ContextWindowUpdate, ReasoningUpdate,
]
