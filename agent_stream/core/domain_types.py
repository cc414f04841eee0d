"""Domain Types — enums and NewTypes shared by the streaming engine.

Invariants:
    - All valid states encoded as Enums — no raw string matching outside this module
    - ToolCallStatus transitions are monotonic (see TERMINAL_TOOL_STATUSES)

Design Decisions:
    - str Enums: serialize to JSON/SSE without custom encoders
    - NewType ids: zero runtime cost, full type-checker support
"""

from enum import Enum
from typing import NewType


# ─── Identity Types ──────────────────────────────────────────────

ConversationId = NewType("ConversationId", str)
ToolCallId = NewType("ToolCallId", str)
SpecificationId = NewType("SpecificationId", str)


# ─── Enums ───────────────────────────────────────────────────────

class MessageRole(str, Enum):
    """Conversation message roles (context-management view)."""
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class ToolCallStatus(str, Enum):
    """Tool call lifecycle: preparing → executing → completed | failed."""
    PREPARING = "preparing"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_TOOL_STATUSES = frozenset({
    ToolCallStatus.COMPLETED, ToolCallStatus.FAILED,
})


class ChunkingStrategy(str, Enum):
    """Built-in smoothing chunkers. Custom chunkers are plain callables."""
    WORD = "word"
    CHARACTER = "character"
    SENTENCE = "sentence"


class ReasoningFormat(str, Enum):
    """How a provider marks up model reasoning."""
    THINKING_TAG = "thinking_tag"
    MARKDOWN = "markdown"


class ModelService(str, Enum):
    """Provider families known to the provider registry."""
    ANTHROPIC = "anthropic"
    OPENAI = "openai"
    GOOGLE = "google"
    OTHER = "other"


class RawEventType(str, Enum):
    """Low-level events produced by provider adapters and round drivers."""
    START = "start"
    TOKEN = "token"
    MESSAGE = "message"
    TOOL_CALL_START = "tool_call_start"
    TOOL_CALL_DELTA = "tool_call_delta"
    TOOL_CALL_COMPLETE = "tool_call_complete"
    COMPLETE = "complete"
    ERROR = "error"
    CONTEXT_WINDOW = "context_window"
    REASONING_START = "reasoning_start"
    REASONING_DELTA = "reasoning_delta"
    REASONING_END = "reasoning_end"


class UIEventType(str, Enum):
    """High-level events delivered to the caller."""
    CONVERSATION_STARTED = "conversation_started"
    MESSAGE_UPDATE = "message_update"
    TOOL_UPDATE = "tool_update"
    CONVERSATION_COMPLETED = "conversation_completed"
    ERROR = "error"
    CONTEXT_WINDOW = "context_window"
    REASONING_UPDATE = "reasoning_update"
