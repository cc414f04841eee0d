"""Error Hierarchy — typed, categorized exceptions for every fatal turn failure.

Invariants:
    - Every error has a code (str), category (ErrorCategory), severity (ErrorSeverity)
    - Only resolution-blocking failures are raised; tool and stream hiccups are data
    - to_response() produces the REST envelope; to_sse_event() produces the SSE envelope
    - No internal details leaked in user-facing messages

Design Decisions:
    - Single hierarchy with AgentStreamError base: FastAPI global handler catches all
    - ErrorContext as dataclass: rich observability without coupling to logging
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any
from datetime import datetime, timezone


class ErrorSeverity(str, Enum):
    """Error severity for observability and client handling."""
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class ErrorCategory(str, Enum):
    """High-level error categories for routing and handling."""
    VALIDATION = "validation"
    RESOURCE_NOT_FOUND = "resource_not_found"
    EXTERNAL_API = "external_api"
    CANCELLED = "cancelled"
    INTERNAL = "internal"


@dataclass
class ErrorContext:
    """Rich context for error observability and debugging."""
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    conversation_id: str | None = None
    tool_name: str | None = None
    round_number: int | None = None
    user_message: str | None = None
    debug_info: dict[str, Any] | None = None
    retry_after_ms: int | None = None


class AgentStreamError(Exception):
    """Base exception for all orchestration errors."""

    def __init__(
        self,
        message: str,
        code: str,
        category: ErrorCategory,
        severity: ErrorSeverity = ErrorSeverity.ERROR,
        context: ErrorContext | None = None,
        http_status: int = 500,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.category = category
        self.severity = severity
        self.context = context or ErrorContext()
        self.http_status = http_status

    def to_response(self) -> dict:
        """Convert to standardized REST error response."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "category": self.category.value,
                "severity": self.severity.value,
                "timestamp": self.context.timestamp.isoformat(),
                "context": {
                    "conversation_id": self.context.conversation_id,
                    "tool_name": self.context.tool_name,
                    "round_number": self.context.round_number,
                    "retry_after_ms": self.context.retry_after_ms,
                },
            }
        }

    def to_sse_event(self) -> dict:
        """Convert to SSE error event."""
        return {
            "type": "error",
            "data": {
                "code": self.code,
                "message": self.context.user_message or self.message,
                "severity": self.severity.value,
                "recoverable": self.severity in (
                    ErrorSeverity.INFO, ErrorSeverity.WARNING,
                ),
                "conversation_id": self.context.conversation_id,
            },
        }


# ─── Resolution Errors (400-level) ──────────────────────────────

class SpecificationNotFoundError(AgentStreamError):
    """Specification reference could not be resolved by the backend."""
    def __init__(self, specification_id: str, context: ErrorContext | None = None):
        super().__init__(
            f"Specification '{specification_id}' not found",
            "SPECIFICATION_NOT_FOUND", ErrorCategory.RESOURCE_NOT_FOUND,
            ErrorSeverity.ERROR, context, 404,
        )
        self.specification_id = specification_id


class TurnCancelledError(AgentStreamError):
    """Turn aborted by its cancellation signal."""
    def __init__(self, context: ErrorContext | None = None):
        super().__init__(
            "Operation aborted", "TURN_CANCELLED", ErrorCategory.CANCELLED,
            ErrorSeverity.WARNING, context, 499,
        )


# ─── Infrastructure Errors (500-level) ──────────────────────────

class ConversationCreateError(AgentStreamError):
    """Backend did not return an id for a newly created conversation."""
    def __init__(self, context: ErrorContext | None = None):
        super().__init__(
            "Failed to create conversation",
            "CONVERSATION_CREATE_FAILED", ErrorCategory.EXTERNAL_API,
            ErrorSeverity.CRITICAL, context, 502,
        )


class FormatConversationError(AgentStreamError):
    """Backend did not return a formatted prompt for streaming."""
    def __init__(self, context: ErrorContext | None = None):
        super().__init__(
            "Failed to format conversation for streaming",
            "FORMAT_CONVERSATION_FAILED", ErrorCategory.EXTERNAL_API,
            ErrorSeverity.CRITICAL, context, 502,
        )


class BackendAPIError(AgentStreamError):
    """Conversation backend call failed (transport or GraphQL error)."""
    def __init__(
        self, message: str, operation: str, context: ErrorContext | None = None,
    ):
        super().__init__(
            f"Backend {operation} failed: {message}",
            "BACKEND_API_ERROR", ErrorCategory.EXTERNAL_API,
            ErrorSeverity.CRITICAL, context, 503,
        )
        self.operation = operation


class ProviderAPIError(AgentStreamError):
    """Model provider call failed."""
    def __init__(
        self,
        message: str,
        provider: str,
        api_error_type: str,
        retryable: bool = False,
        retry_after_ms: int | None = None,
        context: ErrorContext | None = None,
    ):
        ctx = context or ErrorContext()
        ctx.retry_after_ms = retry_after_ms
        super().__init__(
            f"{provider} API error ({api_error_type}): {message}",
            "PROVIDER_API_ERROR", ErrorCategory.EXTERNAL_API,
            ErrorSeverity.CRITICAL, ctx, 503,
        )
        self.provider = provider
        self.api_error_type = api_error_type
        self.retryable = retryable
