"""Event Normalizer — raw provider events → coalesced, optionally smoothed UI events.

Invariants:
    - handle_event() never raises; unknown variants are ignored
    - The accumulated text never shrinks within a turn
    - Tool calls only move forward: preparing → executing → completed | failed
    - result/error of a tool call are set at most once
    - At most one message_update per interval via a single pending-update timer
    - Exactly one message_update(is_streaming=False) is emitted at completion
    - After dispose() every event and timer callback is a no-op
    - Reasoning accumulates separately and never touches the message text

Design Decisions:
    - Two single-slot timers (chunk pacing, update throttling) on an injected
      Scheduler, so tests drive time by hand
    - Word/character chunks are paced through a FIFO queue; sentence and custom
      chunks are applied immediately
    - defer_tool_completion: when the loop runs handlers, a parsed
      tool_call_complete only records arguments and set_tool_result() settles it
"""

import json
import logging
import math
from collections import deque
from dataclasses import dataclass
from typing import Callable, Mapping, Union

from agent_stream.core.chunking import Chunker, is_paced, next_chunk, resolve_chunker
from agent_stream.core.boundary_protocols import Scheduler, TimerHandle
from agent_stream.core.domain_types import (
    ChunkingStrategy,
    RawEventType,
    ReasoningFormat,
    TERMINAL_TOOL_STATUSES,
    ToolCallStatus,
)
from agent_stream.core.stream_events import (
    CompleteEvent,
    ContextWindowEvent,
    ErrorEvent,
    MessageEvent,
    RawStreamEvent,
    ReasoningDeltaEvent,
    ReasoningEndEvent,
    ReasoningStartEvent,
    StartEvent,
    TokenEvent,
    ToolCallCompleteEvent,
    ToolCallDeltaEvent,
    ToolCallStartEvent,
)
from agent_stream.core.ui_events import (
    ContextWindowUpdate,
    ConversationCompleted,
    ConversationStarted,
    MessageUpdate,
    ReasoningUpdate,
    StreamError,
    ToolUpdate,
    UIEvent,
    UIToolCall,
)

logger = logging.getLogger(__name__)

PARSE_FAILURE_MESSAGE = "Failed to parse tool response"
ROUND_SEPARATOR = "\n\n"

ToolDescriptions = Union[Mapping[str, str], Callable[[str], "str | None"], None]


@dataclass(frozen=True)
class NormalizerOptions:
    smoothing_enabled: bool = False
    chunking_strategy: Union[ChunkingStrategy, Chunker] = ChunkingStrategy.WORD
    smoothing_delay_ms: int = 30
    update_interval_ms: int = 30
    auto_retry: bool = False
    max_retries: int = 3
    defer_tool_completion: bool = False
    tool_descriptions: ToolDescriptions = None
    model: str | None = None


class EventNormalizer:
    """Per-turn state machine. Never shared across turns."""

    def __init__(
        self,
        on_event: Callable[[UIEvent], None],
        scheduler: Scheduler,
        options: NormalizerOptions | None = None,
        conversation_id: str | None = None,
    ):
        self._on_event = on_event
        self._scheduler = scheduler
        self._options = options or NormalizerOptions()
        self._conversation_id = conversation_id

        opts = self._options
        self._chunker: Chunker | None = None
        self._paced = False
        if opts.smoothing_enabled:
            self._chunker = resolve_chunker(opts.chunking_strategy)
            self._paced = is_paced(opts.chunking_strategy)
        self._chunk_delay = opts.smoothing_delay_ms / 1000
        self._update_interval = (
            self._chunk_delay if opts.smoothing_enabled
            else opts.update_interval_ms / 1000
        )

        self._text = ""
        self._round_offset = 0
        self._buffer = ""
        self._queue: deque[str] = deque()
        self._tool_calls: dict[str, UIToolCall] = {}
        self._awaiting_text_after_tools = False
        self._reasoning = ""
        self._reasoning_format: ReasoningFormat | None = None
        self._reasoning_signature: str | None = None

        self._streaming = True
        self._completed = False
        self._disposed = False
        self._error_count = 0
        self._context_window: dict | None = None

        self._update_timer: TimerHandle | None = None
        self._chunk_timer: TimerHandle | None = None
        self._last_update_at = -math.inf
        self._last_chunk_at = -math.inf

        self._started_at = scheduler.now()
        self._first_token_at: float | None = None
        self._last_token_at: float | None = None
        self._token_delays: list[float] = []
        self._token_count = 0

    # -- Public API ------------------------------------------------------------

    @property
    def text(self) -> str:
        return self._text

    @property
    def reasoning(self) -> str:
        return self._reasoning

    @property
    def reasoning_signature(self) -> str | None:
        return self._reasoning_signature

    @property
    def is_streaming(self) -> bool:
        return self._streaming

    @property
    def error_count(self) -> int:
        return self._error_count

    @property
    def disposed(self) -> bool:
        return self._disposed

    def tool_call(self, tool_call_id: str) -> UIToolCall | None:
        call = self._tool_calls.get(tool_call_id)
        return call.snapshot() if call else None

    def handle_event(self, event: RawStreamEvent) -> None:
        if self._disposed:
            return
        handler = self._HANDLERS.get(getattr(event, "type", None))
        if handler is None:
            logger.debug("Ignoring unknown raw event", extra={
                "event_type": repr(getattr(event, "type", event)),
            })
            return
        try:
            handler(self, event)
        except Exception as e:
            logger.error(
                "Event normalizer failed on %s: %s", event.type.value, e,
                extra={"conversation_id": self._conversation_id},
                exc_info=True,
            )

    def set_tool_result(
        self, tool_call_id: str, result: object, error: str | None = None,
    ) -> None:
        """Settle a tool call after its handler finished. Unknown/terminal → no-op."""
        if self._disposed:
            return
        call = self._tool_calls.get(tool_call_id)
        if call is None or call.status in TERMINAL_TOOL_STATUSES:
            return
        if error is not None:
            call.status = ToolCallStatus.FAILED
            call.error = error
        else:
            call.status = ToolCallStatus.COMPLETED
            call.result = result
        self._emit_tool_update(call)

    def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        self._cancel_update_timer()
        self._cancel_chunk_timer()
        self._queue.clear()
        self._buffer = ""
        self._tool_calls.clear()

    # -- Raw event handlers ----------------------------------------------------

    def _on_start(self, event: StartEvent) -> None:
        self._conversation_id = event.conversation_id
        self._streaming = True
        self._emit(ConversationStarted(
            conversation_id=event.conversation_id, model=self._options.model,
        ))

    def _on_token(self, event: TokenEvent) -> None:
        if not event.text:
            return
        now = self._scheduler.now()
        if self._first_token_at is None:
            self._first_token_at = now
        if self._last_token_at is not None:
            self._token_delays.append(now - self._last_token_at)
        self._last_token_at = now
        self._token_count += 1

        self._resume_text_after_tools()
        if self._chunker is None:
            self._text += event.text
            self._request_update()
            return

        self._buffer += event.text
        chunks = self._extract_chunks()
        if self._paced:
            self._queue.extend(chunks)
            self._schedule_chunk_drain()
        elif chunks:
            self._text += "".join(chunks)
            self._request_update()

    def _on_message(self, event: MessageEvent) -> None:
        self._flush_pending_text()
        self._resume_text_after_tools()
        current = self._text[self._round_offset:]
        if len(event.text) > len(current) and event.text.startswith(current):
            self._text = self._text[:self._round_offset] + event.text
        elif event.text != current:
            logger.debug("Message diverges from streamed text, keeping stream", extra={
                "conversation_id": self._conversation_id,
            })
        self._request_update()

    def _on_tool_call_start(self, event: ToolCallStartEvent) -> None:
        if event.id in self._tool_calls:
            logger.warning("Duplicate tool_call_start ignored", extra={
                "tool_call_id": event.id, "tool_name": event.name,
            })
            return
        if self._flush_pending_text():
            self._request_update()

        call = UIToolCall(
            id=event.id, name=event.name,
            description=self._describe(event.name),
        )
        self._tool_calls[event.id] = call
        self._awaiting_text_after_tools = True
        self._emit_tool_update(call)

    def _on_tool_call_delta(self, event: ToolCallDeltaEvent) -> None:
        call = self._known_call(event.id)
        if call is None or call.status in TERMINAL_TOOL_STATUSES:
            return
        call.arguments += event.argument_delta
        if call.status == ToolCallStatus.PREPARING:
            call.status = ToolCallStatus.EXECUTING
        # Every delta re-emits so the UI can render arguments as they stream
        self._emit_tool_update(call)

    def _on_tool_call_complete(self, event: ToolCallCompleteEvent) -> None:
        call = self._known_call(event.id)
        if call is None or call.status in TERMINAL_TOOL_STATUSES:
            return
        call.arguments = event.arguments
        try:
            parsed = json.loads(event.arguments) if event.arguments else {}
        except json.JSONDecodeError:
            call.status = ToolCallStatus.FAILED
            call.error = PARSE_FAILURE_MESSAGE
            logger.warning("Tool arguments are not valid JSON", extra={
                "tool_call_id": event.id, "tool_name": call.name,
            })
            self._emit_tool_update(call)
            return

        if self._options.defer_tool_completion:
            if call.status == ToolCallStatus.PREPARING:
                call.status = ToolCallStatus.EXECUTING
                self._emit_tool_update(call)
            return
        call.status = ToolCallStatus.COMPLETED
        call.result = parsed
        self._emit_tool_update(call)

    def _on_complete(self, event: CompleteEvent) -> None:
        if self._completed:
            return
        self._completed = True
        if event.conversation_id:
            self._conversation_id = event.conversation_id

        self._cancel_chunk_timer()
        self._cancel_update_timer()
        self._flush_pending_text()
        self._streaming = False
        self._emit_update()

        self._emit(ConversationCompleted(
            text=self._text,
            tool_calls=[c.snapshot() for c in self._tool_calls.values()],
            conversation_id=self._conversation_id,
            metrics=self._metrics(),
            context_window=self._context_window,
        ))

    def _on_error(self, event: ErrorEvent) -> None:
        self._error_count += 1
        opts = self._options
        recoverable = (
            opts.auto_retry
            and self._error_count < opts.max_retries
            and not event.fatal
        )
        if not recoverable:
            self._streaming = False
        self._emit(StreamError(
            message=event.message,
            recoverable=recoverable,
            conversation_id=self._conversation_id,
        ))

    def _on_context_window(self, event: ContextWindowEvent) -> None:
        self._context_window = dict(event.usage)
        self._emit(ContextWindowUpdate(usage=dict(event.usage)))

    def _on_reasoning_start(self, event: ReasoningStartEvent) -> None:
        self._reasoning = ""
        self._reasoning_format = event.format
        self._reasoning_signature = None

    def _on_reasoning_delta(self, event: ReasoningDeltaEvent) -> None:
        if not event.content:
            return
        self._reasoning += event.content
        self._reasoning_format = event.format
        self._emit_reasoning(is_complete=False)

    def _on_reasoning_end(self, event: ReasoningEndEvent) -> None:
        if event.full_content:
            self._reasoning = event.full_content
        self._reasoning_signature = event.signature
        # A block that never started has no format to report
        if self._reasoning_format is not None:
            self._emit_reasoning(is_complete=True)

    _HANDLERS = {
        RawEventType.START: _on_start,
        RawEventType.TOKEN: _on_token,
        RawEventType.MESSAGE: _on_message,
        RawEventType.TOOL_CALL_START: _on_tool_call_start,
        RawEventType.TOOL_CALL_DELTA: _on_tool_call_delta,
        RawEventType.TOOL_CALL_COMPLETE: _on_tool_call_complete,
        RawEventType.COMPLETE: _on_complete,
        RawEventType.ERROR: _on_error,
        RawEventType.CONTEXT_WINDOW: _on_context_window,
        RawEventType.REASONING_START: _on_reasoning_start,
        RawEventType.REASONING_DELTA: _on_reasoning_delta,
        RawEventType.REASONING_END: _on_reasoning_end,
    }

    # -- Text accumulation -----------------------------------------------------

    def _extract_chunks(self) -> list[str]:
        chunks: list[str] = []
        while self._buffer:
            try:
                chunk = next_chunk(self._buffer, self._chunker)
            except Exception as e:
                logger.warning("Chunker raised, releasing buffer: %s", e, extra={
                    "conversation_id": self._conversation_id,
                })
                chunk = self._buffer
            if chunk is None:
                break
            chunks.append(chunk)
            self._buffer = self._buffer[len(chunk):]
        return chunks

    def _flush_pending_text(self) -> bool:
        """Move queued chunks and buffered text into the accumulator, no delay."""
        self._cancel_chunk_timer()
        pending = "".join(self._queue) + self._buffer
        self._queue.clear()
        self._buffer = ""
        self._text += pending
        return bool(pending)

    def _resume_text_after_tools(self) -> None:
        if not self._awaiting_text_after_tools:
            return
        self._awaiting_text_after_tools = False
        if self._text and not self._text.endswith(ROUND_SEPARATOR):
            self._text += ROUND_SEPARATOR
        self._round_offset = len(self._text)

    # -- Timers ----------------------------------------------------------------

    def _schedule_chunk_drain(self) -> None:
        if self._chunk_timer is not None or not self._queue:
            return
        elapsed = self._scheduler.now() - self._last_chunk_at
        if elapsed >= self._chunk_delay:
            self._drain_one_chunk()
            return
        self._chunk_timer = self._scheduler.call_later(
            self._chunk_delay - elapsed, self._on_chunk_timer,
        )

    def _on_chunk_timer(self) -> None:
        self._chunk_timer = None
        if self._disposed:
            return
        self._drain_one_chunk()

    def _drain_one_chunk(self) -> None:
        if not self._queue:
            return
        self._text += self._queue.popleft()
        self._last_chunk_at = self._scheduler.now()
        self._request_update()
        if self._queue:
            self._chunk_timer = self._scheduler.call_later(
                self._chunk_delay, self._on_chunk_timer,
            )

    def _request_update(self) -> None:
        elapsed = self._scheduler.now() - self._last_update_at
        if elapsed >= self._update_interval:
            self._emit_update()
            return
        if self._update_timer is None:
            self._update_timer = self._scheduler.call_later(
                self._update_interval - elapsed, self._on_update_timer,
            )

    def _on_update_timer(self) -> None:
        self._update_timer = None
        if self._disposed:
            return
        self._emit_update()

    def _cancel_update_timer(self) -> None:
        if self._update_timer is not None:
            self._update_timer.cancel()
            self._update_timer = None

    def _cancel_chunk_timer(self) -> None:
        if self._chunk_timer is not None:
            self._chunk_timer.cancel()
            self._chunk_timer = None

    # -- Emission --------------------------------------------------------------

    def _emit_update(self) -> None:
        self._cancel_update_timer()
        self._last_update_at = self._scheduler.now()
        self._emit(MessageUpdate(
            text=self._text,
            is_streaming=self._streaming,
            conversation_id=self._conversation_id,
        ))

    def _emit_tool_update(self, call: UIToolCall) -> None:
        self._emit(ToolUpdate(
            tool_call=call.snapshot(),
            status=call.status,
            result=call.result,
            error=call.error,
        ))

    def _emit_reasoning(self, is_complete: bool) -> None:
        self._emit(ReasoningUpdate(
            content=self._reasoning,
            format=self._reasoning_format,
            is_complete=is_complete,
            conversation_id=self._conversation_id,
        ))

    def _emit(self, event: UIEvent) -> None:
        self._on_event(event)

    # -- Helpers ---------------------------------------------------------------

    def _known_call(self, tool_call_id: str) -> UIToolCall | None:
        call = self._tool_calls.get(tool_call_id)
        if call is None:
            logger.warning("Tool event for unknown tool call", extra={
                "tool_call_id": tool_call_id,
                "conversation_id": self._conversation_id,
            })
        return call

    def _describe(self, name: str) -> str:
        lookup = self._options.tool_descriptions
        description = None
        if callable(lookup):
            description = lookup(name)
        elif lookup is not None:
            description = lookup.get(name)
        return description or f"Executing {name}"

    def _metrics(self) -> dict:
        now = self._scheduler.now()
        metrics: dict = {"total_time_ms": round((now - self._started_at) * 1000)}
        if self._first_token_at is not None:
            metrics["time_to_first_token_ms"] = round(
                (self._first_token_at - self._started_at) * 1000,
            )
            streaming_time = now - self._first_token_at
            if streaming_time > 0:
                metrics["streaming_throughput"] = round(
                    len(self._text) / streaming_time,
                )
        if self._token_count:
            metrics["token_count"] = self._token_count
        if self._token_delays:
            metrics["avg_token_delay_ms"] = round(
                sum(self._token_delays) / len(self._token_delays) * 1000,
            )
        return metrics
