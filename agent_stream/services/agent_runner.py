"""Agent Runner — one conversational turn across model/tool round trips.

Invariants:
    - A pre-cancelled turn raises TurnCancelledError before any collaborator call
    - The normalizer is disposed exactly once on every exit path
    - Tool fan-out settles completely before the next round (or cancellation)
    - Every tool outcome (success, handler failure, missing handler, bad JSON)
      reaches the normalizer through set_tool_result
    - complete_conversation is called only when the round driver does not
      persist the final message itself
    - Fatal failures: one non-recoverable error UI event, dispose, re-raise
    - Once cancellation is observed no further UI events reach the caller

Design Decisions:
    - Round drivers (StreamingRound / FallbackRound) hide provider/path
      differences; the loop is written once against them
    - Cancellation = asyncio.Event raced against every collaborator call
      (backend, provider round, retry sleep) and checked on every raw event
      (raising in the sink aborts the provider stream); tool fan-out is not
      raced so handlers always settle
    - Hitting max_tool_rounds logs a warning and completes normally
    - Retryable provider failures before the first streamed event are retried
      with backoff while the normalizer still counts them recoverable
"""

import asyncio
import logging
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Coroutine, Mapping, Protocol, TypeVar

from agent_stream.config import Settings
from agent_stream.core.boundary_protocols import (
    ConversationBackend,
    EventSink,
    ProviderAdapter,
    Scheduler,
)
from agent_stream.core.chunking import Chunker
from agent_stream.core.context_window import ContextStrategy
from agent_stream.core.conversation import (
    RoundResult,
    Specification,
    ToolDefinition,
    ToolHandler,
    ToolResult,
)
from agent_stream.core.domain_types import ChunkingStrategy, ModelService
from agent_stream.core.errors import (
    AgentStreamError,
    ConversationCreateError,
    ErrorContext,
    ProviderAPIError,
    SpecificationNotFoundError,
    TurnCancelledError,
)
from agent_stream.core.stream_events import (
    CompleteEvent,
    ContextWindowEvent,
    ErrorEvent,
    RawStreamEvent,
    StartEvent,
)
from agent_stream.core.tokenizer import Tokenizer
from agent_stream.core.ui_events import UIEvent
from agent_stream.infrastructure.backoff import backoff_ms
from agent_stream.infrastructure.scheduler import AsyncioScheduler
from agent_stream.services.agent_runner_helpers import DEFAULT_CONVERSATION_NAME
from agent_stream.services.event_normalizer import (
    EventNormalizer,
    NormalizerOptions,
    ToolDescriptions,
)
from agent_stream.services.fallback_round import FallbackRound
from agent_stream.services.streaming_round import StreamingRound
from agent_stream.services.tool_dispatch import ToolDispatch

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_TOOL_ROUNDS = 1000
UNEXPECTED_ERROR_MESSAGE = "An unexpected error occurred"


@dataclass(frozen=True)
class TurnOptions:
    smoothing_enabled: bool = True
    chunking_strategy: ChunkingStrategy | Chunker = ChunkingStrategy.WORD
    smoothing_delay_ms: int = 30
    update_interval_ms: int = 30
    include_usage: bool = False
    auto_retry: bool = False
    max_retries: int = 3
    retry_base_delay_ms: int = 1000
    retry_max_delay_ms: int = 60_000
    max_tool_rounds: int = DEFAULT_MAX_TOOL_ROUNDS
    tool_descriptions: ToolDescriptions = None
    context: ContextStrategy = field(default_factory=ContextStrategy)
    cancel_event: asyncio.Event | None = None

    @classmethod
    def from_settings(cls, settings: Settings, **overrides) -> "TurnOptions":
        options = cls(
            smoothing_enabled=settings.agent_smoothing_enabled,
            chunking_strategy=ChunkingStrategy(settings.agent_chunking_strategy),
            smoothing_delay_ms=settings.agent_smoothing_delay_ms,
            update_interval_ms=settings.agent_update_interval_ms,
            include_usage=settings.agent_include_usage,
            auto_retry=settings.agent_auto_retry,
            max_retries=settings.agent_max_retries,
            retry_base_delay_ms=settings.anthropic_base_delay_ms,
            retry_max_delay_ms=settings.anthropic_max_delay_ms,
            max_tool_rounds=settings.agent_max_tool_rounds,
            context=ContextStrategy(
                tool_result_token_limit=settings.context_tool_result_token_limit,
                tool_round_limit=settings.context_tool_round_limit,
                rebudget_threshold=settings.context_rebudget_threshold,
            ),
        )
        return replace(options, **overrides)

    @property
    def cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()


@dataclass
class ConversationTurn:
    prompt: str
    specification_id: str
    conversation_id: str | None = None
    tools: list[ToolDefinition] = field(default_factory=list)
    tool_handlers: Mapping[str, ToolHandler] = field(default_factory=dict)
    options: TurnOptions = field(default_factory=TurnOptions)
    name: str = DEFAULT_CONVERSATION_NAME


@dataclass(frozen=True)
class TurnOutcome:
    conversation_id: str
    message: str
    rounds: int
    context_window: dict | None = None


class RoundDriver(Protocol):
    persists_final_message: bool

    async def prepare(self) -> None: ...
    async def run_round(self, round_number: int, emit: EventSink) -> RoundResult: ...
    def add_tool_round(self, round_result: RoundResult, results: list[ToolResult]) -> None: ...
    def context_usage(self) -> dict | None: ...


class ProviderLookup(Protocol):
    def get(self, service: ModelService) -> ProviderAdapter | None: ...


class AgentRunner:
    """Runs turns. Holds no per-turn state; safe for concurrent turns."""

    def __init__(
        self,
        backend: ConversationBackend,
        providers: ProviderLookup,
        scheduler: Scheduler | None = None,
        tokenizer: Tokenizer | None = None,
    ):
        self._backend = backend
        self._providers = providers
        self._scheduler = scheduler or AsyncioScheduler()
        self._tokenizer = tokenizer

    async def run_turn(
        self, turn: ConversationTurn, on_event: Callable[[UIEvent], None],
    ) -> TurnOutcome:
        options = turn.options
        ctx = ErrorContext(conversation_id=turn.conversation_id)
        if options.cancelled:
            raise TurnCancelledError(ctx)

        def deliver(event: UIEvent) -> None:
            if not options.cancelled:
                on_event(event)

        normalizer = EventNormalizer(
            deliver, self._scheduler,
            NormalizerOptions(
                smoothing_enabled=options.smoothing_enabled,
                chunking_strategy=options.chunking_strategy,
                smoothing_delay_ms=options.smoothing_delay_ms,
                update_interval_ms=options.update_interval_ms,
                auto_retry=options.auto_retry,
                max_retries=options.max_retries,
                defer_tool_completion=bool(turn.tool_handlers),
                tool_descriptions=options.tool_descriptions,
            ),
            conversation_id=turn.conversation_id,
        )

        def emit(event: RawStreamEvent) -> None:
            self._check_cancelled(options, ctx)
            normalizer.handle_event(event)

        try:
            return await self._run(turn, ctx, normalizer, emit)
        except TurnCancelledError:
            logger.info("Turn cancelled", extra={
                "conversation_id": ctx.conversation_id,
            })
            raise
        except AgentStreamError as e:
            logger.error("Turn failed: %s", e.message, extra={
                "conversation_id": ctx.conversation_id, "error_code": e.code,
            })
            normalizer.handle_event(ErrorEvent(message=e.message, fatal=True))
            raise
        except Exception as e:
            logger.error("Unexpected error in agent runner: %s", e, extra={
                "conversation_id": ctx.conversation_id,
            }, exc_info=True)
            normalizer.handle_event(
                ErrorEvent(message=UNEXPECTED_ERROR_MESSAGE, fatal=True),
            )
            raise
        finally:
            normalizer.dispose()

    async def _run(
        self,
        turn: ConversationTurn,
        ctx: ErrorContext,
        normalizer: EventNormalizer,
        emit: EventSink,
    ) -> TurnOutcome:
        options = turn.options
        spec = await self._until_cancelled(
            self._backend.get_specification(turn.specification_id), options, ctx,
        )
        if spec is None:
            raise SpecificationNotFoundError(turn.specification_id, ctx)

        conversation_id = turn.conversation_id
        if not conversation_id:
            conversation_id = await self._until_cancelled(
                self._backend.create_conversation(turn.name, spec.id, turn.tools),
                options, ctx,
            )
            if not conversation_id:
                raise ConversationCreateError(ctx)
        ctx.conversation_id = conversation_id

        emit(StartEvent(conversation_id=conversation_id))
        driver = self._select_driver(turn, spec, conversation_id)
        await self._until_cancelled(driver.prepare(), options, ctx)

        message, rounds = await self._round_loop(
            turn, driver, normalizer, emit, ctx,
        )

        if message and not driver.persists_final_message:
            await self._until_cancelled(
                self._backend.complete_conversation(message.strip(), conversation_id),
                options, ctx,
            )

        emit(CompleteEvent(conversation_id=conversation_id))
        return TurnOutcome(
            conversation_id=conversation_id,
            message=message,
            rounds=rounds,
            context_window=driver.context_usage(),
        )

    async def _round_loop(
        self,
        turn: ConversationTurn,
        driver: RoundDriver,
        normalizer: EventNormalizer,
        emit: EventSink,
        ctx: ErrorContext,
    ) -> tuple[str, int]:
        options = turn.options
        dispatch = ToolDispatch(turn.tool_handlers)
        message = ""

        for round_number in range(1, options.max_tool_rounds + 1):
            ctx.round_number = round_number
            self._check_cancelled(options, ctx)
            result = await self._run_round_with_retry(
                driver, round_number, normalizer, emit, options, ctx,
            )
            message = result.message

            if not result.tool_calls or not turn.tool_handlers:
                return message, round_number

            self._check_cancelled(options, ctx)
            results = await dispatch.execute_all(result.tool_calls)
            for r in results:
                normalizer.set_tool_result(r.tool_call.id, r.result, r.error)
            self._check_cancelled(options, ctx)

            driver.add_tool_round(result, results)
            usage = driver.context_usage()
            if options.include_usage and usage is not None:
                emit(ContextWindowEvent(usage=usage))

        logger.warning("Max tool rounds reached", extra={
            "conversation_id": ctx.conversation_id,
            "round_number": options.max_tool_rounds,
        })
        return message, options.max_tool_rounds

    async def _run_round_with_retry(
        self,
        driver: RoundDriver,
        round_number: int,
        normalizer: EventNormalizer,
        emit: EventSink,
        options: TurnOptions,
        ctx: ErrorContext,
    ) -> RoundResult:
        attempt = 0
        while True:
            streamed = False

            def tracking_emit(event: RawStreamEvent) -> None:
                nonlocal streamed
                streamed = True
                emit(event)

            try:
                return await self._until_cancelled(
                    driver.run_round(round_number, tracking_emit), options, ctx,
                )
            except ProviderAPIError as e:
                recoverable = (
                    options.auto_retry
                    and normalizer.error_count + 1 < options.max_retries
                )
                if streamed or not e.retryable or not recoverable:
                    raise
                emit(ErrorEvent(message=e.message))
                delay = e.context.retry_after_ms or backoff_ms(
                    attempt, options.retry_base_delay_ms, options.retry_max_delay_ms,
                )
                logger.warning("Provider error, retry after %dms", delay, extra={
                    "conversation_id": ctx.conversation_id,
                    "round_number": round_number,
                    "attempt": attempt + 1,
                    "provider": e.provider,
                })
                await self._sleep(delay / 1000, options, ctx)
                attempt += 1

    def _select_driver(
        self, turn: ConversationTurn, spec: Specification, conversation_id: str,
    ) -> RoundDriver:
        adapter = self._providers.get(spec.service_type)
        if adapter is None or not spec.supports_streaming:
            return FallbackRound(
                self._backend, spec, conversation_id, turn.prompt, turn.tools,
                turn.options.context, self._tokenizer,
            )
        return StreamingRound(
            self._backend, adapter, spec, conversation_id, turn.prompt,
            turn.tools, turn.options.context, self._tokenizer,
        )

    async def _sleep(self, seconds: float, options: TurnOptions, ctx: ErrorContext) -> None:
        await self._until_cancelled(asyncio.sleep(seconds), options, ctx)

    async def _until_cancelled(
        self, call: Coroutine[Any, Any, T], options: TurnOptions, ctx: ErrorContext,
    ) -> T:
        """Await a collaborator call, abandoning it as soon as the turn is cancelled."""
        if options.cancelled:
            call.close()
            raise TurnCancelledError(ctx)
        if options.cancel_event is None:
            return await call

        task = asyncio.ensure_future(call)
        waiter = asyncio.ensure_future(options.cancel_event.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
            if not task.done():
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)

        if options.cancelled:
            if not task.cancelled():
                task.exception()
            raise TurnCancelledError(ctx)
        return task.result()

    @staticmethod
    def _check_cancelled(options: TurnOptions, ctx: ErrorContext) -> None:
        if options.cancelled:
            raise TurnCancelledError(ctx)
