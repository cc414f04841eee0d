"""Resilient Anthropic Client — wraps AsyncAnthropic streaming with retry, backoff, and error mapping.

Invariants:
    - Stream SETUP is retried: rate limits (429), overload (529), connection and
      5xx errors, up to max_retries with exponential backoff and jitter
    - Rate limits respect the Retry-After header when present
    - Client errors (4xx except 429) fail immediately, no retry
    - Failures after the stream is open are mapped, never retried here
    - All failures surface as ProviderAPIError (core/errors.py) with `retryable`

Design Decisions:
    - Wrapper over raw client: isolates retry logic from the provider adapter
    - ±25% jitter on backoff: prevents thundering herd on shared rate limits
    - AsyncExitStack so a failed __aenter__ is simply retried and a successful
      one is always exited with the real exception info
"""

import asyncio
import logging
from contextlib import AsyncExitStack, asynccontextmanager

import anthropic
from anthropic import (
    APIConnectionError,
    APIError,
    APIStatusError,
    APITimeoutError,
    InternalServerError,
    RateLimitError,
)

from agent_stream.core.errors import ErrorContext, ProviderAPIError
from agent_stream.infrastructure.backoff import backoff_ms

logger = logging.getLogger(__name__)

PROVIDER = "anthropic"

# OverloadedError (HTTP 529) is not re-exported by every SDK release;
# detect via status code on APIStatusError instead.
_OVERLOADED_STATUS = 529


def _is_overloaded(e: APIError) -> bool:
    return isinstance(e, APIStatusError) and e.status_code == _OVERLOADED_STATUS


def _is_transient(e: Exception) -> bool:
    return isinstance(e, (RateLimitError, APIConnectionError, InternalServerError)) or (
        isinstance(e, APIError) and _is_overloaded(e)
    )


class ResilientAnthropicClient:
    """Wraps the Anthropic client with setup retries, timeouts, and error mapping."""

    def __init__(
        self,
        api_key: str | None = None,
        max_retries: int = 3,
        base_delay_ms: int = 1000,
        max_delay_ms: int = 60_000,
        timeout_seconds: int = 300,
        client: anthropic.AsyncAnthropic | None = None,
    ):
        self.client = client or anthropic.AsyncAnthropic(
            api_key=api_key, timeout=timeout_seconds,
        )
        self.max_retries = max_retries
        self.base_delay_ms = base_delay_ms
        self.max_delay_ms = max_delay_ms

    @asynccontextmanager
    async def stream_message(
        self,
        *,
        model: str,
        max_tokens: int,
        messages: list,
        system: str | None = None,
        tools: list | None = None,
        context: ErrorContext | None = None,
    ):
        """Open a message stream (with retries) and map errors raised while it runs.

        CancelledError (BaseException) passes through uncaught.
        """
        kwargs: dict = {"model": model, "max_tokens": max_tokens, "messages": messages}
        if system:
            kwargs["system"] = system
        if tools:
            kwargs["tools"] = tools

        async with AsyncExitStack() as stack:
            stream = await self._open_stream(stack, kwargs, context)
            try:
                yield stream
            except APIError as e:
                raise self._map_error(e, context, mid_stream=True) from e

    async def _open_stream(
        self, stack: AsyncExitStack, kwargs: dict, context: ErrorContext | None,
    ):
        for attempt in range(self.max_retries + 1):
            try:
                stream = await stack.enter_async_context(
                    self.client.messages.stream(**kwargs),
                )
                if attempt:
                    logger.info("Anthropic stream opened after retry", extra={
                        "attempt": attempt + 1, "provider": PROVIDER,
                    })
                return stream
            except APIError as e:
                if not _is_transient(e) or attempt >= self.max_retries:
                    raise self._map_error(e, context) from e
                delay = self._retry_delay(e, attempt)
                logger.warning(
                    "Anthropic transient error, retry after %dms: %s", delay, e,
                    extra={"attempt": attempt + 1, "provider": PROVIDER},
                )
                await asyncio.sleep(delay / 1000)

    def _map_error(
        self, e: APIError, context: ErrorContext | None, mid_stream: bool = False,
    ) -> ProviderAPIError:
        where = " during stream" if mid_stream else ""
        if isinstance(e, RateLimitError):
            return ProviderAPIError(
                f"Rate limit exceeded{where}", PROVIDER, "rate_limit",
                retryable=True, retry_after_ms=self._extract_retry_after(e),
                context=context,
            )
        if isinstance(e, APITimeoutError):
            return ProviderAPIError(
                f"API timeout{where}", PROVIDER, "timeout",
                retryable=True, context=context,
            )
        if isinstance(e, (APIConnectionError, InternalServerError)):
            return ProviderAPIError(
                f"Connection error{where}: {e}", PROVIDER, "connection_error",
                retryable=True, context=context,
            )
        if _is_overloaded(e):
            return ProviderAPIError(
                "Anthropic API overloaded (529)", PROVIDER, "overloaded",
                retryable=True, context=context,
            )
        return ProviderAPIError(str(e), PROVIDER, "client_error", context=context)

    def _retry_delay(self, e: APIError, attempt: int) -> int:
        if isinstance(e, RateLimitError):
            retry_after = self._extract_retry_after(e)
            if retry_after:
                return retry_after
        return backoff_ms(attempt, self.base_delay_ms, self.max_delay_ms)

    def _extract_retry_after(self, error: APIStatusError) -> int | None:
        """Extract Retry-After header (returns milliseconds)."""
        response = getattr(error, "response", None)
        if response is None:
            return None
        value = response.headers.get("retry-after")
        if not value:
            return None
        try:
            return int(float(value) * 1000)
        except ValueError:
            return None
