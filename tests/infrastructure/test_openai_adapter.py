"""OpenAI Adapter — chat completion chunks → raw stream events.

Tests cover:
    - Content deltas become token events; usage read from the final chunk
    - Tool calls keyed by index: start on first sight, deltas for argument text,
      complete after the stream ends in index order
    - Missing tool call ids are generated
    - Request shaping: system message first, function tools, completion limit
    - SDK errors mapped to ProviderAPIError(provider="openai")
"""

import httpx
import openai
import pytest

from agent_stream.core.boundary_protocols import ProviderMessages, ProviderRequest
from agent_stream.core.conversation import Specification, ToolDefinition
from agent_stream.core.domain_types import ModelService
from agent_stream.core.errors import ProviderAPIError
from agent_stream.core.stream_events import (
    TokenEvent,
    ToolCallCompleteEvent,
    ToolCallDeltaEvent,
    ToolCallStartEvent,
)
from agent_stream.infrastructure.openai_adapter import (
    DEFAULT_MODEL,
    OpenAIAdapter,
    map_openai_error,
)

from tests.services.fakes import (
    MockOpenAIClient,
    OpenAIStream,
    openai_chunk,
    openai_tool_delta,
    openai_usage,
)


SPEC = Specification(id="spec-1", service_type=ModelService.OPENAI, model_name="gpt-test")
LOOKUP = ToolDefinition(name="lookup", description="Look up", schema={"type": "object"})
_REQUEST = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")


def _request(spec=SPEC, tools=(), system="Be brief."):
    return ProviderRequest(
        specification=spec,
        messages=ProviderMessages(
            system=system, messages=[{"role": "user", "content": "Hi"}],
        ),
        tools=list(tools),
    )


async def _stream(adapter, request):
    events = []
    result = await adapter.stream(request, events.append)
    return events, result


async def test_content_deltas_and_usage():
    client = MockOpenAIClient([OpenAIStream([
        openai_chunk("Hel"),
        openai_chunk("lo"),
        openai_chunk(usage=openai_usage(12, 3)),
    ])])
    events, result = await _stream(OpenAIAdapter(client), _request())

    assert events == [TokenEvent(text="Hel"), TokenEvent(text="lo")]
    assert result.message == "Hello"
    assert result.usage == {"input_tokens": 12, "output_tokens": 3}


async def test_request_shape():
    client = MockOpenAIClient([OpenAIStream([openai_chunk("ok")])])
    spec = Specification(
        id="s", service_type=ModelService.OPENAI, completion_token_limit=256,
    )
    await _stream(OpenAIAdapter(client), _request(spec, tools=[LOOKUP]))

    params = client.calls[0]
    assert params["model"] == DEFAULT_MODEL
    assert params["stream"] is True
    assert params["stream_options"] == {"include_usage": True}
    assert params["max_completion_tokens"] == 256
    assert params["messages"][0] == {"role": "system", "content": "Be brief."}
    assert params["tools"][0]["function"]["name"] == "lookup"


async def test_no_system_no_tools_omitted():
    client = MockOpenAIClient([OpenAIStream([openai_chunk("ok")])])
    await _stream(OpenAIAdapter(client), _request(system=None))

    params = client.calls[0]
    assert params["messages"] == [{"role": "user", "content": "Hi"}]
    assert "tools" not in params
    assert "max_completion_tokens" not in params


async def test_tool_calls_by_index_complete_after_stream():
    client = MockOpenAIClient([OpenAIStream([
        openai_chunk(tool_calls=[openai_tool_delta(1, "call_b", "lookup", "")]),
        openai_chunk(tool_calls=[openai_tool_delta(0, "call_a", "lookup", '{"k":')]),
        openai_chunk(tool_calls=[openai_tool_delta(0, arguments=' "a"}')]),
        openai_chunk(tool_calls=[openai_tool_delta(1, arguments="{}")]),
    ])])
    events, result = await _stream(OpenAIAdapter(client), _request(tools=[LOOKUP]))

    assert events == [
        ToolCallStartEvent(id="call_b", name="lookup"),
        ToolCallStartEvent(id="call_a", name="lookup"),
        ToolCallDeltaEvent(id="call_a", argument_delta='{"k":'),
        ToolCallDeltaEvent(id="call_a", argument_delta=' "a"}'),
        ToolCallDeltaEvent(id="call_b", argument_delta="{}"),
        ToolCallCompleteEvent(id="call_a", name="lookup", arguments='{"k": "a"}'),
        ToolCallCompleteEvent(id="call_b", name="lookup", arguments="{}"),
    ]
    assert [c.id for c in result.tool_calls] == ["call_a", "call_b"]


async def test_missing_tool_call_id_is_generated():
    client = MockOpenAIClient([OpenAIStream([
        openai_chunk(tool_calls=[openai_tool_delta(0, None, "lookup", "{}")]),
    ])])
    _, result = await _stream(OpenAIAdapter(client), _request(tools=[LOOKUP]))

    call_id = result.tool_calls[0].id
    assert call_id.startswith("tool_")
    assert call_id.endswith("_0")


async def test_setup_error_is_mapped():
    error = openai.RateLimitError(
        "slow down",
        response=httpx.Response(429, headers={"retry-after": "2"}, request=_REQUEST),
        body=None,
    )
    client = MockOpenAIClient([error])
    with pytest.raises(ProviderAPIError) as exc:
        await _stream(OpenAIAdapter(client), _request())

    assert exc.value.provider == "openai"
    assert exc.value.api_error_type == "rate_limit"
    assert exc.value.context.retry_after_ms == 2000


async def test_mid_stream_error_is_mapped():
    client = MockOpenAIClient([OpenAIStream([
        openai_chunk("partial"),
        openai.APIConnectionError(request=_REQUEST),
    ])])
    events = []
    with pytest.raises(ProviderAPIError) as exc:
        await OpenAIAdapter(client).stream(_request(), events.append)

    assert events == [TokenEvent(text="partial")]
    assert exc.value.api_error_type == "connection_error"
    assert exc.value.retryable is True


def test_map_openai_error_variants():
    timeout = map_openai_error(openai.APITimeoutError(request=_REQUEST))
    assert (timeout.api_error_type, timeout.retryable) == ("timeout", True)

    bad = map_openai_error(openai.BadRequestError(
        "bad", response=httpx.Response(400, request=_REQUEST), body=None,
    ))
    assert (bad.api_error_type, bad.retryable) == ("client_error", False)
