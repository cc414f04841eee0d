"""Runtime support — logging, tokenizer loading, provider registry, scheduler, backoff.

Tests cover:
    - JSONFormatter copies turn extras present on the record, nothing else
    - setup_logging() replaces its own handler instead of stacking
    - load_tokenizer(): heuristic when disabled, heuristic when loading fails
    - build_provider_registry(): adapters only for configured credentials
    - AsyncioScheduler fires callbacks on the running loop; cancel prevents firing
    - backoff_ms() doubles per attempt, jittered ±25%, capped
"""

import asyncio
import json
import logging

import tiktoken

from agent_stream.config import Settings
from agent_stream.core.domain_types import ModelService
from agent_stream.core.tokenizer import HeuristicTokenizer
from agent_stream.infrastructure.anthropic_adapter import AnthropicAdapter
from agent_stream.infrastructure.backoff import backoff_ms
from agent_stream.infrastructure.observability import JSONFormatter, setup_logging
from agent_stream.infrastructure.openai_adapter import OpenAIAdapter
from agent_stream.infrastructure.provider_registry import build_provider_registry
from agent_stream.infrastructure.scheduler import AsyncioScheduler
from agent_stream.infrastructure.tokenizers import load_tokenizer


# ==============================================================================
# Logging
# ==============================================================================


def _record(message="Round done", **extra):
    record = logging.LogRecord("agent_stream.test", logging.INFO, __file__, 1, message, (), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_formatter_includes_turn_extras():
    line = JSONFormatter().format(_record(
        conversation_id="conv-1", round_number=2, unrelated="x",
    ))
    payload = json.loads(line)

    assert payload["message"] == "Round done"
    assert payload["level"] == "INFO"
    assert payload["logger"] == "agent_stream.test"
    assert payload["conversation_id"] == "conv-1"
    assert payload["round_number"] == 2
    assert "unrelated" not in payload
    assert "tool_call_id" not in payload


def test_setup_logging_is_idempotent():
    root = logging.getLogger()
    before = len(root.handlers)
    first = setup_logging("DEBUG", "json")
    second = setup_logging("INFO", "text")
    try:
        assert first not in root.handlers
        assert second in root.handlers
        assert len(root.handlers) == before + 1
        assert isinstance(second.formatter, logging.Formatter)
        assert not isinstance(second.formatter, JSONFormatter)
        assert logging.getLogger("httpx").level == logging.WARNING
    finally:
        root.removeHandler(second)


# ==============================================================================
# Tokenizer loading
# ==============================================================================


def test_heuristic_when_precise_disabled():
    tokenizer = load_tokenizer(Settings(tokenizer_precise=False))
    assert isinstance(tokenizer, HeuristicTokenizer)


def test_heuristic_when_encoding_fails(monkeypatch):
    def unavailable(name):
        raise ValueError(f"Unknown encoding {name}")

    monkeypatch.setattr(tiktoken, "get_encoding", unavailable)
    tokenizer = load_tokenizer(Settings(tokenizer_precise=True, tokenizer_encoding="nope"))
    assert tokenizer.is_precise() is False


def test_encoding_tokenizer_when_available(monkeypatch):
    class _Encoding:
        def encode(self, text, **kwargs):
            return text.split()

    monkeypatch.setattr(tiktoken, "get_encoding", lambda name: _Encoding())
    tokenizer = load_tokenizer(Settings(tokenizer_precise=True))
    assert tokenizer.is_precise() is True
    assert tokenizer.count("three short words") == 3


# ==============================================================================
# Provider registry
# ==============================================================================


def test_registry_only_registers_configured_providers():
    registry = build_provider_registry(Settings(
        anthropic_api_key="sk-ant-test", openai_api_key=None,
    ))
    assert isinstance(registry.get(ModelService.ANTHROPIC), AnthropicAdapter)
    assert registry.get(ModelService.OPENAI) is None
    assert registry.get(ModelService.GOOGLE) is None


def test_registry_with_both_providers():
    registry = build_provider_registry(Settings(
        anthropic_api_key="sk-ant-test", openai_api_key="sk-test",
    ))
    assert isinstance(registry.get(ModelService.OPENAI), OpenAIAdapter)
    assert set(registry.services()) == {ModelService.ANTHROPIC, ModelService.OPENAI}


# ==============================================================================
# Scheduler and backoff
# ==============================================================================


async def test_asyncio_scheduler_fires_and_cancels():
    scheduler = AsyncioScheduler()
    fired = []

    scheduler.call_later(0.001, lambda: fired.append("a"))
    cancelled = scheduler.call_later(0.001, lambda: fired.append("b"))
    cancelled.cancel()
    start = scheduler.now()
    await asyncio.sleep(0.02)

    assert fired == ["a"]
    assert scheduler.now() > start


def test_backoff_doubles_with_jitter_and_cap():
    for attempt, expected in ((0, 100), (1, 200), (2, 400)):
        delay = backoff_ms(attempt, 100, 10_000)
        assert expected * 0.75 <= delay <= expected * 1.25
    assert backoff_ms(20, 100, 1_000) <= 1_250
