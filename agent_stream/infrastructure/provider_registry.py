"""Provider Registry — ModelService → native streaming adapter.

Invariants:
    - A service without a registered adapter resolves to None (the runner
      then uses the non-streaming fallback path)
    - Adapters are only built for providers with credentials configured

Design Decisions:
    - Explicit registry dict over plugin discovery: two providers, known at startup
"""

import logging

import openai

from agent_stream.config import Settings
from agent_stream.core.boundary_protocols import ProviderAdapter
from agent_stream.core.domain_types import ModelService
from agent_stream.infrastructure.anthropic_adapter import AnthropicAdapter
from agent_stream.infrastructure.anthropic_client import ResilientAnthropicClient
from agent_stream.infrastructure.openai_adapter import OpenAIAdapter

logger = logging.getLogger(__name__)


class ProviderRegistry:
    def __init__(self):
        self._adapters: dict[ModelService, ProviderAdapter] = {}

    def register(self, service: ModelService, adapter: ProviderAdapter) -> None:
        self._adapters[service] = adapter

    def get(self, service: ModelService) -> ProviderAdapter | None:
        return self._adapters.get(service)

    def services(self) -> list[ModelService]:
        return list(self._adapters)


def build_provider_registry(settings: Settings) -> ProviderRegistry:
    registry = ProviderRegistry()
    if settings.anthropic_api_key:
        client = ResilientAnthropicClient(
            api_key=settings.anthropic_api_key,
            max_retries=settings.anthropic_max_retries,
            base_delay_ms=settings.anthropic_base_delay_ms,
            max_delay_ms=settings.anthropic_max_delay_ms,
            timeout_seconds=settings.anthropic_timeout_seconds,
        )
        registry.register(
            ModelService.ANTHROPIC,
            AnthropicAdapter(client, max_tokens=settings.anthropic_max_tokens),
        )
    if settings.openai_api_key:
        registry.register(ModelService.OPENAI, OpenAIAdapter(openai.AsyncOpenAI(
            api_key=settings.openai_api_key,
            base_url=settings.openai_base_url,
            timeout=settings.openai_timeout_seconds,
        )))
    logger.info("Provider registry built", extra={
        "providers": [s.value for s in registry.services()],
    })
    return registry
