"""Application Configuration — environment-driven settings via pydantic-settings.

Invariants:
    - All secrets come from environment variables (never hardcoded)
    - get_settings() is cached (lru_cache) — single instance per process

Design Decisions:
    - pydantic-settings over raw os.environ: validation, type coercion, .env file support
    - Defaults for every non-secret setting; agent defaults feed TurnOptions.from_settings
"""

from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False)

    # Conversation backend (GraphQL)
    backend_url: str = "http://localhost:4000/graphql"
    backend_token: str | None = None
    backend_timeout_seconds: float = 60.0

    @field_validator("backend_url", mode="before")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        if isinstance(v, str):
            return v.rstrip("/")
        return v

    # Anthropic
    anthropic_api_key: str | None = None
    anthropic_max_retries: int = 3
    anthropic_timeout_seconds: int = 300
    anthropic_base_delay_ms: int = 1000
    anthropic_max_delay_ms: int = 60_000
    anthropic_max_tokens: int = 8192

    # OpenAI (and OpenAI-compatible endpoints)
    openai_api_key: str | None = None
    openai_base_url: str | None = None
    openai_timeout_seconds: int = 300

    # Agent defaults
    agent_max_tool_rounds: int = 1000
    agent_smoothing_enabled: bool = True
    agent_chunking_strategy: str = "word"
    agent_smoothing_delay_ms: int = 30
    agent_update_interval_ms: int = 30
    agent_auto_retry: bool = False
    agent_max_retries: int = 3
    agent_include_usage: bool = False

    # Context window
    context_tool_result_token_limit: int = 8192
    context_tool_round_limit: int = 10
    context_rebudget_threshold: float = 0.75

    # Tokenizer
    tokenizer_precise: bool = True
    tokenizer_encoding: str = "o200k_base"

    # API
    cors_origins: list[str] = ["http://localhost:5173"]

    # Observability
    log_level: str = "INFO"
    log_format: str = "json"


@lru_cache
def get_settings() -> Settings:
    return Settings()
