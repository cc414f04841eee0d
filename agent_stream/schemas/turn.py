"""Turn Schemas — request body for POST /api/v1/turns/stream.

Invariants:
    - prompt: 1-100000 chars, stripped, non-empty
    - Tool names are unique within one request
    - Option fields left unset fall back to Settings defaults

Design Decisions:
    - Overrides-only options model: exclude_none dump feeds TurnOptions.from_settings
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator

from agent_stream.core.conversation import ToolDefinition
from agent_stream.core.domain_types import ChunkingStrategy


class ToolDefinitionInput(BaseModel):
    """Tool exposed to the model for this turn."""
    name: str = Field(min_length=1, max_length=128, pattern=r"^[a-zA-Z0-9_-]+$")
    description: str = ""
    schema_: dict = Field(
        default_factory=lambda: {"type": "object", "properties": {}},
        alias="schema",
    )

    model_config = ConfigDict(populate_by_name=True)

    def to_definition(self) -> ToolDefinition:
        return ToolDefinition(
            name=self.name, description=self.description, schema=self.schema_,
        )


class ContextOptionsInput(BaseModel):
    tool_result_token_limit: int | None = Field(None, ge=1)
    tool_round_limit: int | None = Field(None, ge=0)
    rebudget_threshold: float | None = Field(None, gt=0, le=1)


class TurnOptionsInput(BaseModel):
    """Per-turn overrides of the agent defaults."""
    smoothing_enabled: bool | None = None
    chunking_strategy: ChunkingStrategy | None = None
    smoothing_delay_ms: int | None = Field(None, ge=0, le=10_000)
    update_interval_ms: int | None = Field(None, ge=0, le=10_000)
    include_usage: bool | None = None
    auto_retry: bool | None = None
    max_retries: int | None = Field(None, ge=1, le=20)
    max_tool_rounds: int | None = Field(None, ge=1, le=1000)
    tool_descriptions: dict[str, str] | None = None
    context: ContextOptionsInput | None = None


class TurnRequest(BaseModel):
    """One conversational turn."""
    prompt: str = Field(min_length=1, max_length=100_000)
    specification_id: str = Field(min_length=1)
    conversation_id: str | None = None
    tools: list[ToolDefinitionInput] = Field(default_factory=list)
    options: TurnOptionsInput = Field(default_factory=TurnOptionsInput)

    @field_validator("prompt")
    @classmethod
    def strip_prompt(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("prompt cannot be empty or whitespace")
        return v

    @field_validator("tools")
    @classmethod
    def unique_tool_names(cls, v: list[ToolDefinitionInput]) -> list[ToolDefinitionInput]:
        names = [t.name for t in v]
        if len(names) != len(set(names)):
            raise ValueError("tool names must be unique")
        return v
