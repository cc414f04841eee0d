"""GraphQL Conversation Backend — ConversationBackend over httpx.

Invariants:
    - Every transport failure, non-2xx status or GraphQL `errors` payload
      surfaces as BackendAPIError naming the operation
    - The bearer token is passed through unchanged (no signing, no refresh)
    - Only the fields the engine consumes are selected

Design Decisions:
    - One AsyncClient per backend instance, injectable for tests (MockTransport)
    - Roles and service types mapped through explicit dicts; unknown roles are
      skipped, unknown services become ModelService.OTHER
"""

import json
import logging
from typing import Any

import httpx

from agent_stream.config import Settings
from agent_stream.core.conversation import (
    ConversationMessage,
    FormattedConversation,
    Specification,
    ToolCall,
    ToolDefinition,
)
from agent_stream.core.domain_types import MessageRole, ModelService
from agent_stream.core.errors import BackendAPIError

logger = logging.getLogger(__name__)


_MESSAGE_FIELDS = """
    role
    message
    tokens
    toolCallId
    toolCalls { id name arguments }
"""

_MODEL_FIELDS = "modelName tokenLimit completionTokenLimit"

GET_SPECIFICATION = f"""
query GetSpecification($id: ID!) {{
  specification(id: $id) {{
    id
    serviceType
    systemPrompt
    openAI {{ {_MODEL_FIELDS} }}
    anthropic {{ {_MODEL_FIELDS} }}
    google {{ {_MODEL_FIELDS} }}
  }}
}}
"""

CREATE_CONVERSATION = """
mutation CreateConversation($conversation: ConversationInput!) {
  createConversation(conversation: $conversation) { id }
}
"""

GET_CONVERSATION = f"""
query GetConversation($id: ID!) {{
  conversation(id: $id) {{
    id
    messages {{ {_MESSAGE_FIELDS} }}
  }}
}}
"""

FORMAT_CONVERSATION = """
mutation FormatConversation(
  $prompt: String!, $id: ID, $specification: EntityReferenceInput,
  $tools: [ToolDefinitionInput!], $includeDetails: Boolean
) {
  formatConversation(
    prompt: $prompt, id: $id, specification: $specification,
    tools: $tools, includeDetails: $includeDetails
  ) {
    message { message tokens }
    details {
      tokenLimit
      completionTokenLimit
      messages { tokens }
    }
  }
}
"""

PROMPT_CONVERSATION = f"""
mutation PromptConversation(
  $prompt: String!, $id: ID, $specification: EntityReferenceInput,
  $tools: [ToolDefinitionInput!]
) {{
  promptConversation(
    prompt: $prompt, id: $id, specification: $specification, tools: $tools
  ) {{
    message {{ {_MESSAGE_FIELDS} }}
  }}
}}
"""

CONTINUE_CONVERSATION = f"""
mutation ContinueConversation($id: ID!, $responses: [ConversationToolResponseInput!]!) {{
  continueConversation(id: $id, responses: $responses) {{
    message {{ {_MESSAGE_FIELDS} }}
  }}
}}
"""

COMPLETE_CONVERSATION = """
mutation CompleteConversation($completion: String!, $id: ID!) {
  completeConversation(completion: $completion, id: $id) {
    message { message }
  }
}
"""

_ROLES = {
    "SYSTEM": MessageRole.SYSTEM,
    "USER": MessageRole.USER,
    "ASSISTANT": MessageRole.ASSISTANT,
    "TOOL": MessageRole.TOOL,
}

_SERVICES = {
    "ANTHROPIC": ModelService.ANTHROPIC,
    "OPEN_AI": ModelService.OPENAI,
    "GOOGLE": ModelService.GOOGLE,
}

_STREAMING_SERVICES = frozenset({
    ModelService.ANTHROPIC, ModelService.OPENAI, ModelService.GOOGLE,
})

_MODEL_BLOCKS = {
    ModelService.OPENAI: "openAI",
    ModelService.ANTHROPIC: "anthropic",
    ModelService.GOOGLE: "google",
}


class GraphQLConversationBackend:
    """ConversationBackend implementation for a GraphQL conversation API."""

    def __init__(
        self,
        url: str,
        token: str | None = None,
        timeout_seconds: float = 60.0,
        client: httpx.AsyncClient | None = None,
    ):
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._url = url
        self._client = client or httpx.AsyncClient(
            headers=headers, timeout=timeout_seconds,
        )
        if client is not None and headers:
            self._client.headers.update(headers)

    @classmethod
    def from_settings(cls, settings: Settings) -> "GraphQLConversationBackend":
        return cls(
            settings.backend_url,
            settings.backend_token,
            settings.backend_timeout_seconds,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    # ─── ConversationBackend ─────────────────────────────────────

    async def get_specification(self, specification_id: str) -> Specification | None:
        data = await self._execute(
            "get_specification", GET_SPECIFICATION, {"id": specification_id},
        )
        spec = data.get("specification")
        if not spec:
            return None
        service = _SERVICES.get(spec.get("serviceType") or "", ModelService.OTHER)
        model = spec.get(_MODEL_BLOCKS.get(service, "")) or {}
        return Specification(
            id=spec["id"],
            service_type=service,
            model_name=model.get("modelName"),
            system_prompt=spec.get("systemPrompt"),
            supports_streaming=service in _STREAMING_SERVICES,
            token_limit=model.get("tokenLimit"),
            completion_token_limit=model.get("completionTokenLimit"),
        )

    async def create_conversation(
        self, name: str, specification_id: str | None,
        tools: list[ToolDefinition] | None = None,
    ) -> str | None:
        conversation: dict[str, Any] = {"name": name}
        if specification_id:
            conversation["specification"] = {"id": specification_id}
        if tools:
            conversation["tools"] = _tool_inputs(tools)
        data = await self._execute(
            "create_conversation", CREATE_CONVERSATION,
            {"conversation": conversation},
        )
        created = data.get("createConversation") or {}
        return created.get("id")

    async def get_conversation(self, conversation_id: str) -> list[ConversationMessage]:
        data = await self._execute(
            "get_conversation", GET_CONVERSATION, {"id": conversation_id},
        )
        conversation = data.get("conversation") or {}
        messages = []
        for raw in conversation.get("messages") or []:
            message = _message(raw)
            if message is not None:
                messages.append(message)
        return messages

    async def format_conversation(
        self, prompt: str, conversation_id: str, specification_id: str | None,
        tools: list[ToolDefinition] | None = None,
    ) -> FormattedConversation:
        data = await self._execute(
            "format_conversation", FORMAT_CONVERSATION,
            _prompt_variables(prompt, conversation_id, specification_id, tools)
            | {"includeDetails": True},
        )
        formatted = data.get("formatConversation") or {}
        message = formatted.get("message") or {}
        details = formatted.get("details") or {}
        return FormattedConversation(
            message=message.get("message"),
            token_limit=details.get("tokenLimit"),
            completion_token_limit=details.get("completionTokenLimit"),
            message_tokens=[
                m.get("tokens") for m in details.get("messages") or []
            ],
        )

    async def prompt_conversation(
        self, prompt: str, conversation_id: str, specification_id: str | None,
        tools: list[ToolDefinition] | None = None,
    ) -> ConversationMessage | None:
        data = await self._execute(
            "prompt_conversation", PROMPT_CONVERSATION,
            _prompt_variables(prompt, conversation_id, specification_id, tools),
        )
        result = data.get("promptConversation") or {}
        return _message(result.get("message"))

    async def continue_conversation(
        self, conversation_id: str, tool_responses: list[dict],
    ) -> ConversationMessage | None:
        data = await self._execute(
            "continue_conversation", CONTINUE_CONVERSATION,
            {"id": conversation_id, "responses": tool_responses},
        )
        result = data.get("continueConversation") or {}
        return _message(result.get("message"))

    async def complete_conversation(self, message: str, conversation_id: str) -> None:
        await self._execute(
            "complete_conversation", COMPLETE_CONVERSATION,
            {"completion": message, "id": conversation_id},
        )

    # ─── Transport ───────────────────────────────────────────────

    async def _execute(self, operation: str, query: str, variables: dict) -> dict:
        try:
            response = await self._client.post(
                self._url, json={"query": query, "variables": variables},
            )
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPStatusError as e:
            logger.error("Backend HTTP error", extra={
                "operation": operation, "status_code": e.response.status_code,
            })
            raise BackendAPIError(
                f"HTTP {e.response.status_code}", operation,
            ) from e
        except httpx.HTTPError as e:
            logger.error("Backend transport error: %s", e, extra={
                "operation": operation,
            })
            raise BackendAPIError(str(e) or type(e).__name__, operation) from e
        except ValueError as e:
            raise BackendAPIError("invalid JSON response", operation) from e

        errors = body.get("errors")
        if errors:
            message = "; ".join(err.get("message", "unknown error") for err in errors)
            logger.error("Backend GraphQL error: %s", message, extra={
                "operation": operation,
            })
            raise BackendAPIError(message, operation)
        return body.get("data") or {}


def _tool_inputs(tools: list[ToolDefinition]) -> list[dict]:
    return [
        {"name": t.name, "description": t.description, "schema": json.dumps(t.schema)}
        for t in tools
    ]


def _prompt_variables(
    prompt: str, conversation_id: str, specification_id: str | None,
    tools: list[ToolDefinition] | None,
) -> dict:
    variables: dict[str, Any] = {"prompt": prompt, "id": conversation_id}
    if specification_id:
        variables["specification"] = {"id": specification_id}
    if tools:
        variables["tools"] = _tool_inputs(tools)
    return variables


def _message(raw: dict | None) -> ConversationMessage | None:
    if not raw:
        return None
    role = _ROLES.get(raw.get("role") or "")
    if role is None:
        logger.debug("Skipping message with unknown role %r", raw.get("role"))
        return None
    return ConversationMessage(
        role=role,
        text=raw.get("message") or "",
        tokens=raw.get("tokens"),
        tool_calls=[
            ToolCall(id=tc["id"], name=tc["name"], arguments=tc.get("arguments") or "")
            for tc in raw.get("toolCalls") or []
        ],
        tool_call_id=raw.get("toolCallId"),
    )
