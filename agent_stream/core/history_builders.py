"""History Builders — provider-neutral history → vendor message shapes.

Invariants:
    - All functions are pure; input messages are never mutated
    - Anthropic: system text is lifted out; all tool results following one
      assistant turn are aggregated into a SINGLE user message
    - OpenAI: system messages stay inline; one "tool" message per result
    - tool_use_id / tool_call_id always preserved (both APIs reject orphans)
    - Messages with neither text nor tool calls are skipped

Design Decisions:
    - One small strategy class per provider family, chosen with the adapter,
      so the tool loop never branches on vendor identity
"""

import json

from agent_stream.core.boundary_protocols import ProviderMessages
from agent_stream.core.conversation import ConversationMessage, ToolCall
from agent_stream.core.domain_types import MessageRole


class AnthropicHistoryBuilder:
    """Messages API shape: content blocks, tool_result inside user turns."""

    def build(self, messages: list[ConversationMessage]) -> ProviderMessages:
        system_parts: list[str] = []
        result: list[dict] = []

        for msg in messages:
            text = (msg.text or "").strip()
            if msg.role == MessageRole.SYSTEM:
                if text:
                    system_parts.append(text)
            elif msg.role == MessageRole.TOOL:
                _append_tool_result(result, msg, text)
            elif msg.role == MessageRole.ASSISTANT:
                if text or msg.has_tool_calls:
                    result.append(_assistant_blocks(msg, text))
            elif text:
                result.append({"role": "user", "content": text})

        system = "\n\n".join(system_parts) or None
        return ProviderMessages(system=system, messages=result)


class OpenAIHistoryBuilder:
    """Chat Completions shape: inline system, one tool message per result."""

    def build(self, messages: list[ConversationMessage]) -> ProviderMessages:
        result: list[dict] = []

        for msg in messages:
            text = (msg.text or "").strip()
            if msg.role == MessageRole.TOOL:
                result.append({
                    "role": "tool",
                    "content": text,
                    "tool_call_id": msg.tool_call_id or "",
                })
            elif msg.role == MessageRole.ASSISTANT:
                if not text and not msg.has_tool_calls:
                    continue
                entry: dict = {"role": "assistant"}
                if text:
                    entry["content"] = text
                if msg.has_tool_calls:
                    entry["tool_calls"] = [
                        _openai_tool_call(c) for c in msg.tool_calls
                    ]
                result.append(entry)
            elif text:
                result.append({"role": msg.role.value, "content": text})

        return ProviderMessages(system=None, messages=result)


# === Private helpers ==========================================================

def _assistant_blocks(msg: ConversationMessage, text: str) -> dict:
    content: list[dict] = []
    if text:
        content.append({"type": "text", "text": text})
    for call in msg.tool_calls:
        content.append({
            "type": "tool_use",
            "id": call.id,
            "name": call.name,
            "input": parse_tool_input(call.arguments),
        })
    return {"role": "assistant", "content": content}


def _append_tool_result(result: list[dict], msg: ConversationMessage, text: str) -> None:
    block = {
        "type": "tool_result",
        "tool_use_id": msg.tool_call_id or "",
        "content": text,
    }
    last = result[-1] if result else None
    if last is not None and last["role"] == "user" and _is_tool_result_list(last):
        last["content"].append(block)
    else:
        result.append({"role": "user", "content": [block]})


def _is_tool_result_list(message: dict) -> bool:
    content = message.get("content")
    return (
        isinstance(content, list)
        and bool(content)
        and all(b.get("type") == "tool_result" for b in content)
    )


def _openai_tool_call(call: ToolCall) -> dict:
    return {
        "id": call.id,
        "type": "function",
        "function": {"name": call.name, "arguments": call.arguments or "{}"},
    }


def parse_tool_input(arguments: str | None) -> dict:
    """Argument JSON → dict for tool_use blocks. Invalid or non-object → {}."""
    if not arguments:
        return {}
    try:
        parsed = json.loads(arguments)
    except json.JSONDecodeError:
        return {}
    return parsed if isinstance(parsed, dict) else {}
