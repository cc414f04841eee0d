"""Context Window Manager — token budget tracking, tool-result truncation, round windowing.

Invariants:
    - budget = floor((token_limit - completion_token_limit) * 0.95); remaining >= 0
    - Server-reported token counts win over estimates
    - truncate_tool_result returns its input unchanged when within budget, and
      something strictly shorter otherwise: the full marker when it fits, a
      compact "[truncated]" marker when only that fits, else a bare prefix
    - window_tool_rounds never alters the header (system + history + initial user
      message); a summary marker from an earlier pass is replaced, never stacked
    - window_tool_rounds returns the SAME list object when nothing is dropped

Design Decisions:
    - Pure functions + one small tracker class; the tokenizer is injected, never global
    - Static summary marker (not model-generated) to avoid an extra API call
    - Clean break points: JSON boundaries for JSON-looking text, newlines otherwise
"""

import json
import math
import re
from dataclasses import dataclass
from typing import Any, Iterable

from agent_stream.core.conversation import ConversationMessage
from agent_stream.core.domain_types import MessageRole
from agent_stream.core.tokenizer import CHARS_PER_TOKEN, HeuristicTokenizer, Tokenizer


_HEURISTIC = HeuristicTokenizer()
_BUDGET_CEILING = 0.95
_DEFAULT_COMPLETION_LIMIT = 4096
_JSON_BREAKS = ("},", "}\n", "],", "]\n")
_SUMMARY_RE = re.compile(r"^\[Context management: (\d+) earlier tool calling round")
_COMPACT_MARKER = "\n[truncated]"


@dataclass(frozen=True)
class ContextStrategy:
    """Context window knobs for agentic tool loops."""
    tool_result_token_limit: int = 8192
    tool_round_limit: int = 10
    rebudget_threshold: float = 0.75


# === Public API ===============================================================

def estimate_tokens(text: str | None, tokenizer: Tokenizer | None = None) -> int:
    """Exact count via a precise tokenizer, else ceil(len / 3.5). Empty → 0."""
    if not text:
        return 0
    return (tokenizer or _HEURISTIC).count(text)


def message_tokens(
    message: ConversationMessage, tokenizer: Tokenizer | None = None,
) -> int:
    """Server count when known, else estimate of text + tool-call arguments."""
    if message.tokens:
        return message.tokens
    total = estimate_tokens(message.text, tokenizer)
    for call in message.tool_calls:
        total += estimate_tokens(call.arguments, tokenizer)
    return total


class TokenBudgetTracker:
    """Tracks token budget for one turn of a streaming tool loop.

    Seeded from server-side accounting (format_conversation details), then
    advanced with estimates as assistant/tool messages are added.
    """

    def __init__(
        self,
        token_limit: int,
        completion_token_limit: int,
        used_tokens: int = 0,
        tokenizer: Tokenizer | None = None,
    ):
        self.token_limit = token_limit
        self.completion_token_limit = completion_token_limit
        self._used_tokens = used_tokens
        self._tokenizer = tokenizer

    @classmethod
    def from_details(
        cls,
        token_limit: int | None,
        completion_token_limit: int | None = None,
        message_tokens: Iterable[int | None] = (),
        tokenizer: Tokenizer | None = None,
    ) -> "TokenBudgetTracker | None":
        """Build from server details. None when no token limit was reported."""
        if not token_limit:
            return None
        used = sum(t or 0 for t in message_tokens)
        return cls(
            token_limit,
            completion_token_limit or _DEFAULT_COMPLETION_LIMIT,
            used,
            tokenizer,
        )

    @property
    def budget(self) -> int:
        return math.floor(
            (self.token_limit - self.completion_token_limit) * _BUDGET_CEILING,
        )

    @property
    def used_tokens(self) -> int:
        return self._used_tokens

    @property
    def remaining(self) -> int:
        return max(0, self.budget - self._used_tokens)

    @property
    def usage_percent(self) -> int:
        if self.budget <= 0:
            return 100
        return round((self._used_tokens / self.budget) * 100)

    def add_message(self, text: str | None, server_count: int | None = None) -> None:
        if server_count is not None:
            self._used_tokens += server_count
        else:
            self._used_tokens += estimate_tokens(text, self._tokenizer)

    def needs_rebudget(self, threshold: float) -> bool:
        return self.usage_percent >= threshold * 100

    def reset_from_messages(self, messages: Iterable[ConversationMessage]) -> None:
        """Recompute usage after windowing."""
        self._used_tokens = sum(
            message_tokens(m, self._tokenizer) for m in messages
        )

    def snapshot(self) -> dict:
        return {
            "token_limit": self.token_limit,
            "completion_token_limit": self.completion_token_limit,
            "used_tokens": self._used_tokens,
            "budget": self.budget,
            "remaining_tokens": self.remaining,
            "usage_percent": self.usage_percent,
        }


def truncate_tool_result(
    result: Any,
    max_tokens: int,
    tool_name: str,
    tokenizer: Tokenizer | None = None,
) -> str:
    """Cut a tool result to max_tokens at a clean break and append a marker."""
    text = result if isinstance(result, str) else _stringify(result)
    if not text:
        return ""

    original_tokens = estimate_tokens(text, tokenizer)
    if original_tokens <= max_tokens:
        return text

    chars_per_token = CHARS_PER_TOKEN
    if tokenizer is not None and tokenizer.is_precise() and original_tokens > 0:
        chars_per_token = len(text) / original_tokens
    max_chars = max(0, math.floor(max_tokens * chars_per_token))

    truncated = _clean_break(text, text[:max_chars], max_chars)
    out = _with_marker(truncated, original_tokens, tool_name, tokenizer)

    # The marker must not make the result longer than the input
    while len(out) >= len(text) and truncated:
        marker_len = len(out) - len(truncated)
        truncated = truncated[:max(0, len(text) - marker_len - 1)]
        out = _with_marker(truncated, original_tokens, tool_name, tokenizer)

    if len(out) >= len(text):
        # Input too short for the full marker
        keep = min(max_chars, len(text) - len(_COMPACT_MARKER) - 1)
        if keep > 0:
            return text[:keep] + _COMPACT_MARKER
        return text[:max_chars]
    return out


def window_tool_rounds(
    messages: list[ConversationMessage], keep_rounds: int,
) -> list[ConversationMessage]:
    """Keep header + most recent keep_rounds tool rounds, with a summary marker."""
    header_end = _find_tool_round_start(messages)
    header = messages[:header_end]
    rounds = _group_tool_rounds(messages[header_end:])

    keep = max(0, keep_rounds)
    if len(rounds) <= keep:
        return messages

    kept = rounds[len(rounds) - keep:] if keep else []
    dropped = len(rounds) - keep + sum(_summarized_rounds(m) for m in header)
    header = [m for m in header if not _summarized_rounds(m)]

    summary = ConversationMessage(
        role=MessageRole.SYSTEM,
        text=(
            f"[Context management: {dropped} earlier tool calling round(s) "
            "were removed to stay within token limits. The most recent "
            f"{keep} round(s) are preserved below.]"
        ),
    )
    return header + [summary] + [m for r in kept for m in r]


def count_tool_rounds(messages: list[ConversationMessage]) -> int:
    return len(_group_tool_rounds(messages[_find_tool_round_start(messages):]))


# === Private helpers ==========================================================

def _summarized_rounds(message: ConversationMessage) -> int:
    """Rounds dropped by an earlier windowing pass (0 if not a summary marker)."""
    if message.role != MessageRole.SYSTEM:
        return 0
    match = _SUMMARY_RE.match(message.text or "")
    return int(match.group(1)) if match else 0


def _stringify(result: Any) -> str:
    if result is None:
        return ""
    return json.dumps(result, ensure_ascii=False, default=str)


def _clean_break(text: str, truncated: str, max_chars: int) -> str:
    half = max_chars * 0.5
    if text.startswith(("{", "[")):
        last = max(truncated.rfind(b) for b in _JSON_BREAKS)
        if last >= 0 and last >= half:
            return truncated[:last + 1]
        return truncated
    last_newline = truncated.rfind("\n")
    if last_newline >= 0 and last_newline >= half:
        return truncated[:last_newline]
    return truncated


def _with_marker(
    truncated: str, original_tokens: int, tool_name: str,
    tokenizer: Tokenizer | None,
) -> str:
    shown = estimate_tokens(truncated, tokenizer)
    return (
        f"{truncated}\n\n[truncated by {tool_name}: original ~{original_tokens}"
        f" tokens, showing first ~{shown} tokens]"
    )


def _find_tool_round_start(messages: list[ConversationMessage]) -> int:
    """Index of the first assistant message with tool calls (len if none)."""
    for i, msg in enumerate(messages):
        if msg.role == MessageRole.ASSISTANT and msg.has_tool_calls:
            return i
    return len(messages)


def _group_tool_rounds(
    tool_messages: list[ConversationMessage],
) -> list[list[ConversationMessage]]:
    """Each round = one assistant message + the tool messages following it."""
    rounds: list[list[ConversationMessage]] = []
    current: list[ConversationMessage] = []
    for msg in tool_messages:
        if msg.role == MessageRole.ASSISTANT and current:
            rounds.append(current)
            current = [msg]
        else:
            current.append(msg)
    if current:
        rounds.append(current)
    return rounds
