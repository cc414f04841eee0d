"""Context Window — tests for budget tracking, truncation and round windowing.

Tests cover:
    - estimate_tokens: empty → 0, heuristic fallback, injected tokenizer
    - TokenBudgetTracker: budget formula, server counts, rebudget threshold
    - truncate_tool_result: identity within budget, strictly shorter otherwise
      (full marker, compact marker or bare prefix depending on input length)
    - window_tool_rounds: identity when nothing drops, header + kept rounds + one summary
"""

import json

from agent_stream.core.context_window import (
    TokenBudgetTracker,
    count_tool_rounds,
    estimate_tokens,
    message_tokens,
    truncate_tool_result,
    window_tool_rounds,
)
from agent_stream.core.conversation import ConversationMessage, ToolCall
from agent_stream.core.domain_types import MessageRole


class _WordTokenizer:
    def count(self, text):
        return len(text.split()) if text else 0

    def is_precise(self):
        return True


def _msg(role, text="", **kwargs):
    return ConversationMessage(role=role, text=text, **kwargs)


def _round(n):
    call = ToolCall(id=f"t{n}", name="search", arguments='{"q": 1}')
    return [
        _msg(MessageRole.ASSISTANT, f"round {n}", tool_calls=[call]),
        _msg(MessageRole.TOOL, f"result {n}", tool_call_id=f"t{n}"),
    ]


def _conversation(rounds):
    header = [
        _msg(MessageRole.SYSTEM, "system"),
        _msg(MessageRole.USER, "earlier question"),
        _msg(MessageRole.ASSISTANT, "earlier answer"),
        _msg(MessageRole.USER, "current question"),
    ]
    return header, header + [m for n in range(rounds) for m in _round(n)]


# ==============================================================================
# Estimation
# ==============================================================================


def test_estimate_tokens_empty_is_zero():
    assert estimate_tokens("") == 0
    assert estimate_tokens(None) == 0


def test_estimate_tokens_heuristic_and_injected():
    assert estimate_tokens("abcdefg") == 2
    assert estimate_tokens("one two three", _WordTokenizer()) == 3


def test_message_tokens_prefers_server_count():
    msg = _msg(MessageRole.USER, "x" * 350, tokens=7)
    assert message_tokens(msg) == 7


def test_message_tokens_includes_tool_arguments():
    call = ToolCall(id="t", name="n", arguments="a b c")
    msg = _msg(MessageRole.ASSISTANT, "one two", tool_calls=[call])
    assert message_tokens(msg, _WordTokenizer()) == 5


# ==============================================================================
# Budget tracker
# ==============================================================================


def test_tracker_budget_formula():
    tracker = TokenBudgetTracker(10_000, 2_000)
    assert tracker.budget == 7_600   # floor(8000 * 0.95)
    assert tracker.remaining == 7_600
    assert tracker.usage_percent == 0


def test_tracker_from_details_without_limit_is_none():
    assert TokenBudgetTracker.from_details(None) is None
    assert TokenBudgetTracker.from_details(0) is None


def test_tracker_from_details_sums_server_counts():
    tracker = TokenBudgetTracker.from_details(10_000, None, [100, None, 50])
    assert tracker.completion_token_limit == 4096
    assert tracker.used_tokens == 150


def test_tracker_add_message_server_count_wins():
    tracker = TokenBudgetTracker(10_000, 2_000)
    tracker.add_message("x" * 3500, server_count=10)
    assert tracker.used_tokens == 10
    tracker.add_message("x" * 35)
    assert tracker.used_tokens == 20


def test_tracker_remaining_never_negative():
    tracker = TokenBudgetTracker(1_000, 500, used_tokens=10_000)
    assert tracker.remaining == 0
    assert tracker.usage_percent > 100


def test_tracker_needs_rebudget_at_threshold():
    tracker = TokenBudgetTracker(10_000, 2_000, used_tokens=5_700)
    assert tracker.usage_percent == 75
    assert tracker.needs_rebudget(0.75)
    assert not tracker.needs_rebudget(0.8)


def test_tracker_zero_budget_reports_full():
    tracker = TokenBudgetTracker(100, 200)
    assert tracker.usage_percent == 100


def test_tracker_snapshot_keys():
    snapshot = TokenBudgetTracker(10_000, 2_000, used_tokens=76).snapshot()
    assert snapshot == {
        "token_limit": 10_000,
        "completion_token_limit": 2_000,
        "used_tokens": 76,
        "budget": 7_600,
        "remaining_tokens": 7_524,
        "usage_percent": 1,
    }


def test_tracker_reset_from_messages():
    tracker = TokenBudgetTracker(10_000, 2_000, used_tokens=5_000)
    tracker.reset_from_messages([_msg(MessageRole.USER, "x", tokens=12)])
    assert tracker.used_tokens == 12


# ==============================================================================
# Truncation
# ==============================================================================


def test_truncate_within_budget_is_identity():
    assert truncate_tool_result("short", 1000, "t") == "short"


def test_truncate_long_text_is_shorter_with_marker():
    text = "\n".join(f"line {i} " + "word " * 20 for i in range(200))
    out = truncate_tool_result(text, 100, "reader")
    assert len(out) < len(text)
    assert "[truncated by reader:" in out


def test_truncate_breaks_at_newline():
    text = "\n".join("x" * 30 for _ in range(100))
    out = truncate_tool_result(text, 50, "reader")
    body = out.split("\n\n[truncated by")[0]
    assert set(body.split("\n")) == {"x" * 30}


def test_truncate_json_breaks_at_object_boundary():
    items = [{"id": i, "value": "v" * 20} for i in range(200)]
    text = json.dumps(items)
    out = truncate_tool_result(text, 100, "lister")
    body = out.split("\n\n[truncated by")[0]
    assert body.endswith("}")
    assert body.count("{") == body.count("}")


def test_truncate_stringifies_non_string_results():
    assert truncate_tool_result({"ok": True}, 1000, "t") == '{"ok": true}'
    assert truncate_tool_result(None, 1000, "t") == ""


def test_truncate_small_budget_still_shorter():
    text = "y" * 200
    out = truncate_tool_result(text, 1, "tiny")
    assert len(out) < len(text)
    assert "[truncated by tiny:" in out


def test_truncate_short_input_uses_compact_marker():
    out = truncate_tool_result("x" * 40, 1, "t")
    assert out == "xxx\n[truncated]"
    assert len(out) < 40


def test_truncate_input_shorter_than_any_marker_is_bare_prefix():
    assert truncate_tool_result("abcdef", 1, "t") == "abc"
    assert truncate_tool_result("abcdef", 0, "t") == ""


# ==============================================================================
# Round windowing
# ==============================================================================


def test_window_noop_returns_same_object():
    _, messages = _conversation(3)
    assert window_tool_rounds(messages, 3) is messages
    assert window_tool_rounds(messages, 10) is messages


def test_window_keeps_header_and_recent_rounds():
    header, messages = _conversation(5)
    windowed = window_tool_rounds(messages, 2)

    assert windowed[:len(header)] == header
    summary = windowed[len(header)]
    assert summary.role == MessageRole.SYSTEM
    assert "3 earlier tool calling round(s)" in summary.text
    assert windowed[len(header) + 1:] == _flatten(messages, header, rounds=(3, 4))
    assert count_tool_rounds(windowed[:len(header)] + windowed[len(header) + 1:]) == 2
    assert sum(1 for m in windowed if "[Context management:" in m.text) == 1


def test_window_keep_zero_drops_all_rounds():
    header, messages = _conversation(2)
    windowed = window_tool_rounds(messages, 0)
    assert len(windowed) == len(header) + 1
    assert "The most recent 0 round(s)" in windowed[-1].text


def test_window_without_rounds_is_identity():
    header, _ = _conversation(0)
    assert window_tool_rounds(header, 0) is header


def _flatten(messages, header, rounds):
    tail = messages[len(header):]
    return [m for n in rounds for m in tail[n * 2:n * 2 + 2]]


def test_window_twice_replaces_summary_and_accumulates_count():
    header, messages = _conversation(5)
    once = window_tool_rounds(messages, 2)
    twice = window_tool_rounds(once + _round(5) + _round(6), 2)

    summaries = [m for m in twice if "[Context management:" in m.text]
    assert len(summaries) == 1
    assert summaries[0].text.startswith("[Context management: 5 earlier")
    assert twice[:len(header)] == header
    assert [m.tool_call_id for m in twice if m.role == MessageRole.TOOL] == ["t5", "t6"]
