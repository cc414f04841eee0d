"""Synthetic Stream — tests for pseudo-token splitting of complete responses.

Tests cover:
    - Joined tokens always equal the input
    - Plain text splits on spaces with leading-space tokens
    - JSON-looking text splits at structural characters outside strings
"""

from agent_stream.core.synthetic_stream import (
    MAX_JSON_TOKEN_CHARS,
    looks_like_json,
    synthetic_tokens,
)


def test_empty_text_has_no_tokens():
    assert synthetic_tokens("") == []


def test_plain_text_tokens():
    tokens = synthetic_tokens("Hello there world")
    assert tokens == ["Hello", " there", " world"]


def test_plain_text_double_space_preserved():
    text = "a  b"
    assert "".join(synthetic_tokens(text)) == text


def test_looks_like_json_prefix_heuristic():
    assert looks_like_json('  {"a": 1}')
    assert looks_like_json("[1, 2]")
    assert not looks_like_json("plain {text}")


def test_json_splits_at_commas_outside_strings():
    text = '{"a": "x,y", "b": 2}'
    tokens = synthetic_tokens(text)
    assert "".join(tokens) == text
    # the comma inside "x,y" never ends a token
    assert not any(t.endswith('"x,') for t in tokens)


def test_json_tokens_are_bounded():
    text = '{"description": "' + "z" * 50 + '"}'
    tokens = synthetic_tokens(text)
    assert "".join(tokens) == text
    assert all(len(t) <= MAX_JSON_TOKEN_CHARS + 1 for t in tokens)
