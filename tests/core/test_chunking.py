"""Chunking — tests for built-in and custom chunkers.

Tests cover:
    - Word chunks withhold a trailing partial word
    - Character chunks are single characters
    - Sentence chunks split at ASCII and CJK terminals
    - Long whitespace-free runs are released in 400-char pieces
    - Misbehaving custom chunkers release the whole buffer
    - Chunks + remainder always reconstruct the input
"""

import pytest

from agent_stream.core.chunking import (
    LONG_RUN_LIMIT,
    character_chunk,
    is_paced,
    next_chunk,
    resolve_chunker,
    sentence_chunk,
    split_chunks,
    word_chunk,
)
from agent_stream.core.domain_types import ChunkingStrategy


# ==============================================================================
# Built-in chunkers
# ==============================================================================


def test_word_chunk_takes_leading_space_and_word():
    assert word_chunk("Hello world") == "Hello"
    assert word_chunk(" world more") == " world"


def test_word_chunk_withholds_partial_word():
    assert word_chunk("Hel") is None
    assert word_chunk("  ") is None


def test_character_chunk():
    assert character_chunk("abc") == "a"
    assert character_chunk("") is None


def test_sentence_chunk_ascii_and_cjk():
    assert sentence_chunk("Hi there. Next") == "Hi there. "
    assert sentence_chunk("你好。再见") == "你好。"
    assert sentence_chunk("no terminal yet") is None


def test_word_split_reconstructs_text():
    text = "The quick  brown fox\njumps over"
    chunks, remainder = split_chunks(text, word_chunk)
    assert all(chunks)
    assert "".join(chunks) + remainder == text
    assert remainder == " over"


def test_character_split_average_length_at_most_two():
    chunks, remainder = split_chunks("streaming text", character_chunk)
    assert remainder == ""
    assert sum(len(c) for c in chunks) / len(chunks) <= 2


# ==============================================================================
# Validation and resolution
# ==============================================================================


def test_long_run_without_whitespace_is_released():
    buffer = "x" * (LONG_RUN_LIMIT + 50)
    chunk = next_chunk(buffer, word_chunk)
    assert chunk == "x" * LONG_RUN_LIMIT


def test_short_run_without_whitespace_is_withheld():
    assert next_chunk("x" * 20, word_chunk) is None


@pytest.mark.parametrize("bad", ["", "not a prefix"])
def test_invalid_custom_chunk_releases_buffer(bad):
    assert next_chunk("abc def", lambda _: bad) == "abc def"


def test_chunker_exception_propagates():
    def boom(_):
        raise ValueError("bad chunker")

    with pytest.raises(ValueError):
        next_chunk("abc", boom)


def test_empty_buffer_yields_nothing():
    assert next_chunk("", character_chunk) is None


def test_resolve_chunker_by_enum_name_and_callable():
    assert resolve_chunker(ChunkingStrategy.WORD) is word_chunk
    assert resolve_chunker("sentence") is sentence_chunk

    def custom(buffer):
        return buffer[:2]

    assert resolve_chunker(custom) is custom


def test_only_word_and_character_are_paced():
    assert is_paced(ChunkingStrategy.WORD)
    assert is_paced(ChunkingStrategy.CHARACTER)
    assert not is_paced(ChunkingStrategy.SENTENCE)
    assert not is_paced(lambda b: b)
