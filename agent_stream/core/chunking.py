"""Chunking — extracts one display chunk at a time from the front of a text buffer.

Invariants:
    - A chunker returns a non-empty prefix of the buffer, or None (withhold)
    - Concatenating all chunks plus the final flushed remainder == original text
    - A misbehaving custom chunker never loses data: the whole buffer is released
    - A buffer of more than 400 characters without whitespace is released in
      400-character pieces

Design Decisions:
    - Chunkers are plain callables (str -> str | None); custom ones plug in directly
    - Word/character chunks are paced by the normalizer; sentence chunks are not
"""

import re
from typing import Callable

from agent_stream.core.domain_types import ChunkingStrategy


Chunker = Callable[[str], "str | None"]

LONG_RUN_LIMIT = 400

_WORD_RE = re.compile(r"^(\s*\S+)")
_SENTENCE_RE = re.compile(r"^([^.!?。！？]*[.!?。！？]\s*)")
_WHITESPACE_RE = re.compile(r"\s")


# === Built-in chunkers ========================================================

def word_chunk(buffer: str) -> str | None:
    """Optional leading whitespace + one non-whitespace run.

    The run is only complete once whitespace follows it; a trailing partial
    word stays in the buffer until more text arrives or the turn flushes.
    """
    match = _WORD_RE.match(buffer)
    if not match:
        return None
    chunk = match.group(1)
    if len(chunk) == len(buffer):
        return None
    return chunk


def character_chunk(buffer: str) -> str | None:
    return buffer[0] if buffer else None


def sentence_chunk(buffer: str) -> str | None:
    match = _SENTENCE_RE.match(buffer)
    return match.group(1) if match else None


_BUILTIN: dict[ChunkingStrategy, Chunker] = {
    ChunkingStrategy.WORD: word_chunk,
    ChunkingStrategy.CHARACTER: character_chunk,
    ChunkingStrategy.SENTENCE: sentence_chunk,
}


# === Public API ===============================================================

def is_paced(strategy: ChunkingStrategy | Chunker) -> bool:
    """True for strategies whose chunks go through the delay queue."""
    return strategy in (ChunkingStrategy.WORD, ChunkingStrategy.CHARACTER)


def resolve_chunker(strategy: ChunkingStrategy | str | Chunker) -> Chunker:
    """Built-in strategy by enum/name, or a custom callable as-is."""
    if callable(strategy):
        return strategy
    return _BUILTIN[ChunkingStrategy(strategy)]


def next_chunk(buffer: str, chunker: Chunker) -> str | None:
    """Validated extraction: bad chunker output releases the whole buffer.

    Exceptions raised by the chunker propagate; the normalizer guards
    custom chunkers before handing them in.
    """
    if not buffer:
        return None
    chunk = chunker(buffer)

    if chunk is None:
        if len(buffer) > LONG_RUN_LIMIT and not _WHITESPACE_RE.search(buffer):
            return buffer[:LONG_RUN_LIMIT]
        return None

    if not chunk or not buffer.startswith(chunk):
        return buffer
    return chunk


def split_chunks(buffer: str, chunker: Chunker) -> tuple[list[str], str]:
    """Extract every available chunk. Returns (chunks, remainder)."""
    chunks: list[str] = []
    while True:
        chunk = next_chunk(buffer, chunker)
        if chunk is None:
            return chunks, buffer
        chunks.append(chunk)
        buffer = buffer[len(chunk):]
