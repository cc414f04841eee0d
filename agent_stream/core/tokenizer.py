"""Tokenizer — token counting with a precise encoder or a chars-per-token heuristic.

Invariants:
    - count("") == count(None) == 0
    - HeuristicTokenizer.count(text) == ceil(len(text) / 3.5)
    - is_precise() is True only when backed by a real BPE encoding

Design Decisions:
    - Explicitly constructed and injected (no process-wide singleton)
    - EncodingTokenizer wraps anything with encode(text) -> list[int] (tiktoken.Encoding)
"""

import math
from typing import Protocol


CHARS_PER_TOKEN = 3.5


class Tokenizer(Protocol):
    def count(self, text: str | None) -> int: ...
    def is_precise(self) -> bool: ...


class _Encoding(Protocol):
    def encode(self, text: str, **kwargs) -> list[int]: ...


class HeuristicTokenizer:
    """Conservative estimate used when no encoding is available."""

    def count(self, text: str | None) -> int:
        if not text:
            return 0
        return math.ceil(len(text) / CHARS_PER_TOKEN)

    def is_precise(self) -> bool:
        return False


class EncodingTokenizer:
    """Exact BPE token counts from a loaded encoding."""

    def __init__(self, encoding: _Encoding, name: str = "o200k_base"):
        self._encoding = encoding
        self.name = name

    def count(self, text: str | None) -> int:
        if not text:
            return 0
        # special-token text inside tool output is counted as plain text
        return len(self._encoding.encode(text, disallowed_special=()))

    def is_precise(self) -> bool:
        return True
