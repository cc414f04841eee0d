"""Tokenizer loading — tiktoken encoding or the heuristic fallback."""

import logging

import tiktoken

from agent_stream.config import Settings
from agent_stream.core.tokenizer import EncodingTokenizer, HeuristicTokenizer, Tokenizer

logger = logging.getLogger(__name__)


def load_tokenizer(settings: Settings) -> Tokenizer:
    """Precise tokenizer when enabled and loadable, else the 3.5 chars/token estimate.

    get_encoding() may download the BPE file on first use; any failure there
    degrades to the heuristic instead of failing startup.
    """
    if not settings.tokenizer_precise:
        return HeuristicTokenizer()
    try:
        encoding = tiktoken.get_encoding(settings.tokenizer_encoding)
    except Exception as e:
        logger.warning(
            "Tokenizer encoding %s unavailable, using heuristic: %s",
            settings.tokenizer_encoding, e,
        )
        return HeuristicTokenizer()
    return EncodingTokenizer(encoding, settings.tokenizer_encoding)
