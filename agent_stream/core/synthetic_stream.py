"""Synthetic Stream — splits a complete response into pseudo-tokens.

Used by the non-streaming fallback round so consumers see the same event
cadence whether or not the provider streams natively.

Invariants:
    - "".join(synthetic_tokens(text)) == text for every text
    - JSON-looking text: every token ends at , } ] or newline outside a
      string literal, or is cut at ~10 characters (an escape pair may overrun)
    - Plain text: first token is the first word; later tokens carry one leading space

Design Decisions:
    - looks_like_json() is a prefix heuristic (strip + "{"/"["). It can misfire
      on partial fragments or prose that opens with a bracket; that only changes
      token boundaries, never the joined text
"""

MAX_JSON_TOKEN_CHARS = 10
_JSON_BOUNDARIES = frozenset(",}]\n")


def looks_like_json(text: str) -> bool:
    stripped = text.strip()
    return stripped.startswith("{") or stripped.startswith("[")


def synthetic_tokens(text: str) -> list[str]:
    if not text:
        return []
    if looks_like_json(text):
        return _split_json(text)
    return _split_words(text)


def _split_json(text: str) -> list[str]:
    tokens: list[str] = []
    current = ""
    in_string = False
    escape_next = False

    for char in text:
        current += char

        if escape_next:
            escape_next = False
            continue
        if char == "\\":
            escape_next = True
            continue
        if char == '"':
            in_string = not in_string

        if not in_string and char in _JSON_BOUNDARIES:
            tokens.append(current)
            current = ""
        elif len(current) >= MAX_JSON_TOKEN_CHARS:
            tokens.append(current)
            current = ""

    if current:
        tokens.append(current)
    return tokens


def _split_words(text: str) -> list[str]:
    words = text.split(" ")
    tokens = [words[0]] + [" " + w for w in words[1:]]
    return [t for t in tokens if t]
