"""Structured Logging — JSON lines for turns, rounds and tool calls.

Invariants:
    - Every record carries timestamp, level, logger and message
    - Turn-scoped extras (conversation_id, round_number, tool_call_id, ...) are
      copied when present, never invented
    - setup_logging() is idempotent: repeated lifespans do not stack handlers

Design Decisions:
    - Stdlib logging + a small JSON formatter, no logging framework
    - SDK transport loggers (httpx, anthropic, openai) capped at WARNING so
      per-chunk request chatter stays out of turn logs
"""

import json
import logging
from datetime import datetime, timezone


TURN_FIELDS = (
    "conversation_id", "round_number", "tool_name", "tool_call_id",
    "error_code", "attempt", "provider", "operation",
    "input_tokens", "output_tokens", "usage_before", "usage_after",
    "kept_rounds", "status_code", "path", "providers",
)
_NOISY_LOGGERS = ("httpx", "httpcore", "anthropic", "openai")
_HANDLER_NAME = "agent_stream"


class JSONFormatter(logging.Formatter):
    """One JSON object per record."""

    def __init__(self, fields: tuple[str, ...] = TURN_FIELDS):
        super().__init__()
        self._fields = fields

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(
                record.created, timezone.utc,
            ).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(
            (key, record.__dict__[key]) for key in self._fields
            if record.__dict__.get(key) is not None
        )
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def setup_logging(level: str = "INFO", fmt: str = "json") -> logging.Handler:
    """Install (or replace) the service handler on the root logger."""
    root = logging.getLogger()
    for existing in list(root.handlers):
        if existing.get_name() == _HANDLER_NAME:
            root.removeHandler(existing)

    handler = logging.StreamHandler()
    handler.set_name(_HANDLER_NAME)
    if fmt == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s: %(message)s",
        ))
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    return handler
