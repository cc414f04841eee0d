"""Error Handlers — JSON error bodies for failures before a turn stream opens.

Invariants:
    - AgentStreamError → its own to_response() body at its http_status
    - RequestValidationError → 400 VALIDATION_ERROR with per-field details
    - Anything else → 500 INTERNAL_ERROR; the exception text stays in the logs

Design Decisions:
    - Once the SSE response has started, failures travel as error events
      instead, so these handlers never see a mid-stream failure
"""

import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from agent_stream.core.errors import AgentStreamError, ErrorSeverity

logger = logging.getLogger(__name__)


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AgentStreamError, _agent_stream_error)
    app.add_exception_handler(RequestValidationError, _validation_error)
    app.add_exception_handler(Exception, _unexpected_error)


async def _agent_stream_error(request: Request, exc: AgentStreamError) -> JSONResponse:
    level = logging.ERROR if exc.http_status >= 500 else logging.WARNING
    logger.log(level, "%s on %s: %s", exc.code, request.url.path, exc.message, extra={
        "error_code": exc.code,
        "conversation_id": exc.context.conversation_id,
    })
    return JSONResponse(status_code=exc.http_status, content=exc.to_response())


async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    logger.warning("Rejected turn request on %s", request.url.path, extra={
        "error_count": len(exc.errors()),
    })
    details = [
        {
            "field": ".".join(str(loc) for loc in e["loc"]),
            "message": e["msg"],
            "type": e["type"],
        }
        for e in exc.errors()
    ]
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=_error_body(
            "VALIDATION_ERROR", "Invalid request data", "validation",
            ErrorSeverity.ERROR, details=details,
        ),
    )


async def _unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Unhandled exception on %s: %s", request.url.path, exc, exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=_error_body(
            "INTERNAL_ERROR", "An unexpected error occurred", "internal",
            ErrorSeverity.CRITICAL,
        ),
    )


def _error_body(
    code: str, message: str, category: str, severity: ErrorSeverity, **extra,
) -> dict:
    error = {
        "code": code,
        "message": message,
        "category": category,
        "severity": severity.value,
    }
    error.update(extra)
    return {"error": error}
