"""Turn Stream — runs one agent turn and streams its UI events as SSE.

Invariants:
    - Every UI event becomes one `data: {...}` SSE line, in emission order
    - Tool handlers come from app.state.tool_handlers, filtered to the
      tools named in the request
    - Client disconnect sets the turn's cancel event and cancels the turn task
    - A fatal turn error is delivered as the SSE error event, then the stream ends

Design Decisions:
    - Runner in a background task feeding an asyncio.Queue: the generator only
      frames events, so a slow client never blocks the provider stream
    - Runner is shared (app.state.runner); all per-turn state lives in the turn
"""

import asyncio
import json
import logging
from dataclasses import replace
from typing import Mapping

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from agent_stream.config import Settings, get_settings
from agent_stream.core.conversation import ToolHandler
from agent_stream.core.errors import AgentStreamError
from agent_stream.core.ui_events import UIEvent
from agent_stream.schemas.turn import TurnOptionsInput, TurnRequest
from agent_stream.services.agent_runner import (
    AgentRunner,
    ConversationTurn,
    TurnOptions,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/turns", tags=["turns"])

# Prevent proxy/browser buffering of streamed events.
SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "X-Accel-Buffering": "no",
    "Connection": "keep-alive",
}


def get_runner(request: Request) -> AgentRunner:
    return request.app.state.runner


def get_tool_handlers(request: Request) -> Mapping[str, ToolHandler]:
    return getattr(request.app.state, "tool_handlers", {})


def sse_line(event: dict) -> str:
    return f"data: {json.dumps(event, ensure_ascii=False, default=str)}\n\n"


def build_turn_options(
    body: TurnOptionsInput, settings: Settings, cancel_event: asyncio.Event,
) -> TurnOptions:
    overrides = body.model_dump(exclude_none=True, exclude={"context"})
    options = TurnOptions.from_settings(settings, cancel_event=cancel_event, **overrides)
    if body.context is not None:
        options = replace(options, context=replace(
            options.context, **body.context.model_dump(exclude_none=True),
        ))
    return options


@router.post("/stream")
async def stream_turn(
    body: TurnRequest,
    runner: AgentRunner = Depends(get_runner),
    handlers: Mapping[str, ToolHandler] = Depends(get_tool_handlers),
    settings: Settings = Depends(get_settings),
):
    """SSE stream of one turn's UI events."""
    cancel_event = asyncio.Event()
    tools = [t.to_definition() for t in body.tools]
    turn = ConversationTurn(
        prompt=body.prompt,
        specification_id=body.specification_id,
        conversation_id=body.conversation_id,
        tools=tools,
        tool_handlers={t.name: handlers[t.name] for t in tools if t.name in handlers},
        options=build_turn_options(body.options, settings, cancel_event),
    )

    async def event_generator():
        queue: asyncio.Queue[UIEvent | None] = asyncio.Queue()
        task = asyncio.create_task(_run_turn(runner, turn, queue))
        try:
            while (event := await queue.get()) is not None:
                yield sse_line(event.to_sse_event())
        except asyncio.CancelledError:
            logger.info("Client disconnected from turn stream", extra={
                "conversation_id": turn.conversation_id,
            })
            return
        finally:
            cancel_event.set()
            if not task.done():
                task.cancel()

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


async def _run_turn(
    runner: AgentRunner, turn: ConversationTurn, queue: asyncio.Queue,
) -> None:
    try:
        outcome = await runner.run_turn(turn, queue.put_nowait)
        logger.info("Turn streamed", extra={
            "conversation_id": outcome.conversation_id,
            "round_number": outcome.rounds,
        })
    except AgentStreamError as e:
        logger.info("Turn ended with %s", e.code, extra={
            "conversation_id": e.context.conversation_id, "error_code": e.code,
        })
    except Exception as e:
        logger.error("Turn task failed: %s", e, exc_info=True)
    finally:
        queue.put_nowait(None)
