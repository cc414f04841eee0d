"""Agent Stream API — FastAPI application entry point.

Invariants:
    - Routes registered explicitly (no auto-discovery)
    - Global error handlers map AgentStreamError → structured JSON responses
    - CORS configured from settings (not hardcoded)
    - Backend client, provider registry, tokenizer and runner built once in
      the lifespan and shared by every turn

Design Decisions:
    - Lifespan over @app.on_event: cleaner startup/cleanup pairing
    - Tool handlers registered by the embedding application on
      app.state.tool_handlers (empty by default)
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from agent_stream.api.error_handlers import register_error_handlers
from agent_stream.api.routes import health, turn_stream
from agent_stream.config import get_settings
from agent_stream.infrastructure.backend_client import GraphQLConversationBackend
from agent_stream.infrastructure.observability import setup_logging
from agent_stream.infrastructure.provider_registry import build_provider_registry
from agent_stream.infrastructure.tokenizers import load_tokenizer
from agent_stream.services.agent_runner import AgentRunner

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle."""
    settings = get_settings()
    setup_logging(settings.log_level, settings.log_format)

    backend = GraphQLConversationBackend.from_settings(settings)
    providers = build_provider_registry(settings)
    app.state.providers = providers
    app.state.runner = AgentRunner(
        backend, providers, tokenizer=load_tokenizer(settings),
    )
    if not hasattr(app.state, "tool_handlers"):
        app.state.tool_handlers = {}
    logger.info("Agent Stream API started")
    yield
    await backend.aclose()
    logger.info("Agent Stream API shutting down")


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title="Agent Stream API", version="1.0.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(health.router)
    app.include_router(turn_stream.router)
    register_error_handlers(app)
    return app


app = create_app()
