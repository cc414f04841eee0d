"""API test fixtures — FastAPI app wired to fake backend/providers + httpx client.

Invariants:
    - Every test gets a fresh app from create_app() (no shared app.state)
    - app.state is populated directly: ASGITransport does not run the lifespan

Design Decisions:
    - Real AgentRunner over FakeBackend/FakeProviderAdapter: the route is
      exercised end to end down to the provider boundary
"""

import pytest
from httpx import ASGITransport, AsyncClient

from agent_stream.infrastructure.provider_registry import ProviderRegistry
from agent_stream.main import create_app
from agent_stream.services.agent_runner import AgentRunner

from tests.services.fakes import FakeBackend


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def app():
    return create_app()


@pytest.fixture
def install_runner(app, backend):
    """Install a runner whose provider replays `adapter`'s scripted rounds."""

    def install(adapter, service=None):
        registry = ProviderRegistry()
        if adapter is not None:
            registry.register(service or backend.specification.service_type, adapter)
        app.state.providers = registry
        app.state.runner = AgentRunner(backend, registry)
        return app.state.runner

    return install


@pytest.fixture
async def client(app):
    app.state.tool_handlers = {}
    async with AsyncClient(
        transport=ASGITransport(app=app, raise_app_exceptions=False),
        base_url="http://test",
    ) as c:
        yield c
