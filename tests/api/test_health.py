"""Health probe — liveness and configured providers."""

from agent_stream.core.domain_types import ModelService

from tests.services.fakes import FakeProviderAdapter


async def test_health_reports_configured_providers(client, install_runner):
    install_runner(FakeProviderAdapter([]), ModelService.OPENAI)

    res = await client.get("/api/v1/health/")

    assert res.status_code == 200
    assert res.json() == {
        "status": "healthy",
        "service": "agent-stream",
        "version": "1.0.0",
        "providers": ["openai"],
    }


async def test_health_without_registry(client):
    res = await client.get("/api/v1/health/")
    assert res.status_code == 200
    assert res.json()["providers"] == []
