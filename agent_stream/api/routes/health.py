"""Health Probe — liveness endpoint for container orchestration.

Invariants:
    - GET /health/ always returns 200 if the process is up
    - Reports which native streaming providers are configured (no network calls)
"""

from fastapi import APIRouter, Request, status

router = APIRouter(prefix="/api/v1/health", tags=["health"])


@router.get("/", status_code=status.HTTP_200_OK)
async def health_check(request: Request):
    """Basic liveness probe. Returns 200 if the process is up."""
    registry = getattr(request.app.state, "providers", None)
    providers = [s.value for s in registry.services()] if registry else []
    return {
        "status": "healthy",
        "service": "agent-stream",
        "version": "1.0.0",
        "providers": providers,
    }
