"""Health check endpoints."""

from fastapi import APIRouter, status
from pydantic import BaseModel

from firesession.config import settings
from firesession.core.redis_client import check_redis_connection
from firesession.dependencies import Services

router = APIRouter()


def _label(healthy: bool) -> str:
    return "healthy" if healthy else "unhealthy"


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str
    version: str
    environment: str


class DetailedHealthResponse(HealthResponse):
    """
    Readiness of everything a sign-in touches.

    Without the database or Firebase no session can be created or checked,
    so the service is unhealthy. Without Redis sessions keep working but
    reset links lose their one-time guard and rate limit, so it is degraded.
    """

    database: str
    redis: str
    firebase: str


@router.get(
    "/health",
    response_model=HealthResponse,
    status_code=status.HTTP_200_OK,
    tags=["Health"],
    summary="Basic health check",
)
async def health_check() -> HealthResponse:
    """Liveness of the process itself."""
    return HealthResponse(
        status="healthy",
        version=settings.app_version,
        environment=settings.environment,
    )


@router.get(
    "/health/detailed",
    response_model=DetailedHealthResponse,
    status_code=status.HTTP_200_OK,
    tags=["Health"],
    summary="Detailed health check",
)
async def detailed_health_check(services: Services) -> DetailedHealthResponse:
    """
    Readiness of the session store, Redis and the identity provider.

    Returns:
        Overall status plus one entry per dependency
    """
    database_ok = await services.database.check_connection()
    redis_ok = check_redis_connection(services.redis_client)
    firebase_ok = services.session_manager.identity_provider.is_ready()

    if not (database_ok and firebase_ok):
        overall = "unhealthy"
    elif not redis_ok:
        overall = "degraded"
    else:
        overall = "healthy"

    return DetailedHealthResponse(
        status=overall,
        version=settings.app_version,
        environment=settings.environment,
        database=_label(database_ok),
        redis=_label(redis_ok),
        firebase=_label(firebase_ok),
    )


@router.get(
    "/ping",
    status_code=status.HTTP_200_OK,
    tags=["Health"],
    summary="Simple ping",
)
async def ping() -> dict[str, str]:
    """Simple ping endpoint."""
    return {"message": "pong"}
