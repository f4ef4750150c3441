"""Admin-only maintenance endpoints."""

from fastapi import APIRouter, Depends

from firesession.dependencies import Services, require_admin_secret
from firesession.schemas.admin import PurgeResponse, UserStatsResponse

router = APIRouter(prefix="/admin", tags=["Admin"], dependencies=[Depends(require_admin_secret)])


@router.get(
    "/stats",
    response_model=UserStatsResponse,
    summary="User statistics",
)
async def get_user_stats(services: Services) -> UserStatsResponse:
    """Total users, users seen in the last 30 days and users per provider."""
    stats = await services.store.get_user_stats()
    return UserStatsResponse(stats=stats)


@router.post(
    "/sessions/purge",
    response_model=PurgeResponse,
    summary="Purge expired sessions",
)
async def purge_expired_sessions(services: Services) -> PurgeResponse:
    """Delete expired session records of every user."""
    removed = await services.store.purge_expired_sessions()
    return PurgeResponse(removed=removed)
