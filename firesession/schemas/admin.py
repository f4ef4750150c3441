"""Admin schemas."""

from pydantic import BaseModel

from firesession.schemas.users import UserStats


class UserStatsResponse(BaseModel):
    """User statistics response."""

    success: bool = True
    stats: UserStats


class PurgeResponse(BaseModel):
    """Expired session sweep result."""

    success: bool = True
    removed: int
