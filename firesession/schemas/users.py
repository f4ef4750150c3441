"""User and session record schemas."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class AuthProvider(str, Enum):
    """Provider the user last authenticated with."""

    EMAIL = "email"
    GOOGLE = "google"
    GITHUB = "github"


class VerifiedIdentity(BaseModel):
    """Identity extracted from a verified upstream assertion."""

    model_config = ConfigDict(frozen=True)

    subject_id: str = Field(..., min_length=1)
    email: str = Field(..., min_length=3)
    name: str | None = None
    picture_url: str | None = None
    provider: AuthProvider = AuthProvider.EMAIL


class SessionRecord(BaseModel):
    """Stored session entry; holds the token hash, never the token."""

    id: str
    token_hash: str
    issued_at: datetime
    expires_at: datetime
    user_agent: str | None = None
    ip: str | None = None


class User(BaseModel):
    """User record as persisted by the credential store."""

    uid: str
    email: str
    name: str | None = None
    provider: AuthProvider
    photo_url: str | None = None
    created_at: datetime
    last_seen: datetime
    sessions: list[SessionRecord] = Field(default_factory=list)


class UserStats(BaseModel):
    """Aggregate counters over the user table."""

    total_users: int
    active_users: int
    users_by_provider: dict[str, int]


class UserView(BaseModel):
    """Public user projection returned to callers."""

    model_config = ConfigDict(populate_by_name=True)

    uid: str
    email: str
    name: str | None = None
    provider: AuthProvider
    photo_url: str | None = Field(default=None, alias="photoURL")
    last_seen: datetime | None = Field(default=None, alias="lastSeen")

    @classmethod
    def from_user(cls, user: User) -> "UserView":
        """Build the public view of a stored user."""
        return cls(
            uid=user.uid,
            email=user.email,
            name=user.name,
            provider=user.provider,
            photo_url=user.photo_url,
            last_seen=user.last_seen,
        )


class SessionRecordView(BaseModel):
    """Audit view of an active session."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    issued_at: datetime = Field(alias="issuedAt")
    expires_at: datetime = Field(alias="expiresAt")
    user_agent: str | None = Field(default=None, alias="userAgent")
    ip: str | None = None

    @classmethod
    def from_record(cls, record: SessionRecord) -> "SessionRecordView":
        """Drop the hash from a stored record."""
        return cls(
            id=record.id,
            issued_at=record.issued_at,
            expires_at=record.expires_at,
            user_agent=record.user_agent,
            ip=record.ip,
        )
