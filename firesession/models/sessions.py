"""User session model definition using SQLAlchemy Core."""

from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Index,
    String,
    Table,
    Text,
)

from firesession.models.users import metadata

user_sessions = Table(
    "user_sessions",
    metadata,
    Column("id", String(36), primary_key=True),
    Column(
        "user_uid",
        Text,
        ForeignKey("users.uid", ondelete="CASCADE"),
        nullable=False,
    ),
    # Salted hash of the signed token; the raw token is never stored
    Column("token_hash", Text, nullable=False),
    Column("issued_at", DateTime(timezone=True), nullable=False),
    Column("expires_at", DateTime(timezone=True), nullable=False, index=True),
    # Informational only
    Column("user_agent", Text),
    Column("ip", String(64)),
    Index("ix_user_sessions_user_uid_expires_at", "user_uid", "expires_at"),
)
