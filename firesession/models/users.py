"""User model definition using SQLAlchemy Core."""

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    MetaData,
    String,
    Table,
    Text,
)

metadata = MetaData()

users = Table(
    "users",
    metadata,
    # Firebase identity (SOURCE OF TRUTH)
    Column("uid", Text, primary_key=True),
    # Mirrored from Firebase, always lowercased
    Column("email", Text, nullable=False, unique=True),
    Column("name", Text),
    Column("provider", String(16), nullable=False),
    Column("photo_url", Text),
    # Audit
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("last_seen", DateTime(timezone=True), nullable=False),
    CheckConstraint(
        "provider IN ('email', 'google', 'github')",
        name="users_provider_check",
    ),
)
