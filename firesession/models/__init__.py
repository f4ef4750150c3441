"""Database models."""

from firesession.models.sessions import user_sessions
from firesession.models.users import metadata, users

__all__ = [
    "metadata",
    "user_sessions",
    "users",
]
