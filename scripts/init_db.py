"""Script to initialize the database."""

import asyncio

from firesession.config import settings
from firesession.database import Database


async def init_db() -> None:
    """Initialize the database by creating the users and user_sessions tables."""
    database = Database.from_settings(settings)
    try:
        await database.create_all()
        print("✓ Database initialized successfully!")
    finally:
        await database.dispose()


if __name__ == "__main__":
    asyncio.run(init_db())
