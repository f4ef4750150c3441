"""Script to delete expired session records, e.g. from a nightly cron job."""

import asyncio
import sys

from firesession.config import settings
from firesession.core.exceptions import StoreUnavailable
from firesession.database import Database
from firesession.middleware.logging import configure_logging
from firesession.services.credential_store import CredentialStore


async def purge() -> int:
    """Remove expired sessions of every user and return how many were deleted."""
    database = Database.from_settings(settings)
    store = CredentialStore(database, timeout_seconds=max(settings.store_timeout_seconds, 60.0))
    try:
        return await store.purge_expired_sessions()
    finally:
        await database.dispose()


if __name__ == "__main__":
    configure_logging(settings)
    try:
        removed = asyncio.run(purge())
    except StoreUnavailable as e:
        print(f"✗ Purge failed: {e.message}", file=sys.stderr)
        sys.exit(1)
    print(f"✓ Removed {removed} expired sessions")
