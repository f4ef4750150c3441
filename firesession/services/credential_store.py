"""Credential store for users and their session records."""

import asyncio
import uuid
from collections.abc import AsyncGenerator, Callable
from contextlib import asynccontextmanager
from datetime import UTC, datetime, timedelta
from typing import Any

import structlog
from sqlalchemy import delete, func, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from firesession.core.exceptions import DuplicateIdentity, NotFoundException, StoreUnavailable
from firesession.core.security import hash_session_token, verify_session_token_hash
from firesession.database import Database
from firesession.models.sessions import user_sessions
from firesession.models.users import users
from firesession.schemas.users import AuthProvider, SessionRecord, User, UserStats, VerifiedIdentity

logger = structlog.get_logger(__name__)

# Users seen within this window count as active in stats
ACTIVE_USER_WINDOW = timedelta(days=30)


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything we write is UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _record_from_row(row: Any) -> SessionRecord:
    return SessionRecord(
        id=row["id"],
        token_hash=row["token_hash"],
        issued_at=_as_utc(row["issued_at"]),
        expires_at=_as_utc(row["expires_at"]),
        user_agent=row["user_agent"],
        ip=row["ip"],
    )


def _user_from_row(row: Any, sessions: list[SessionRecord]) -> User:
    return User(
        uid=row["uid"],
        email=row["email"],
        name=row["name"],
        provider=AuthProvider(row["provider"]),
        photo_url=row["photo_url"],
        created_at=_as_utc(row["created_at"]),
        last_seen=_as_utc(row["last_seen"]),
        sessions=sessions,
    )


class CredentialStore:
    """
    Durable storage of users and their session records.

    Every operation runs in its own transaction, bounded by a timeout.
    Database and driver failures surface as StoreUnavailable; uniqueness
    violations surface as DuplicateIdentity after rollback.
    """

    def __init__(
        self,
        database: Database,
        *,
        timeout_seconds: float = 5.0,
        clock: Callable[[], datetime] = utcnow,
    ):
        """Initialize store with its database and call bound."""
        self._db = database
        self.timeout_seconds = timeout_seconds
        self._clock = clock

    @asynccontextmanager
    async def _transaction(self, operation: str) -> AsyncGenerator[AsyncSession, None]:
        try:
            async with asyncio.timeout(self.timeout_seconds):
                async with self._db.session() as session:
                    async with session.begin():
                        yield session
        except IntegrityError as e:
            logger.warning("store_integrity_violation", operation=operation, error=str(e.orig))
            raise DuplicateIdentity() from e
        except TimeoutError as e:
            logger.error("store_timeout", operation=operation, timeout=self.timeout_seconds)
            raise StoreUnavailable() from e
        except (SQLAlchemyError, OSError) as e:
            logger.error("store_unavailable", operation=operation, error=str(e))
            raise StoreUnavailable() from e

    def _insert(self) -> Any:
        if self._db.dialect_name == "postgresql":
            return postgresql.insert(users)
        return sqlite.insert(users)

    async def _load_user(self, session: AsyncSession, *conditions: Any) -> User | None:
        result = await session.execute(select(users).where(*conditions))
        row = result.mappings().first()
        if not row:
            return None

        now = self._clock()
        session_rows = await session.execute(
            select(user_sessions)
            .where(user_sessions.c.user_uid == row["uid"], user_sessions.c.expires_at > now)
            .order_by(user_sessions.c.issued_at)
        )
        records = [_record_from_row(r) for r in session_rows.mappings()]
        return _user_from_row(row, records)

    async def upsert_user(self, identity: VerifiedIdentity) -> User:
        """
        Create the user on first sight of the uid, otherwise refresh its profile.

        Sessions and created_at are left untouched on update.
        """
        now = self._clock()
        stmt = self._insert().values(
            uid=identity.subject_id,
            email=identity.email.lower(),
            name=identity.name,
            provider=identity.provider.value,
            photo_url=identity.picture_url,
            created_at=now,
            last_seen=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[users.c.uid],
            set_={
                "email": stmt.excluded.email,
                "name": stmt.excluded.name,
                "provider": stmt.excluded.provider,
                "photo_url": stmt.excluded.photo_url,
                "last_seen": stmt.excluded.last_seen,
            },
        )

        async with self._transaction("upsert_user") as session:
            await session.execute(stmt)
            user = await self._load_user(session, users.c.uid == identity.subject_id)

        if user is None:
            raise StoreUnavailable("Failed to upsert user")

        logger.info("user_upserted", uid=user.uid, provider=user.provider.value)
        return user

    async def add_session(
        self,
        uid: str,
        raw_token: str,
        expires_at: datetime,
        user_agent: str | None = None,
        ip: str | None = None,
    ) -> None:
        """
        Persist a hashed session record for the user.

        Expired records of the same user are pruned in the same transaction
        and last_seen is bumped.

        Raises:
            NotFoundException: If the user does not exist
        """
        now = self._clock()
        token_hash = hash_session_token(raw_token)

        async with self._transaction("add_session") as session:
            exists = await session.execute(select(users.c.uid).where(users.c.uid == uid))
            if exists.first() is None:
                raise NotFoundException("User not found")

            pruned = await session.execute(
                delete(user_sessions).where(
                    user_sessions.c.user_uid == uid, user_sessions.c.expires_at <= now
                )
            )
            await session.execute(
                user_sessions.insert().values(
                    id=str(uuid.uuid4()),
                    user_uid=uid,
                    token_hash=token_hash,
                    issued_at=now,
                    expires_at=expires_at,
                    user_agent=user_agent,
                    ip=ip,
                )
            )
            await session.execute(update(users).where(users.c.uid == uid).values(last_seen=now))

        logger.info("session_record_added", uid=uid, pruned=pruned.rowcount)

    async def _matching_session_ids(
        self, session: AsyncSession, uid: str, raw_token: str, *, live_only: bool
    ) -> list[str]:
        conditions = [user_sessions.c.user_uid == uid]
        if live_only:
            conditions.append(user_sessions.c.expires_at > self._clock())

        result = await session.execute(
            select(user_sessions.c.id, user_sessions.c.token_hash).where(*conditions)
        )
        return [
            row["id"]
            for row in result.mappings()
            if verify_session_token_hash(raw_token, row["token_hash"])
        ]

    async def remove_session(self, uid: str, raw_token: str) -> None:
        """Remove the record matching the token. No-op when absent."""
        async with self._transaction("remove_session") as session:
            matching = await self._matching_session_ids(session, uid, raw_token, live_only=False)
            if matching:
                await session.execute(delete(user_sessions).where(user_sessions.c.id.in_(matching)))

        logger.info("session_record_removed", uid=uid, removed=len(matching))

    async def validate_session(self, uid: str, raw_token: str) -> bool:
        """True iff an unexpired record of this user matches the token."""
        async with self._transaction("validate_session") as session:
            matching = await self._matching_session_ids(session, uid, raw_token, live_only=True)
        return bool(matching)

    async def find_by_uid(self, uid: str) -> User | None:
        """Get a user by provider subject id."""
        async with self._transaction("find_by_uid") as session:
            return await self._load_user(session, users.c.uid == uid)

    async def find_by_email(self, email: str) -> User | None:
        """Get a user by email, case-insensitively."""
        async with self._transaction("find_by_email") as session:
            return await self._load_user(session, users.c.email == email.strip().lower())

    async def touch_user(self, uid: str) -> None:
        """Update the user's last_seen timestamp."""
        async with self._transaction("touch_user") as session:
            await session.execute(
                update(users).where(users.c.uid == uid).values(last_seen=self._clock())
            )

    async def list_sessions(self, uid: str) -> list[SessionRecord]:
        """Active session records of a user, oldest first."""
        async with self._transaction("list_sessions") as session:
            result = await session.execute(
                select(user_sessions)
                .where(
                    user_sessions.c.user_uid == uid,
                    user_sessions.c.expires_at > self._clock(),
                )
                .order_by(user_sessions.c.issued_at)
            )
            return [_record_from_row(row) for row in result.mappings()]

    async def clean_expired_sessions(self, uid: str) -> int:
        """Drop expired records of one user."""
        async with self._transaction("clean_expired_sessions") as session:
            result = await session.execute(
                delete(user_sessions).where(
                    user_sessions.c.user_uid == uid,
                    user_sessions.c.expires_at <= self._clock(),
                )
            )
        return result.rowcount  # type: ignore[attr-defined]

    async def purge_expired_sessions(self) -> int:
        """Drop expired records across all users."""
        async with self._transaction("purge_expired_sessions") as session:
            result = await session.execute(
                delete(user_sessions).where(user_sessions.c.expires_at <= self._clock())
            )
        removed = result.rowcount  # type: ignore[attr-defined]
        logger.info("expired_sessions_purged", removed=removed)
        return removed

    async def get_user_stats(self) -> UserStats:
        """Count users, recently active users and users per provider."""
        active_since = self._clock() - ACTIVE_USER_WINDOW

        async with self._transaction("get_user_stats") as session:
            total = await session.scalar(select(func.count()).select_from(users))
            active = await session.scalar(
                select(func.count()).select_from(users).where(users.c.last_seen >= active_since)
            )
            by_provider = await session.execute(
                select(users.c.provider, func.count()).group_by(users.c.provider)
            )
            users_by_provider = {provider: count for provider, count in by_provider.all()}

        return UserStats(
            total_users=total or 0,
            active_users=active or 0,
            users_by_provider=users_by_provider,
        )
