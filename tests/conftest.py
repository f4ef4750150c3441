import os
from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta

import pytest
import pytest_asyncio
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

TEST_SECRET = "test-signing-secret-that-is-long-enough-0123456789"

# Settings are read at import time; tests never touch a real database
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_SECRET_KEY", TEST_SECRET)
os.environ.setdefault("LOG_FORMAT", "console")
os.environ.setdefault("RESET_MIN_RESPONSE_MS", "0")

from httpx import ASGITransport, AsyncClient
from sqlalchemy.pool import StaticPool

from firesession.config import settings
from firesession.core.firebase import AssertionRejected
from firesession.core.redis_client import CacheManager, RateLimiter
from firesession.core.security import SessionTokenCodec
from firesession.database import Database
from firesession.dependencies import ServiceContainer, build_services
from firesession.main import app
from firesession.schemas.users import AuthProvider, VerifiedIdentity
from firesession.services.credential_store import CredentialStore
from firesession.services.reset_service import ResetTokenManager
from firesession.services.session_service import SessionManager


class FakeRedis:
    """In-memory stand-in for the handful of Redis commands we use."""

    def __init__(self):
        self.data: dict[str, str] = {}
        self.ttls: dict[str, int] = {}

    def get(self, key):
        return self.data.get(key)

    def set(self, key, value):
        self.data[key] = str(value)
        return True

    def setex(self, key, ttl, value):
        self.data[key] = str(value)
        self.ttls[key] = ttl
        return True

    def incr(self, key):
        self.data[key] = str(int(self.data.get(key, "0")) + 1)
        return int(self.data[key])

    def delete(self, *keys):
        removed = 0
        for key in keys:
            removed += self.data.pop(key, None) is not None
            self.ttls.pop(key, None)
        return removed

    def exists(self, key):
        return int(key in self.data)

    def ping(self):
        return True

    def close(self):
        pass


class FakeIdentityProvider:
    """Identity provider that accepts only assertions registered up front."""

    def __init__(self):
        self.identities: dict[str, VerifiedIdentity] = {}
        self.rejection = "invalid"
        self.update_error: Exception | None = None
        self.password_updates: list[tuple[str, str]] = []
        self.ready = True

    def register(self, assertion: str, identity: VerifiedIdentity) -> None:
        self.identities[assertion] = identity

    async def verify(self, assertion):
        identity = self.identities.get(assertion)
        if identity is None:
            return AssertionRejected(self.rejection)
        return identity

    async def update_password(self, subject_id, new_password):
        if self.update_error is not None:
            raise self.update_error
        self.password_updates.append((subject_id, new_password))

    def is_ready(self):
        return self.ready


class FakeMailer:
    """Records outgoing mail instead of talking to SMTP."""

    def __init__(self):
        self.deliver = True
        self.reset_links: list[tuple[str, str]] = []
        self.confirmations: list[str] = []

    async def send_password_reset(self, to_email, reset_url, display_name, expires_minutes=60):
        if self.deliver:
            self.reset_links.append((to_email, reset_url))
        return self.deliver

    async def send_password_reset_success(self, to_email, display_name):
        if self.deliver:
            self.confirmations.append(to_email)
        return self.deliver


class MutableClock:
    """Clock for the credential store that tests can move forward."""

    def __init__(self):
        self.now = datetime.now(UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now += delta


@pytest.fixture
def alice() -> VerifiedIdentity:
    """Identity verified from a Google sign-in."""
    return VerifiedIdentity(
        subject_id="firebase-uid-alice",
        email="alice@example.com",
        name="Alice Liddell",
        picture_url="https://example.com/alice.png",
        provider=AuthProvider.GOOGLE,
    )


@pytest.fixture
def bob() -> VerifiedIdentity:
    """Identity verified from an email and password sign-in."""
    return VerifiedIdentity(
        subject_id="firebase-uid-bob",
        email="bob@example.com",
        name="Bob",
        provider=AuthProvider.EMAIL,
    )


@pytest_asyncio.fixture
async def database() -> AsyncGenerator[Database, None]:
    """Fresh in-memory database with all tables created."""
    db = Database(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await db.create_all()
    yield db
    await db.dispose()


@pytest.fixture
def clock() -> MutableClock:
    return MutableClock()


@pytest.fixture
def store(database: Database, clock: MutableClock) -> CredentialStore:
    return CredentialStore(database, timeout_seconds=5.0, clock=clock)


@pytest.fixture
def signing_secret() -> str:
    return TEST_SECRET


@pytest.fixture
def codec(signing_secret: str) -> SessionTokenCodec:
    return SessionTokenCodec(signing_secret)


@pytest.fixture
def identity_provider() -> FakeIdentityProvider:
    return FakeIdentityProvider()


@pytest.fixture
def mailer() -> FakeMailer:
    return FakeMailer()


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def session_manager(
    identity_provider: FakeIdentityProvider,
    codec: SessionTokenCodec,
    store: CredentialStore,
) -> SessionManager:
    return SessionManager(identity_provider, codec, store)


@pytest.fixture
def reset_manager(
    codec: SessionTokenCodec,
    store: CredentialStore,
    identity_provider: FakeIdentityProvider,
    mailer: FakeMailer,
    fake_redis: FakeRedis,
) -> ResetTokenManager:
    return ResetTokenManager(
        codec,
        store,
        identity_provider,
        mailer,  # type: ignore[arg-type]
        app_url="http://localhost:3000/",
        used_tokens=CacheManager(fake_redis),  # type: ignore[arg-type]
        rate_limiter=RateLimiter(fake_redis),  # type: ignore[arg-type]
        requests_per_hour=3,
    )


@pytest.fixture
def services(
    database: Database,
    fake_redis: FakeRedis,
    identity_provider: FakeIdentityProvider,
    mailer: FakeMailer,
) -> ServiceContainer:
    """Service container wired the way the application lifespan does it."""
    return build_services(
        settings,
        database,
        fake_redis,  # type: ignore[arg-type]
        identity_provider,
        mailer,  # type: ignore[arg-type]
    )


@pytest_asyncio.fixture
async def client(services: ServiceContainer) -> AsyncGenerator[AsyncClient, None]:
    """Create a test HTTP client."""
    # ASGITransport does not run the lifespan, so attach the services directly
    app.state.services = services

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    del app.state.services


@pytest.fixture
def api_prefix() -> str:
    return settings.api_v1_prefix


@pytest.fixture
def admin_headers() -> dict:
    return {"X-Admin-Secret": settings.admin_secret}
