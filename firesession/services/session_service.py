"""Session lifecycle: creation, refresh, validation and revocation."""

from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Protocol

import structlog

from firesession.core.exceptions import AuthFailed, StoreUnavailable, Unauthenticated
from firesession.core.firebase import AssertionRejected
from firesession.core.security import SessionClaims, SessionTokenCodec
from firesession.schemas.users import SessionRecord, User, VerifiedIdentity
from firesession.services.credential_store import CredentialStore

logger = structlog.get_logger(__name__)


class IdentityProvider(Protocol):
    """Upstream identity provider as seen by the lifecycle managers."""

    async def verify(self, assertion: str) -> VerifiedIdentity | AssertionRejected: ...

    async def update_password(self, subject_id: str, new_password: str) -> None: ...

    def is_ready(self) -> bool: ...


class AuthSource(str, Enum):
    """Which verification path established an identity."""

    FIREBASE = "firebase"
    DATABASE = "database"


@dataclass(frozen=True)
class RequestContext:
    """Credentials and audit details carried by an incoming request."""

    session_token: str | None = None
    bearer_assertion: str | None = None
    user_agent: str | None = None
    ip: str | None = None


@dataclass(frozen=True)
class SessionResult:
    """Outcome of a create or refresh call."""

    user: User
    token: str
    # Set when the identity provider could not vouch and an existing session was reused
    fallback: bool = False


@dataclass(frozen=True)
class AuthenticatedIdentity:
    """Identity established for the current request."""

    user: User
    source: AuthSource
    claims: SessionClaims | None = None


@dataclass(frozen=True)
class ProviderAssertionCredential:
    """Fresh upstream assertion presented directly; bypasses the session store."""

    assertion: str


@dataclass(frozen=True)
class SessionTokenCredential:
    """Previously issued session token; must be live in the store."""

    token: str


Credential = ProviderAssertionCredential | SessionTokenCredential


def select_credentials(context: RequestContext) -> list[Credential]:
    """
    Pick the credentials to try for this request, in precedence order.

    An explicit provider assertion is tried before the session token.
    """
    credentials: list[Credential] = []
    if context.bearer_assertion:
        credentials.append(ProviderAssertionCredential(context.bearer_assertion))
    if context.session_token:
        credentials.append(SessionTokenCredential(context.session_token))
    return credentials


class SessionManager:
    """
    Orchestrates the session lifecycle.

    Unauthenticated -> Pending-Verification -> Active -> Refreshed | Revoked | Expired.
    The store is the source of truth for liveness; a valid signature alone
    never keeps a session alive.
    """

    def __init__(
        self,
        identity_provider: IdentityProvider,
        codec: SessionTokenCodec,
        store: CredentialStore,
        *,
        session_ttl: timedelta = timedelta(days=7),
    ):
        """Initialize manager with its collaborators."""
        self.identity_provider = identity_provider
        self.codec = codec
        self.store = store
        self.session_ttl = session_ttl

    async def _issue_session(self, identity: VerifiedIdentity, context: RequestContext) -> SessionResult:
        user = await self.store.upsert_user(identity)

        claims = self.codec.mint_claims(
            uid=user.uid,
            email=user.email,
            name=user.name,
            provider=user.provider,
            photo_url=user.photo_url,
            expires_delta=self.session_ttl,
        )
        token = self.codec.sign(claims)

        # No token leaves this method unless its record is persisted
        await self.store.add_session(
            user.uid, token, claims.expires, user_agent=context.user_agent, ip=context.ip
        )

        logger.info("session_created", uid=user.uid, session_id=claims.session_id)
        return SessionResult(user=user, token=token)

    async def _live_session_user(self, token: str) -> tuple[User, SessionClaims] | None:
        claims = self.codec.verify(token)
        if claims is None:
            return None

        if not await self.store.validate_session(claims.uid, token):
            logger.info("session_not_live", uid=claims.uid, session_id=claims.session_id)
            return None

        user = await self.store.find_by_uid(claims.uid)
        if user is None:
            return None

        return user, claims

    async def create_session(self, assertion: str, context: RequestContext) -> SessionResult:
        """
        Exchange an upstream assertion for a new session.

        When the assertion cannot be verified, an existing live session
        carried by the request is accepted instead and the result is flagged
        as a fallback.

        Args:
            assertion: Identity provider assertion
            context: Request credentials and audit details

        Returns:
            The user and the session token

        Raises:
            AuthFailed: If neither the assertion nor an existing session is valid
            StoreUnavailable: If the store cannot be reached
        """
        result = await self.identity_provider.verify(assertion)

        if isinstance(result, AssertionRejected):
            logger.warning("assertion_rejected", reason=result.reason, operation="create_session")

            if context.session_token:
                live = await self._live_session_user(context.session_token)
                if live is not None:
                    user, claims = live
                    logger.info("session_fallback_used", uid=user.uid, session_id=claims.session_id)
                    return SessionResult(user=user, token=context.session_token, fallback=True)

            raise AuthFailed() from result.to_exception()

        return await self._issue_session(result, context)

    async def refresh_session(self, new_assertion: str, context: RequestContext) -> SessionResult:
        """
        Rotate the session, anchored in a fresh upstream assertion.

        The old record is removed on a best-effort basis; if that fails it
        simply expires on schedule.

        Raises:
            AuthFailed: If the new assertion is not valid
            StoreUnavailable: If the new session cannot be persisted
        """
        result = await self.identity_provider.verify(new_assertion)

        if isinstance(result, AssertionRejected):
            logger.warning("assertion_rejected", reason=result.reason, operation="refresh_session")
            raise AuthFailed("Invalid ID token") from result.to_exception()

        if context.session_token:
            old_claims = self.codec.decode(context.session_token)
            if old_claims is not None and old_claims.uid == result.subject_id:
                try:
                    await self.store.remove_session(old_claims.uid, context.session_token)
                except StoreUnavailable as e:
                    logger.error(
                        "Failed to remove old session",
                        uid=old_claims.uid,
                        session_id=old_claims.session_id,
                        error=e.message,
                    )

        return await self._issue_session(result, context)

    async def _authenticate(self, credential: Credential) -> AuthenticatedIdentity | None:
        match credential:
            case ProviderAssertionCredential(assertion=assertion):
                result = await self.identity_provider.verify(assertion)
                if isinstance(result, AssertionRejected):
                    logger.info("bearer_assertion_rejected", reason=result.reason)
                    return None

                user = await self.store.find_by_uid(result.subject_id)
                if user is None:
                    return None
                return AuthenticatedIdentity(user=user, source=AuthSource.FIREBASE)

            case SessionTokenCredential(token=token):
                live = await self._live_session_user(token)
                if live is None:
                    return None

                user, claims = live
                await self.store.touch_user(user.uid)
                return AuthenticatedIdentity(user=user, source=AuthSource.DATABASE, claims=claims)

        return None

    async def validate_session(self, context: RequestContext) -> AuthenticatedIdentity:
        """
        Establish the identity behind a request.

        Credentials are tried in the order chosen by select_credentials;
        the first that succeeds wins.

        Raises:
            Unauthenticated: If no credential is present or none is valid
            StoreUnavailable: If the store cannot be reached
        """
        for credential in select_credentials(context):
            identity = await self._authenticate(credential)
            if identity is not None:
                return identity

        raise Unauthenticated()

    async def revoke_session(self, raw_token: str, uid: str | None = None) -> None:
        """
        Revoke a session token.

        Idempotent: tokens that are unknown, already revoked or not owned by
        uid are ignored.

        Raises:
            StoreUnavailable: If the store cannot be reached
        """
        claims = self.codec.decode(raw_token)
        if claims is None:
            logger.info("revoke_skipped_undecodable_token")
            return

        if uid is not None and claims.uid != uid:
            logger.warning("revoke_owner_mismatch", uid=uid, token_uid=claims.uid)
            return

        await self.store.remove_session(claims.uid, raw_token)
        logger.info("session_revoked", uid=claims.uid, session_id=claims.session_id)

    async def list_sessions(self, identity: AuthenticatedIdentity) -> list[SessionRecord]:
        """Active session records of the authenticated user."""
        return await self.store.list_sessions(identity.user.uid)
