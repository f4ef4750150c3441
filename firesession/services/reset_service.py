"""Password reset token lifecycle."""

import asyncio
import secrets
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Literal
from urllib.parse import urlencode

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from firesession.core.exceptions import InvalidResetToken
from firesession.core.redis_client import CacheManager, RateLimiter
from firesession.core.security import SessionTokenCodec
from firesession.schemas.users import User
from firesession.services.credential_store import CredentialStore
from firesession.services.email_service import EmailService, redact_email
from firesession.services.session_service import IdentityProvider

logger = structlog.get_logger(__name__)

PASSWORD_RESET_PURPOSE = "password_reset"

RESET_REQUEST_MESSAGE = "If an account exists for this email, a password reset link has been sent."
RESET_SEND_FAILED_MESSAGE = "Failed to send reset email. Please try again."
RESET_RATE_LIMITED_MESSAGE = "Too many reset requests. Please try again later."
RESET_SUCCESS_MESSAGE = "Password reset successfully"


class ResetClaims(BaseModel):
    """Closed set of claims carried by a password reset token."""

    model_config = ConfigDict(extra="forbid", frozen=True, populate_by_name=True)

    user_id: str = Field(..., min_length=1, alias="userId")
    email: str = Field(..., min_length=1)
    purpose: Literal["password_reset"]
    jti: str = Field(..., min_length=1)
    issued_at: int = Field(..., alias="iat")
    expires_at: int = Field(..., alias="exp")


@dataclass(frozen=True)
class OperationResult:
    """Success flag plus a short caller-safe message."""

    success: bool
    message: str


@dataclass(frozen=True)
class MaskedUser:
    """Just enough of the user to render the reset form."""

    email: str
    name: str | None


def mask_email(email: str) -> str:
    """Hide most of the local part of an email address."""
    local, _, domain = email.partition("@")
    if not domain:
        return "***"
    return f"{local[:2]}***@{domain}"


class ResetTokenManager:
    """
    Issues, verifies and consumes password reset tokens.

    Tokens are stateless JWTs. A consumed token is remembered in Redis until
    it would have expired, so a link works only once.
    """

    def __init__(
        self,
        codec: SessionTokenCodec,
        store: CredentialStore,
        identity_provider: IdentityProvider,
        mailer: EmailService,
        *,
        app_url: str,
        token_ttl: timedelta = timedelta(hours=1),
        used_tokens: CacheManager | None = None,
        rate_limiter: RateLimiter | None = None,
        requests_per_hour: int = 5,
        min_response_time: timedelta = timedelta(0),
    ):
        """Initialize manager with its collaborators."""
        self.codec = codec
        self.store = store
        self.identity_provider = identity_provider
        self.mailer = mailer
        self.app_url = app_url.rstrip("/")
        self.token_ttl = token_ttl
        self.used_tokens = used_tokens
        self.rate_limiter = rate_limiter
        self.requests_per_hour = requests_per_hour
        self.min_response_time = min_response_time

    @staticmethod
    def _used_key(jti: str) -> str:
        return f"reset:used:{jti}"

    def create_reset_token(self, user_id: str, email: str, now: datetime | None = None) -> str:
        """Sign a reset token for the user."""
        return self.codec.sign_purpose_token(
            {"userId": user_id, "email": email.lower(), "jti": secrets.token_urlsafe(16)},
            PASSWORD_RESET_PURPOSE,
            self.token_ttl,
            now=now,
        )

    def reset_url(self, token: str) -> str:
        """Link embedded in the reset email."""
        return f"{self.app_url}/auth/reset-password/confirm?{urlencode({'token': token})}"

    def verify_reset_token(self, token: str) -> ResetClaims | None:
        """
        Verify signature, expiry, purpose and one-time use.

        Returns:
            Claims, or None if any check fails
        """
        payload = self.codec.verify_purpose_token(token, PASSWORD_RESET_PURPOSE)
        if payload is None:
            return None

        try:
            claims = ResetClaims.model_validate(payload)
        except ValidationError:
            return None

        if self.used_tokens is not None and self.used_tokens.exists(self._used_key(claims.jti)):
            logger.info("reset_token_reused", user_id=claims.user_id)
            return None

        return claims

    async def create_reset_request(self, email: str) -> OperationResult:
        """
        Start a password reset.

        The outcome never depends on whether the account exists; mail is only
        sent when it does. Every answer is held back until min_response_time
        has passed, so a fast "unknown email" path does not stand out. A mail
        round trip slower than that floor still shows.

        Raises:
            StoreUnavailable: If the store cannot be reached
        """
        loop = asyncio.get_running_loop()
        started = loop.time()

        result = await self._handle_reset_request(email)

        remaining = self.min_response_time.total_seconds() - (loop.time() - started)
        if remaining > 0:
            await asyncio.sleep(remaining)
        return result

    async def _handle_reset_request(self, email: str) -> OperationResult:
        email = email.strip().lower()

        if self.rate_limiter is not None and not self.rate_limiter.check_rate_limit(
            f"rate:reset:{email}", self.requests_per_hour, window=3600
        ):
            logger.warning("reset_request_rate_limited", email=redact_email(email))
            return OperationResult(False, RESET_RATE_LIMITED_MESSAGE)

        user = await self.store.find_by_email(email)
        if user is None:
            logger.info("reset_request_unknown_email", email=redact_email(email))
            return OperationResult(True, RESET_REQUEST_MESSAGE)

        token = self.create_reset_token(user.uid, user.email)
        sent = await self.mailer.send_password_reset(
            user.email,
            self.reset_url(token),
            user.name or user.email,
            expires_minutes=int(self.token_ttl.total_seconds() // 60),
        )

        if not sent:
            logger.error("reset_email_failed", uid=user.uid)
            return OperationResult(False, RESET_SEND_FAILED_MESSAGE)

        logger.info("reset_email_sent", uid=user.uid)
        return OperationResult(True, RESET_REQUEST_MESSAGE)

    async def get_user_from_token(self, token: str) -> User | None:
        """User named by a valid reset token."""
        claims = self.verify_reset_token(token)
        if claims is None:
            return None
        return await self.store.find_by_email(claims.email)

    async def describe_reset_token(self, token: str) -> MaskedUser:
        """
        Masked details of the user a reset link belongs to.

        Raises:
            InvalidResetToken: If the token is invalid or its user is gone
        """
        user = await self.get_user_from_token(token)
        if user is None:
            raise InvalidResetToken()
        return MaskedUser(email=mask_email(user.email), name=user.name)

    async def reset_password_with_token(self, token: str, new_password: str) -> OperationResult:
        """
        Set a new password for the user named by the token.

        The confirmation email is best effort; the upstream change is already
        durable when it is sent.

        Raises:
            InvalidResetToken: If the token fails verification or its user is gone
            UpstreamUpdateFailed: If the identity provider refuses the update
            StoreUnavailable: If the store cannot be reached
        """
        claims = self.verify_reset_token(token)
        if claims is None:
            raise InvalidResetToken()

        user = await self.store.find_by_email(claims.email)
        if user is None or user.uid != claims.user_id:
            logger.warning("reset_token_user_mismatch", user_id=claims.user_id)
            raise InvalidResetToken()

        await self.identity_provider.update_password(user.uid, new_password)

        if self.used_tokens is not None:
            remaining = claims.expires_at - int(datetime.now(UTC).timestamp())
            self.used_tokens.set(self._used_key(claims.jti), "1", ttl=max(remaining, 1))

        confirmed = await self.mailer.send_password_reset_success(user.email, user.name or user.email)
        if not confirmed:
            logger.warning("reset_confirmation_email_failed", uid=user.uid)

        logger.info("password_reset_completed", uid=user.uid)
        return OperationResult(True, RESET_SUCCESS_MESSAGE)
