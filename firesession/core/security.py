"""Security utilities for session tokens and token hashing."""

import secrets
from datetime import UTC, datetime, timedelta
from typing import Any

from jose import JWTError, jwt
from jose.utils import base64url_decode, base64url_encode
from passlib.context import CryptContext
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from firesession.config import MIN_SIGNING_KEY_BYTES, Settings
from firesession.core.exceptions import WeakSigningKeyError
from firesession.schemas.users import AuthProvider

# Session token hashing. pbkdf2 keeps the whole token; bcrypt would truncate at 72 bytes
token_hash_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

DEFAULT_SESSION_TTL = timedelta(days=7)

_SESSION_DECODE_OPTIONS = {
    "require_iat": True,
    "require_exp": True,
    "require_iss": True,
    "require_aud": True,
}

_PURPOSE_DECODE_OPTIONS = {
    "require_iat": True,
    "require_exp": True,
    "require_iss": True,
}


def hash_session_token(raw_token: str) -> str:
    """Hash a raw session token with a per-record salt."""
    return token_hash_context.hash(raw_token)


def verify_session_token_hash(raw_token: str, token_hash: str) -> bool:
    """Check a raw session token against a stored hash."""
    try:
        return token_hash_context.verify(raw_token, token_hash)
    except ValueError:
        # Unrecognised or corrupted hash
        return False


def generate_session_id() -> str:
    """Random correlation id embedded in each session token."""
    return f"session_{secrets.token_urlsafe(18)}"


def _epoch_seconds(moment: datetime | None) -> int:
    moment = moment or datetime.now(UTC)
    return int(moment.timestamp())


def is_canonical_token(token: str) -> bool:
    """
    Check that every segment is the canonical base64url form of its bytes.

    jose decodes leniently, so a few distinct strings map to the same
    signature bytes; only the canonical spelling is accepted.
    """
    segments = token.split(".")
    if len(segments) != 3:
        return False

    for segment in segments:
        try:
            raw = segment.encode("ascii")
            if base64url_encode(base64url_decode(raw)) != raw:
                return False
        except ValueError:
            return False

    return True


class SessionClaims(BaseModel):
    """Closed set of claims carried by a session token."""

    model_config = ConfigDict(extra="forbid", frozen=True, populate_by_name=True)

    uid: str = Field(..., min_length=1)
    email: str = Field(..., min_length=1)
    name: str | None = None
    provider: AuthProvider | None = None
    photo_url: str | None = Field(default=None, alias="photoURL")
    session_id: str = Field(..., min_length=1, alias="sessionId")
    issued_at: int = Field(..., alias="iat")
    expires_at: int = Field(..., alias="exp")

    @property
    def expires(self) -> datetime:
        """Expiry as an aware datetime."""
        return datetime.fromtimestamp(self.expires_at, tz=UTC)

    @property
    def issued(self) -> datetime:
        """Issue time as an aware datetime."""
        return datetime.fromtimestamp(self.issued_at, tz=UTC)


class SessionTokenCodec:
    """
    Sign and verify session tokens with a process-wide secret.

    The secret is read once at construction and never mutated. Issuer and
    audience are fixed per codec and embedded in every token it signs.
    """

    def __init__(
        self,
        secret: str,
        *,
        algorithm: str = "HS256",
        issuer: str = "firesession",
        audience: str = "firesession-users",
    ):
        """Initialize codec, refusing secrets that are too short."""
        if len(secret.encode("utf-8")) < MIN_SIGNING_KEY_BYTES:
            raise WeakSigningKeyError(
                f"Signing secret must be at least {MIN_SIGNING_KEY_BYTES} bytes long"
            )
        self._secret = secret
        self.algorithm = algorithm
        self.issuer = issuer
        self.audience = audience

    @classmethod
    def from_settings(cls, settings: Settings) -> "SessionTokenCodec":
        """Build the codec from application settings."""
        return cls(
            settings.jwt_secret_key,
            algorithm=settings.jwt_algorithm,
            issuer=settings.jwt_issuer,
            audience=settings.jwt_audience,
        )

    def mint_claims(
        self,
        *,
        uid: str,
        email: str,
        name: str | None = None,
        provider: AuthProvider | None = None,
        photo_url: str | None = None,
        expires_delta: timedelta = DEFAULT_SESSION_TTL,
        now: datetime | None = None,
    ) -> SessionClaims:
        """
        Build claims for a brand new session.

        Args:
            uid: Identity provider subject id
            email: User email
            name: Display name
            provider: Provider used for this sign-in
            photo_url: Avatar URL
            expires_delta: Session lifetime
            now: Issue time, defaults to the current time

        Returns:
            Claims with a fresh session id
        """
        issued_at = _epoch_seconds(now)
        return SessionClaims(
            uid=uid,
            email=email,
            name=name,
            provider=provider,
            photo_url=photo_url,
            session_id=generate_session_id(),
            issued_at=issued_at,
            expires_at=issued_at + int(expires_delta.total_seconds()),
        )

    def sign(self, claims: SessionClaims) -> str:
        """Encode claims into a signed session token."""
        to_encode = claims.model_dump(by_alias=True, mode="json")
        to_encode.update({"iss": self.issuer, "aud": self.audience})
        return jwt.encode(to_encode, self._secret, algorithm=self.algorithm)

    def verify(self, token: str) -> SessionClaims | None:
        """
        Verify a session token.

        Signature, issuer, audience, expiry and claim shape are checked
        together; any failure yields None.

        Args:
            token: Signed session token

        Returns:
            Verified claims or None if invalid
        """
        if not is_canonical_token(token):
            return None

        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[self.algorithm],
                audience=self.audience,
                issuer=self.issuer,
                options=_SESSION_DECODE_OPTIONS,
            )
        except JWTError:
            return None

        return _parse_session_claims(payload)

    def decode(self, token: str) -> SessionClaims | None:
        """
        Read claims without verifying the signature.

        Only for non-authoritative paths such as finding the owner of an old
        token. Never authorise access with the result.
        """
        try:
            payload = jwt.get_unverified_claims(token)
        except JWTError:
            return None

        return _parse_session_claims(payload)

    def sign_purpose_token(
        self,
        payload: dict[str, Any],
        purpose: str,
        expires_delta: timedelta,
        now: datetime | None = None,
    ) -> str:
        """
        Sign a single-purpose token such as a password reset link.

        Args:
            payload: Purpose specific claims
            purpose: Discriminator checked on verification
            expires_delta: Token lifetime
            now: Issue time, defaults to the current time

        Returns:
            Signed token
        """
        issued_at = _epoch_seconds(now)
        to_encode = dict(payload)
        to_encode.update(
            {
                "purpose": purpose,
                "iat": issued_at,
                "exp": issued_at + int(expires_delta.total_seconds()),
                "iss": self.issuer,
            }
        )
        return jwt.encode(to_encode, self._secret, algorithm=self.algorithm)

    def verify_purpose_token(self, token: str, purpose: str) -> dict[str, Any] | None:
        """
        Verify a single-purpose token.

        Returns:
            Claims without the issuer, or None when the signature, expiry,
            issuer or purpose does not match
        """
        if not is_canonical_token(token):
            return None

        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[self.algorithm],
                issuer=self.issuer,
                options=_PURPOSE_DECODE_OPTIONS,
            )
        except JWTError:
            return None

        if payload.get("purpose") != purpose:
            return None

        payload.pop("iss", None)
        return payload


def _parse_session_claims(payload: dict[str, Any]) -> SessionClaims | None:
    payload = dict(payload)
    payload.pop("iss", None)
    payload.pop("aud", None)
    try:
        return SessionClaims.model_validate(payload)
    except ValidationError:
        return None
