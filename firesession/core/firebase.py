"""Firebase Admin SDK initialization and identity assertion verification."""

import asyncio
import json
import os
from dataclasses import dataclass
from typing import Any

import firebase_admin
from firebase_admin import auth, credentials
from firebase_admin.exceptions import FirebaseError
from structlog import get_logger

from firesession.core.exceptions import InvalidAssertion, UpstreamUpdateFailed
from firesession.schemas.users import AuthProvider, VerifiedIdentity

logger = get_logger(__name__)

# Firebase sign_in_provider values for the OAuth providers we recognise
_SIGN_IN_PROVIDERS = {
    "google.com": AuthProvider.GOOGLE,
    "github.com": AuthProvider.GITHUB,
}


def initialize_firebase(
    firebase_credentials_path: str | None = None, firebase_config_json: str | None = None
) -> firebase_admin.App:
    """
    Initialize Firebase Admin SDK.

    Args:
        firebase_credentials_path: Optional path to service account JSON file.
        firebase_config_json: Optional raw JSON string of service account.

    Looks for Firebase credentials in order:
    1. firebase_config_json parameter
    2. firebase_credentials_path parameter
    3. Default application credentials

    Returns:
        The initialized default app
    """
    try:
        return firebase_admin.get_app()
    except ValueError:
        pass

    try:
        cred = None

        if firebase_config_json:
            logger.info("Initializing Firebase with JSON string from environment")
            cred = credentials.Certificate(json.loads(firebase_config_json))
        elif firebase_credentials_path and os.path.exists(firebase_credentials_path):
            logger.info("Initializing Firebase with JSON file", path=firebase_credentials_path)
            cred = credentials.Certificate(firebase_credentials_path)

        if cred:
            return firebase_admin.initialize_app(cred)

        app = firebase_admin.initialize_app()
        logger.info("Firebase initialized with default credentials")
        return app

    except Exception as e:
        logger.error("Failed to initialize Firebase", error=str(e))
        raise


def provider_from_sign_in(sign_in_provider: str | None) -> AuthProvider:
    """Map a Firebase sign_in_provider value onto our provider enum."""
    if sign_in_provider is None:
        return AuthProvider.EMAIL
    return _SIGN_IN_PROVIDERS.get(sign_in_provider, AuthProvider.EMAIL)


@dataclass(frozen=True)
class AssertionRejected:
    """Expected verification failure; callers decide what it means."""

    reason: str

    def to_exception(self) -> InvalidAssertion:
        """Exception form of the rejection, for callers that raise."""
        return InvalidAssertion(f"Invalid identity assertion: {self.reason}")


def identity_from_decoded_token(decoded_token: dict[str, Any]) -> VerifiedIdentity | AssertionRejected:
    """Extract a verified identity from decoded Firebase claims."""
    subject_id = decoded_token.get("uid") or decoded_token.get("sub")
    email = decoded_token.get("email")

    if not subject_id:
        return AssertionRejected("missing_subject")
    if not email:
        return AssertionRejected("missing_email")

    firebase_claims = decoded_token.get("firebase")
    sign_in_provider = (
        firebase_claims.get("sign_in_provider") if isinstance(firebase_claims, dict) else None
    )

    return VerifiedIdentity(
        subject_id=subject_id,
        email=email.lower(),
        name=decoded_token.get("name") or email.split("@")[0],
        picture_url=decoded_token.get("picture"),
        provider=provider_from_sign_in(sign_in_provider),
    )


class FirebaseIdentityProvider:
    """Identity provider backed by Firebase Authentication."""

    def __init__(
        self,
        app: firebase_admin.App | None = None,
        *,
        timeout_seconds: float = 10.0,
        check_revoked: bool = False,
        clock_skew_seconds: int = 10,
    ):
        """Initialize with an optional Firebase app and an upstream call bound."""
        self._app = app
        self.timeout_seconds = timeout_seconds
        self.check_revoked = check_revoked
        self.clock_skew_seconds = clock_skew_seconds

    def is_ready(self) -> bool:
        """Whether a Firebase app is available to verify tokens."""
        if self._app is not None:
            return True
        try:
            firebase_admin.get_app()
        except ValueError:
            return False
        return True

    async def verify(self, assertion: str) -> VerifiedIdentity | AssertionRejected:
        """
        Verify a Firebase ID token.

        A single attempt, bounded by the upstream timeout. Invalid input is an
        expected outcome and is returned, not raised.

        Args:
            assertion: Firebase ID token from the client

        Returns:
            Verified identity, or the reason the assertion was rejected
        """
        if not assertion:
            return AssertionRejected("missing_assertion")

        try:
            async with asyncio.timeout(self.timeout_seconds):
                decoded_token = await asyncio.to_thread(
                    auth.verify_id_token,
                    assertion,
                    app=self._app,
                    check_revoked=self.check_revoked,
                    clock_skew_seconds=self.clock_skew_seconds,
                )
        except auth.ExpiredIdTokenError:
            logger.info("firebase_token_expired")
            return AssertionRejected("expired")
        except auth.RevokedIdTokenError:
            logger.info("firebase_token_revoked")
            return AssertionRejected("revoked")
        except auth.InvalidIdTokenError as e:
            logger.warning("Invalid Firebase ID token", error=str(e))
            return AssertionRejected("invalid")
        except auth.CertificateFetchError as e:
            logger.error("firebase_unreachable", error=str(e))
            return AssertionRejected("provider_unreachable")
        except TimeoutError:
            logger.error("firebase_verify_timeout", timeout=self.timeout_seconds)
            return AssertionRejected("provider_timeout")
        except FirebaseError as e:
            logger.error("Firebase token verification failed", error=str(e))
            return AssertionRejected("provider_error")
        except ValueError as e:
            logger.warning("Malformed Firebase ID token", error=str(e))
            return AssertionRejected("malformed")

        result = identity_from_decoded_token(decoded_token)
        if isinstance(result, VerifiedIdentity):
            logger.info("Firebase token verified", uid=result.subject_id, provider=result.provider.value)
        return result

    async def update_password(self, subject_id: str, new_password: str) -> None:
        """
        Set a new password on the upstream account.

        Raises:
            UpstreamUpdateFailed: If Firebase rejects or fails the update
        """
        try:
            async with asyncio.timeout(self.timeout_seconds):
                await asyncio.to_thread(
                    auth.update_user, subject_id, password=new_password, app=self._app
                )
        except ValueError as e:
            # Password policy violations come back as ValueError with a user-safe message
            logger.info("firebase_password_rejected", uid=subject_id, error=str(e))
            raise UpstreamUpdateFailed(str(e)) from e
        except auth.UserNotFoundError as e:
            logger.warning("firebase_user_not_found", uid=subject_id)
            raise UpstreamUpdateFailed("Account not found") from e
        except TimeoutError as e:
            logger.error("firebase_update_timeout", uid=subject_id, timeout=self.timeout_seconds)
            raise UpstreamUpdateFailed(status_code=502) from e
        except FirebaseError as e:
            logger.error("Failed to update user password", uid=subject_id, error=str(e))
            raise UpstreamUpdateFailed(status_code=502) from e

        logger.info("firebase_password_updated", uid=subject_id)
