"""FastAPI dependencies and service wiring."""

import ipaddress
import secrets
from dataclasses import dataclass
from datetime import timedelta
from typing import Annotated

import redis
from fastapi import Depends, Header, Request

from firesession.config import Settings, settings
from firesession.core.exceptions import ForbiddenException
from firesession.core.redis_client import CacheManager, RateLimiter
from firesession.core.security import SessionTokenCodec
from firesession.database import Database
from firesession.services.credential_store import CredentialStore
from firesession.services.email_service import EmailService
from firesession.services.reset_service import ResetTokenManager
from firesession.services.session_service import (
    AuthenticatedIdentity,
    IdentityProvider,
    RequestContext,
    SessionManager,
)


@dataclass
class ServiceContainer:
    """Process-wide collaborators, built once at startup."""

    database: Database
    redis_client: redis.Redis
    store: CredentialStore
    session_manager: SessionManager
    reset_manager: ResetTokenManager


def build_services(
    app_settings: Settings,
    database: Database,
    redis_client: redis.Redis,
    identity_provider: IdentityProvider,
    mailer: EmailService | None = None,
) -> ServiceContainer:
    """
    Wire the store and lifecycle managers together.

    Args:
        app_settings: Application settings
        database: Database shared by all requests
        redis_client: Redis client for rate limits and used reset tokens
        identity_provider: Upstream identity provider
        mailer: Mail sender, built from settings when omitted

    Returns:
        Service container
    """
    codec = SessionTokenCodec.from_settings(app_settings)
    store = CredentialStore(database, timeout_seconds=app_settings.store_timeout_seconds)

    session_manager = SessionManager(
        identity_provider,
        codec,
        store,
        session_ttl=timedelta(days=app_settings.session_expire_days),
    )
    reset_manager = ResetTokenManager(
        codec,
        store,
        identity_provider,
        mailer or EmailService.from_settings(app_settings),
        app_url=app_settings.app_url,
        token_ttl=timedelta(minutes=app_settings.reset_token_expire_minutes),
        used_tokens=CacheManager(redis_client),
        rate_limiter=RateLimiter(redis_client),
        requests_per_hour=app_settings.reset_requests_per_hour,
        min_response_time=timedelta(milliseconds=app_settings.reset_min_response_ms),
    )

    return ServiceContainer(
        database=database,
        redis_client=redis_client,
        store=store,
        session_manager=session_manager,
        reset_manager=reset_manager,
    )


def get_services(request: Request) -> ServiceContainer:
    """Service container attached to the application."""
    return request.app.state.services


def get_session_manager(services: Annotated[ServiceContainer, Depends(get_services)]) -> SessionManager:
    """Session lifecycle manager."""
    return services.session_manager


def get_reset_manager(services: Annotated[ServiceContainer, Depends(get_services)]) -> ResetTokenManager:
    """Reset token lifecycle manager."""
    return services.reset_manager


def _parse_ip(value: str | None) -> str | None:
    """Normalised address, or None for anything that is not a plain IP."""
    if not value:
        return None
    try:
        address = ipaddress.ip_address(value.strip())
    except ValueError:
        return None
    # Zone ids are free text; the stored column holds bare addresses only
    if getattr(address, "scope_id", None):
        return None
    return str(address)


def client_ip(request: Request) -> str | None:
    """
    Best-effort client address for the session audit trail.

    Proxy headers are client controlled, so a value that does not parse as
    an IP address is skipped rather than stored.
    """
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        ip = _parse_ip(forwarded.split(",")[0])
        if ip:
            return ip
    ip = _parse_ip(request.headers.get("x-real-ip"))
    if ip:
        return ip
    return _parse_ip(request.client.host) if request.client else None


def get_request_context(
    request: Request,
    authorization: Annotated[str | None, Header()] = None,
) -> RequestContext:
    """
    Collect credentials and audit details from the request.

    The session token travels in a cookie; a Firebase ID token may be sent
    separately as a Bearer credential.
    """
    bearer = None
    if authorization and authorization.startswith("Bearer "):
        bearer = authorization[len("Bearer ") :].strip() or None

    return RequestContext(
        session_token=request.cookies.get(settings.session_cookie_name) or None,
        bearer_assertion=bearer,
        user_agent=request.headers.get("user-agent"),
        ip=client_ip(request),
    )


async def get_current_identity(
    context: Annotated[RequestContext, Depends(get_request_context)],
    session_manager: Annotated[SessionManager, Depends(get_session_manager)],
) -> AuthenticatedIdentity:
    """
    Identity behind the current request.

    Raises:
        Unauthenticated: If no valid credential is present
    """
    return await session_manager.validate_session(context)


def require_admin_secret(
    x_admin_secret: Annotated[str | None, Header()] = None,
) -> None:
    """
    Guard for maintenance endpoints.

    Raises:
        ForbiddenException: If the shared secret is missing or wrong
    """
    if not x_admin_secret or not secrets.compare_digest(x_admin_secret, settings.admin_secret):
        raise ForbiddenException("Admin access required")


# Type aliases for dependency injection
Services = Annotated[ServiceContainer, Depends(get_services)]
SessionManagerDep = Annotated[SessionManager, Depends(get_session_manager)]
ResetManagerDep = Annotated[ResetTokenManager, Depends(get_reset_manager)]
RequestContextDep = Annotated[RequestContext, Depends(get_request_context)]
CurrentIdentity = Annotated[AuthenticatedIdentity, Depends(get_current_identity)]
