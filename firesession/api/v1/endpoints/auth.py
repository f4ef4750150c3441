"""Authentication endpoints."""

from fastapi import APIRouter, Query, Response, status
from fastapi.responses import JSONResponse

from firesession.config import settings
from firesession.dependencies import (
    CurrentIdentity,
    RequestContextDep,
    ResetManagerDep,
    SessionManagerDep,
)
from firesession.schemas.auth import (
    ConfirmResetRequest,
    CurrentUserResponse,
    MaskedUserView,
    MessageResponse,
    ResetPasswordRequest,
    ResetTokenResponse,
    SessionListResponse,
    SessionRequest,
    SessionResponse,
)
from firesession.schemas.users import SessionRecordView, UserView

router = APIRouter()


def _set_session_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        settings.session_cookie_name,
        token,
        max_age=settings.session_expire_days * 24 * 60 * 60,
        path="/",
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
    )


def _clear_session_cookie(response: Response) -> None:
    response.set_cookie(
        settings.session_cookie_name,
        "",
        max_age=0,
        path="/",
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
    )


@router.post(
    "/session",
    response_model=SessionResponse,
    status_code=status.HTTP_200_OK,
    summary="Create session from Firebase ID token",
)
async def create_session(
    request: SessionRequest,
    response: Response,
    context: RequestContextDep,
    session_manager: SessionManagerDep,
) -> SessionResponse:
    """
    Exchange a Firebase ID token for a server-side session.

    If Firebase cannot verify the token but the request already carries a
    live session cookie, that session is reused and flagged as a fallback.
    """
    result = await session_manager.create_session(request.id_token, context)

    if not result.fallback:
        _set_session_cookie(response, result.token)

    return SessionResponse(user=UserView.from_user(result.user), fallback=result.fallback)


@router.post(
    "/refresh-session",
    response_model=SessionResponse,
    status_code=status.HTTP_200_OK,
    summary="Rotate the session cookie",
)
async def refresh_session(
    request: SessionRequest,
    response: Response,
    context: RequestContextDep,
    session_manager: SessionManagerDep,
) -> SessionResponse:
    """Replace the current session with a new one anchored in a fresh ID token."""
    result = await session_manager.refresh_session(request.id_token, context)
    _set_session_cookie(response, result.token)
    return SessionResponse(user=UserView.from_user(result.user))


@router.get(
    "/me",
    response_model=CurrentUserResponse,
    status_code=status.HTTP_200_OK,
    summary="Current user",
)
async def get_current_user(identity: CurrentIdentity) -> CurrentUserResponse:
    """Return the user behind the Bearer ID token or the session cookie."""
    return CurrentUserResponse(
        user=UserView.from_user(identity.user),
        source=identity.source.value,
    )


@router.get(
    "/sessions",
    response_model=SessionListResponse,
    status_code=status.HTTP_200_OK,
    summary="List active sessions",
)
async def list_sessions(
    identity: CurrentIdentity,
    session_manager: SessionManagerDep,
) -> SessionListResponse:
    """Active sessions of the current user, for audit."""
    records = await session_manager.list_sessions(identity)
    return SessionListResponse(sessions=[SessionRecordView.from_record(r) for r in records])


@router.post(
    "/logout",
    response_model=MessageResponse,
    status_code=status.HTTP_200_OK,
    summary="Logout and revoke the session",
)
async def logout(
    context: RequestContextDep,
    session_manager: SessionManagerDep,
) -> JSONResponse:
    """Revoke the session cookie and clear it. Safe to call repeatedly."""
    if context.session_token:
        await session_manager.revoke_session(context.session_token)

    response = JSONResponse({"success": True, "message": "Logged out successfully"})
    _clear_session_cookie(response)
    return response


@router.post(
    "/reset-password",
    response_model=MessageResponse,
    summary="Request password reset",
)
async def request_password_reset(
    request: ResetPasswordRequest,
    reset_manager: ResetManagerDep,
) -> JSONResponse:
    """Email a reset link if an account exists for the address."""
    result = await reset_manager.create_reset_request(request.email)
    return JSONResponse(
        {"success": result.success, "message": result.message},
        status_code=status.HTTP_200_OK if result.success else status.HTTP_400_BAD_REQUEST,
    )


@router.get(
    "/reset-password/verify",
    response_model=ResetTokenResponse,
    status_code=status.HTTP_200_OK,
    summary="Verify reset token",
)
async def verify_reset_token(
    reset_manager: ResetManagerDep,
    token: str = Query(..., min_length=1),
) -> ResetTokenResponse:
    """Check a reset link and show whom it belongs to."""
    masked = await reset_manager.describe_reset_token(token)
    return ResetTokenResponse(user=MaskedUserView(email=masked.email, name=masked.name))


@router.put(
    "/reset-password",
    response_model=MessageResponse,
    status_code=status.HTTP_200_OK,
    summary="Confirm password reset",
)
async def confirm_password_reset(
    request: ConfirmResetRequest,
    reset_manager: ResetManagerDep,
) -> MessageResponse:
    """Set a new password using a reset token."""
    result = await reset_manager.reset_password_with_token(request.token, request.password)
    return MessageResponse(success=result.success, message=result.message)
