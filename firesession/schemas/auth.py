"""Authentication schemas."""

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator

from firesession.schemas.users import SessionRecordView, UserView


class SessionRequest(BaseModel):
    """Firebase ID token exchange request."""

    model_config = ConfigDict(populate_by_name=True)

    id_token: str = Field(..., min_length=1, alias="idToken", description="Firebase ID token")


class SessionResponse(BaseModel):
    """Session creation or refresh response."""

    success: bool = True
    user: UserView
    fallback: bool = False


class CurrentUserResponse(BaseModel):
    """Identity behind the current request."""

    success: bool = True
    user: UserView
    source: str


class SessionListResponse(BaseModel):
    """Active sessions of the current user."""

    success: bool = True
    sessions: list[SessionRecordView]


class MessageResponse(BaseModel):
    """Plain acknowledgement."""

    success: bool
    message: str


class ResetPasswordRequest(BaseModel):
    """Password reset request."""

    email: EmailStr


class ConfirmResetRequest(BaseModel):
    """Password reset confirmation."""

    model_config = ConfigDict(populate_by_name=True)

    token: str = Field(..., min_length=1)
    password: str = Field(..., min_length=6)
    confirm_password: str = Field(..., min_length=6, alias="confirmPassword")

    @model_validator(mode="after")
    def _passwords_match(self) -> "ConfirmResetRequest":
        if self.password != self.confirm_password:
            raise ValueError("Passwords don't match")
        return self


class MaskedUserView(BaseModel):
    """User details shown on the reset form."""

    email: str
    name: str | None = None


class ResetTokenResponse(BaseModel):
    """Reset link verification response."""

    success: bool = True
    user: MaskedUserView
