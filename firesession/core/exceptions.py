"""Custom application exceptions."""


class AppException(Exception):
    """Base application exception."""

    def __init__(self, message: str, status_code: int = 500):
        """Initialize exception with message and status code."""
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


class NotFoundException(AppException):
    """Resource not found exception."""

    def __init__(self, message: str = "Resource not found"):
        """Initialize with 404 status code."""
        super().__init__(message, status_code=404)


class UnauthorizedException(AppException):
    """Unauthorized access exception."""

    def __init__(self, message: str = "Unauthorized"):
        """Initialize with 401 status code."""
        super().__init__(message, status_code=401)


class ForbiddenException(AppException):
    """Forbidden access exception."""

    def __init__(self, message: str = "Forbidden"):
        """Initialize with 403 status code."""
        super().__init__(message, status_code=403)


class BadRequestException(AppException):
    """Bad request exception."""

    def __init__(self, message: str = "Bad request"):
        """Initialize with 400 status code."""
        super().__init__(message, status_code=400)


class ConflictException(AppException):
    """Conflict exception."""

    def __init__(self, message: str = "Conflict"):
        """Initialize with 409 status code."""
        super().__init__(message, status_code=409)


class ServiceUnavailableException(AppException):
    """A backing service could not be reached."""

    def __init__(self, message: str = "Service temporarily unavailable"):
        """Initialize with 503 status code."""
        super().__init__(message, status_code=503)


# Credential lifecycle taxonomy


class InvalidAssertion(UnauthorizedException):
    """Upstream identity assertion is malformed, expired or unverifiable."""

    def __init__(self, message: str = "Invalid identity assertion"):
        super().__init__(message)


class AuthFailed(UnauthorizedException):
    """No identity could be established by any path, fallback included."""

    def __init__(self, message: str = "Authentication failed"):
        super().__init__(message)


class Unauthenticated(UnauthorizedException):
    """A previously issued session is no longer valid."""

    def __init__(self, message: str = "Session expired or invalid"):
        super().__init__(message)


class StoreUnavailable(ServiceUnavailableException):
    """Persistence layer could not be reached; liveness is unknown."""

    def __init__(self, message: str = "Credential store temporarily unavailable"):
        super().__init__(message)


class InvalidResetToken(BadRequestException):
    """Reset token failed the signature, expiry, purpose or reuse check."""

    def __init__(self, message: str = "Invalid or expired reset token"):
        super().__init__(message)


class UpstreamUpdateFailed(AppException):
    """Identity provider refused or failed a password update."""

    def __init__(self, message: str = "Failed to reset password. Please try again.", status_code: int = 400):
        super().__init__(message, status_code=status_code)


class DuplicateIdentity(ConflictException):
    """Write would break uid or email uniqueness."""

    def __init__(self, message: str = "An account with this identity already exists"):
        super().__init__(message)


class WeakSigningKeyError(ValueError):
    """Configured signing secret is too short to be safe."""
