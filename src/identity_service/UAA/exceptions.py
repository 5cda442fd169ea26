# src/identity_service/UAA/exceptions.py
"""Error kinds raised by the identity core."""

from typing import Optional


class IdentityError(Exception):
    """Base exception for the identity service"""
    pass


class ConfigInvalid(IdentityError):
    """Service or settings could not be constructed"""
    pass


class InvalidCredentials(IdentityError):
    """Login failed: unknown handle, inactive account or wrong password"""

    def __init__(self, message: str = "Invalid credentials"):
        super().__init__(message)


class InvalidPassword(IdentityError):
    """Current password supplied to a password change is wrong"""

    def __init__(self, message: str = "Current password is incorrect"):
        super().__init__(message)


class UserNotFound(IdentityError):
    """Lookup by user id found nothing"""

    def __init__(self, user_id: Optional[int] = None):
        self.user_id = user_id
        super().__init__("User not found")


class Conflict(IdentityError):
    """Username or email already taken"""

    def __init__(self, message: str = "username or email already registered"):
        super().__init__(message)


class UserValidationError(IdentityError):
    """Structural validation of user fields failed"""

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(message)


class StoreFailure(IdentityError):
    """Store-layer error that is not otherwise classified"""
    pass


class EntropyUnavailable(IdentityError):
    """The OS random source failed while generating an OTP"""
    pass


class Unauthorized(IdentityError):
    """Request carries no usable credentials"""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class Forbidden(IdentityError):
    """Credentials are valid but not sufficient"""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class UnauthenticatedAccess(IdentityError):
    """Claims were requested from a request that never passed the filter"""

    def __init__(self, message: str = "user not found in request context"):
        super().__init__(message)


class TokenInvalid(IdentityError):
    """Bearer token could not be accepted"""
    pass


class MalformedToken(TokenInvalid):
    pass


class BadSignature(TokenInvalid):
    pass


class TokenExpired(TokenInvalid):
    pass


class TokenNotYetValid(TokenInvalid):
    pass


class UnsupportedAlgorithm(TokenInvalid):
    pass
