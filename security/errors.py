"""Authentication failures and the HTTP status each one maps to."""

from fastapi import status

# Shared wording so responses do not confirm whether a username exists
BAD_CREDENTIALS_MESSAGE = "Incorrect username or password"
INVALID_TOKEN_MESSAGE = "Invalid token"


class AuthError(Exception):
    """Base class for every failure the auth core reports."""

    status_code: int = status.HTTP_401_UNAUTHORIZED
    message: str = "Authentication failed"

    def __init__(self, message: str | None = None):
        if message is not None:
            self.message = message
        super().__init__(self.message)

    def to_content(self) -> dict:
        """Body of the structured error response."""
        return {"error": self.message}


class MissingCredentials(AuthError):
    status_code = status.HTTP_400_BAD_REQUEST
    message = "Both user and password are required"


class UserNotFound(AuthError):
    message = BAD_CREDENTIALS_MESSAGE


class SecretIncorrect(AuthError):
    message = BAD_CREDENTIALS_MESSAGE


class TokenMissing(AuthError):
    message = "Token is missing"


class TokenUnallocated(AuthError):
    message = INVALID_TOKEN_MESSAGE


class TokenInvalid(AuthError):
    message = INVALID_TOKEN_MESSAGE


class TokenExpired(AuthError):
    message = "Token has expired"


class StorageError(AuthError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    message = "User directory is unavailable"
