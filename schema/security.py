"""Defines schema of tokens, claims and auth responses"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from typing import Annotated, Any


class Claims(BaseModel):
    """Data carried inside a stateless token."""

    model_config = ConfigDict(extra="allow")

    sub: Annotated[str, Field(min_length=1)]  # username
    name: Annotated[str, Field(default="")]  # display name
    iat: float  # issued at, unix timestamp
    exp: float  # expiry, unix timestamp


class IssuedToken(BaseModel):
    """A freshly issued token and when it stops being valid."""

    value: str
    expires_at: datetime


class Principal(BaseModel):
    """The authenticated caller attached to request state by the gate."""

    username: str
    display_name: str
    expires_at: datetime
    token: Annotated[str | None, Field(default=None, exclude=True)]
    claims: Annotated[dict[str, Any], Field(default_factory=dict)]


class RefreshTokenResponse(BaseModel):
    """Model for a successful refresh; the token itself travels in a header or cookie."""

    message: Annotated[str, Field(default="Token refreshed")]
    expires_at: datetime


class MessageResponse(BaseModel):
    message: str


class ErrorResponse(BaseModel):
    """Structured failure body."""

    error: str
