"""Application configuration loaded from the environment."""

import os
import base64
import binascii

from enum import Enum
from datetime import timedelta

from dotenv import load_dotenv
from pydantic import BaseModel, Field, SecretStr, field_validator, model_validator

from typing import Annotated, Self

# AES-256-GCM content encryption needs exactly 32 key bytes
ENCRYPTION_KEY_BYTES = 32


class AuthMode(str, Enum):
    """Which token variant guards the protected routes."""

    STATEFUL = "stateful"
    STATELESS = "stateless"


class DirectoryBackend(str, Enum):
    """Where user records live."""

    MEMORY = "memory"
    MONGO = "mongo"


def decode_key(encoded: str) -> bytes:
    """Decodes a base64url encryption key, padding optional.

    Raises:
        ValueError: If the value is not base64url or not 32 bytes long.
    """
    padded = encoded.strip() + "=" * (-len(encoded.strip()) % 4)
    try:
        key = base64.urlsafe_b64decode(padded.encode("ascii"))
    except (binascii.Error, UnicodeEncodeError) as e:
        raise ValueError("Encryption key must be base64url encoded") from e

    if len(key) != ENCRYPTION_KEY_BYTES:
        raise ValueError(f"Encryption key must decode to {ENCRYPTION_KEY_BYTES} bytes")
    return key


class Settings(BaseModel):
    """Validated runtime settings."""

    auth_mode: Annotated[AuthMode, Field(default=AuthMode.STATEFUL)]
    token_ttl_seconds: Annotated[int, Field(default=3600, gt=0)]
    token_encryption_key: Annotated[SecretStr | None, Field(default=None)]
    directory_backend: Annotated[DirectoryBackend, Field(default=DirectoryBackend.MEMORY)]
    database_connection_string: Annotated[str, Field(default="mongodb://localhost:27017")]
    database_name: Annotated[str, Field(default="token_gate")]
    directory_timeout_seconds: Annotated[float, Field(default=5.0, gt=0)]
    cookie_secure: Annotated[bool, Field(default=True)]
    refresh_requests_per_minute: Annotated[int, Field(default=30, gt=0)]
    trusted_proxies: Annotated[str, Field(default="127.0.0.1")]  # comma separated
    logfire_write_token: Annotated[SecretStr | None, Field(default=None)]
    demo_users: Annotated[SecretStr | None, Field(default=None)]  # memory backend seed

    @field_validator("token_encryption_key")
    @classmethod
    def validate_encryption_key(cls, v):
        if v is not None:
            decode_key(v.get_secret_value())
        return v

    # * The stateless variant cannot run without a server-held key
    @model_validator(mode="after")
    def check_stateless_key(self) -> Self:
        if self.auth_mode == AuthMode.STATELESS and self.token_encryption_key is None:
            raise ValueError("TOKEN_ENCRYPTION_KEY is required when AUTH_MODE is stateless")
        return self

    @property
    def trusted_proxy_hosts(self) -> list[str]:
        """Peers whose X-Forwarded-For header is believed."""
        return [host.strip() for host in self.trusted_proxies.split(",") if host.strip()]

    @property
    def token_ttl(self) -> timedelta:
        return timedelta(seconds=self.token_ttl_seconds)

    @property
    def encryption_key(self) -> bytes:
        """Raw key bytes for the envelope cipher."""
        if self.token_encryption_key is None:
            raise ValueError("No encryption key configured")
        return decode_key(self.token_encryption_key.get_secret_value())

    def parse_demo_users(self) -> list[tuple[str, str, str]]:
        """Parses DEMO_USERS into (username, password, display name) triples.

        Format: DEMO_USERS="jbrown:1234:Jim Brown,asmith:pass"; the display
        name defaults to the username.
        """
        if self.demo_users is None:
            return []

        users = []
        for entry in self.demo_users.get_secret_value().split(","):
            entry = entry.strip()
            if not entry:
                continue

            parts = entry.split(":", 2)
            if len(parts) < 2 or not parts[0] or not parts[1]:
                raise ValueError("DEMO_USERS entries must look like user:password[:display name]")

            display_name = parts[2].strip() if len(parts) == 3 and parts[2].strip() else parts[0]
            users.append((parts[0].strip(), parts[1], display_name))
        return users


def load_settings(**overrides) -> Settings:
    """Builds settings from `.env` and the process environment.

    Keyword overrides win over the environment, tests use them to pin values.
    """
    load_dotenv()

    values = {
        "auth_mode": os.getenv("AUTH_MODE"),
        "token_ttl_seconds": os.getenv("TOKEN_TTL_SECONDS"),
        "token_encryption_key": os.getenv("TOKEN_ENCRYPTION_KEY"),
        "directory_backend": os.getenv("DIRECTORY_BACKEND"),
        "database_connection_string": os.getenv("DATABASE_CONNECTION_STRING"),
        "database_name": os.getenv("DATABASE_NAME"),
        "directory_timeout_seconds": os.getenv("DIRECTORY_TIMEOUT_SECONDS"),
        "cookie_secure": os.getenv("COOKIE_SECURE"),
        "refresh_requests_per_minute": os.getenv("REFRESH_REQUESTS_PER_MINUTE"),
        "trusted_proxies": os.getenv("TRUSTED_PROXIES"),
        "logfire_write_token": os.getenv("LOGFIRE_WRITE_TOKEN"),
        "demo_users": os.getenv("DEMO_USERS"),
    }
    values = {key: value for key, value in values.items() if value}
    values.update(overrides)

    return Settings(**values)
