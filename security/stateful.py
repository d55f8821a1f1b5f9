"""Stateful tokens: random opaque strings stored on the user record.
"""
import secrets
import string
import logfire

from datetime import timedelta

from schema.users import UserRecord
from schema.security import IssuedToken
from services.directory import UserDirectory
from security.errors import TokenMissing, TokenUnallocated, TokenExpired
from utils.clock import Clock, utc_now

TOKEN_ALPHABET = string.ascii_letters + string.digits  # 62 symbols
TOKEN_LENGTH = 32


def generate_token(length: int = TOKEN_LENGTH) -> str:
    """Generate a cryptographically random opaque token.

    Returns:
        str: The generated token.
    """
    return "".join(secrets.choice(TOKEN_ALPHABET) for _ in range(length))


class StatefulTokenIssuer:
    """Issues tokens and persists them alongside the user."""

    def __init__(self, directory: UserDirectory, clock: Clock = utc_now):
        self.directory = directory
        self.clock = clock

    async def issue(self, user: UserRecord, ttl: timedelta) -> IssuedToken:
        """Issue a token for `user`, superseding any previous one.

        Raises:
            StorageError: The token could not be persisted.
        """
        with logfire.span(f"Issuing stateful token for {user.username}"):
            token = generate_token()
            expires_at = self.clock() + ttl

            # Token and expiry are written together or not at all
            await self.directory.store_token(user.username, token, expires_at)

            logfire.info(f"Stored new token for {user.username}, expires at {expires_at.isoformat()}")
            return IssuedToken(value=token, expires_at=expires_at)


class StatefulTokenVerifier:
    """Resolves a presented token to the user currently holding it."""

    def __init__(self, directory: UserDirectory, clock: Clock = utc_now):
        self.directory = directory
        self.clock = clock

    async def verify(self, presented_token: str | None) -> UserRecord:
        """Verify a presented token.

        Raises:
            TokenMissing: No token was presented.
            TokenUnallocated: No user holds exactly this token.
            TokenExpired: The stored expiry is missing or has passed.
            StorageError: The directory failed or timed out.

        Returns:
            UserRecord: The token's owner.
        """
        if not presented_token:
            raise TokenMissing()

        user = await self.directory.find_by_token(presented_token)
        if user is None:
            raise TokenUnallocated()

        if user.token_expiry is None or self.clock() >= user.token_expiry:
            raise TokenExpired()

        return user
