"""Common interface over the stateful and stateless token variants.

The gate and the routes only talk to an `AuthBackend`; which variant sits
behind it is decided once, from configuration, by `build_backend`.
"""
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone

import logfire

from fastapi import Request, Response

from schema.users import UserRecord
from schema.security import Claims, IssuedToken, Principal
from services.directory import UserDirectory
from security.envelope import EnvelopeCipher
from security.stateful import StatefulTokenIssuer, StatefulTokenVerifier
from security.stateless import StatelessTokenIssuer, StatelessTokenVerifier
from utils.clock import Clock, utc_now
from utils.config import AuthMode, Settings

TOKEN_FIELD = "token"  # header name in stateful mode, cookie name in stateless mode


class AuthBackend(ABC):
    """One token variant, including how its token travels over HTTP."""

    mode: AuthMode

    def __init__(self, ttl: timedelta, clock: Clock = utc_now):
        self.ttl = ttl
        self.clock = clock

    @abstractmethod
    def extract(self, request: Request) -> str | None:
        """Pull the presented token out of the request."""

    @abstractmethod
    async def issue(self, user: UserRecord) -> IssuedToken:
        """Issue a token for an already validated user."""

    @abstractmethod
    async def authenticate(self, token: str | None) -> Principal:
        """Verify `token` and describe its holder."""

    @abstractmethod
    def deliver(self, response: Response, issued: IssuedToken) -> None:
        """Attach a freshly issued token to the response."""

    @abstractmethod
    async def revoke(self, principal: Principal, response: Response) -> None:
        """End the principal's session."""


class StatefulBackend(AuthBackend):
    """Opaque tokens looked up in the directory, carried in a `token` header."""

    mode = AuthMode.STATEFUL

    def __init__(self, directory: UserDirectory, ttl: timedelta, clock: Clock = utc_now):
        super().__init__(ttl, clock)
        self.directory = directory
        self.issuer = StatefulTokenIssuer(directory, clock)
        self.verifier = StatefulTokenVerifier(directory, clock)

    def extract(self, request: Request) -> str | None:
        return request.headers.get(TOKEN_FIELD)

    async def issue(self, user: UserRecord) -> IssuedToken:
        return await self.issuer.issue(user, self.ttl)

    async def authenticate(self, token: str | None) -> Principal:
        user = await self.verifier.verify(token)
        return Principal(
            username=user.username,
            display_name=user.display_name,
            expires_at=user.token_expiry,
            token=token,
        )

    def deliver(self, response: Response, issued: IssuedToken) -> None:
        response.headers[TOKEN_FIELD] = issued.value

    async def revoke(self, principal: Principal, response: Response) -> None:
        # Compare-and-clear so a logout never wipes a token issued after it
        cleared = await self.directory.clear_token(principal.username, principal.token)
        if cleared:
            logfire.info(f"Cleared stored token for {principal.username}")


class StatelessBackend(AuthBackend):
    """Encrypted claims envelopes carried in a `token` cookie."""

    mode = AuthMode.STATELESS

    def __init__(
        self,
        cipher: EnvelopeCipher,
        ttl: timedelta,
        clock: Clock = utc_now,
        cookie_secure: bool = True,
    ):
        super().__init__(ttl, clock)
        self.issuer = StatelessTokenIssuer(cipher)
        self.verifier = StatelessTokenVerifier(cipher, clock)
        self.cookie_secure = cookie_secure

    def extract(self, request: Request) -> str | None:
        return request.cookies.get(TOKEN_FIELD)

    async def issue(self, user: UserRecord) -> IssuedToken:
        issued_at = self.clock()
        expires_at = issued_at + self.ttl
        claims = Claims(
            sub=user.username,
            name=user.display_name,
            iat=issued_at.timestamp(),
            exp=expires_at.timestamp(),
        )
        return IssuedToken(value=self.issuer.issue(claims), expires_at=expires_at)

    async def authenticate(self, token: str | None) -> Principal:
        claims = self.verifier.verify(token)
        return Principal(
            username=claims.sub,
            display_name=claims.name,
            expires_at=datetime.fromtimestamp(claims.exp, tz=timezone.utc),
            claims=claims.model_dump(),
        )

    def deliver(self, response: Response, issued: IssuedToken) -> None:
        response.set_cookie(
            key=TOKEN_FIELD,
            value=issued.value,
            max_age=int(self.ttl.total_seconds()),
            httponly=True,
            secure=self.cookie_secure,
            samesite="lax",
        )

    async def revoke(self, principal: Principal, response: Response) -> None:
        # Nothing is stored, so the best we can do is drop the client copy
        response.delete_cookie(
            key=TOKEN_FIELD, httponly=True, secure=self.cookie_secure, samesite="lax"
        )


def build_backend(settings: Settings, directory: UserDirectory, clock: Clock = utc_now) -> AuthBackend:
    """Select the backend named by `settings.auth_mode`."""
    if settings.auth_mode == AuthMode.STATELESS:
        return StatelessBackend(
            cipher=EnvelopeCipher(settings.encryption_key),
            ttl=settings.token_ttl,
            clock=clock,
            cookie_secure=settings.cookie_secure,
        )
    return StatefulBackend(directory=directory, ttl=settings.token_ttl, clock=clock)
