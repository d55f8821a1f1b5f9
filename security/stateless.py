"""Stateless tokens: encrypted, self-describing claims envelopes.
"""
import logfire

from schema.security import Claims
from security.claims import serialize_claims, deserialize_claims
from security.envelope import EnvelopeCipher, EnvelopeError
from security.errors import TokenMissing, TokenInvalid, TokenExpired
from utils.clock import Clock, utc_now


class StatelessTokenIssuer:
    """Seals claims into an opaque envelope. Nothing is stored."""

    def __init__(self, cipher: EnvelopeCipher):
        self.cipher = cipher

    def issue(self, claims: Claims) -> str:
        """Issue an envelope carrying `claims`.

        Returns:
            str: The opaque envelope for the cookie value.
        """
        return self.cipher.seal(serialize_claims(claims))


class StatelessTokenVerifier:
    """Opens an envelope and checks the embedded expiry."""

    def __init__(self, cipher: EnvelopeCipher, clock: Clock = utc_now):
        self.cipher = cipher
        self.clock = clock

    def verify(self, envelope: str | None) -> Claims:
        """Verify a presented envelope.

        Malformed, tampered and foreign envelopes all fail the same way.

        Raises:
            TokenMissing: No envelope was presented.
            TokenInvalid: The envelope did not decrypt to valid claims.
            TokenExpired: The embedded expiry has passed.

        Returns:
            Claims: The verified claims.
        """
        if not envelope:
            raise TokenMissing()

        try:
            claims = deserialize_claims(self.cipher.open(envelope))
        except (EnvelopeError, ValueError):
            logfire.warning("Rejected an envelope that failed to open")
            raise TokenInvalid()

        if self.clock().timestamp() >= claims.exp:
            raise TokenExpired()

        return claims
