"""Authenticated encryption of token payloads as compact JWE strings.
"""
import base64
import binascii
import secrets

from jose import jwe
from jose.exceptions import JOSEError

from utils.config import ENCRYPTION_KEY_BYTES


class EnvelopeError(Exception):
    """Raised for any envelope that does not decrypt and authenticate."""


JWE_COMPACT_SEGMENTS = 5


def _is_canonical_segment(segment: str) -> bool:
    """True if `segment` is exactly what base64url encoding its bytes gives.

    The decoder ignores the unused low bits of a final character, so two
    different strings can decode to the same bytes.
    """
    try:
        decoded = base64.urlsafe_b64decode(segment + "=" * (-len(segment) % 4))
    except (binascii.Error, ValueError):
        return False
    return base64.urlsafe_b64encode(decoded).rstrip(b"=").decode("ascii") == segment


def generate_key() -> str:
    """Generate a fresh base64url encoded 256 bit key.

    Returns:
        str: The encoded key, suitable for TOKEN_ENCRYPTION_KEY.
    """
    return base64.urlsafe_b64encode(secrets.token_bytes(ENCRYPTION_KEY_BYTES)).decode("ascii").rstrip("=")


class EnvelopeCipher:
    """Seals and opens payloads under a server-held symmetric key.

    Uses direct key agreement with AES-256-GCM, so the key never appears in
    the envelope in any form.
    """

    algorithm = "dir"
    encryption = "A256GCM"

    def __init__(self, key: bytes):
        if len(key) != ENCRYPTION_KEY_BYTES:
            raise ValueError(f"Envelope key must be {ENCRYPTION_KEY_BYTES} bytes")
        self._key = key

    def __repr__(self) -> str:
        return f"{type(self).__name__}(encryption={self.encryption!r})"

    def seal(self, payload: bytes) -> str:
        """Encrypt `payload` into an opaque cookie-safe string."""
        encoded_jwe = jwe.encrypt(
            payload, self._key, algorithm=self.algorithm, encryption=self.encryption
        )
        return encoded_jwe.decode("utf-8")

    def open(self, envelope: str) -> bytes:
        """Decrypt and authenticate `envelope`.

        Raises:
            EnvelopeError: Malformed, tampered or sealed under another key.
        """
        segments = envelope.split(".")
        if len(segments) != JWE_COMPACT_SEGMENTS or not all(
            _is_canonical_segment(segment) for segment in segments
        ):
            raise EnvelopeError("Envelope could not be opened")

        try:
            payload = jwe.decrypt(envelope.encode("utf-8"), self._key)
        except (JOSEError, ValueError, TypeError, KeyError, UnicodeEncodeError) as e:
            raise EnvelopeError("Envelope could not be opened") from e

        if payload is None:
            raise EnvelopeError("Envelope could not be opened")
        return payload
