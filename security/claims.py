"""Pure conversion between claims and the bytes that get encrypted."""

import json

from pydantic import ValidationError

from schema.security import Claims


def serialize_claims(claims: Claims) -> bytes:
    """Deterministic UTF-8 JSON: sorted keys, no insignificant whitespace."""
    payload = claims.model_dump(mode="json")
    return json.dumps(payload, sort_keys=True, separators=(",", ":")).encode("utf-8")


def deserialize_claims(payload: bytes) -> Claims:
    """Parses decrypted bytes back into claims.

    Raises:
        ValueError: If the payload is not a JSON object of valid claims.
    """
    try:
        data = json.loads(payload)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ValueError("Claims payload is not JSON") from e

    if not isinstance(data, dict):
        raise ValueError("Claims payload is not an object")

    try:
        return Claims.model_validate(data)
    except ValidationError as e:
        raise ValueError("Claims payload has an invalid shape") from e
