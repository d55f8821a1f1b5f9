"""
Tests for stateful token issuance and verification.
"""
import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from schema.users import UserRecord
from security.errors import TokenMissing, TokenUnallocated, TokenExpired, StorageError
from security.stateful import (
    StatefulTokenIssuer,
    StatefulTokenVerifier,
    generate_token,
    TOKEN_ALPHABET,
)
from services.directory import InMemoryUserDirectory

TTL = timedelta(seconds=10)


class TickingClock:
    """Moves one millisecond forward on every read."""

    def __init__(self):
        self.current = datetime(2024, 5, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.current = self.current + timedelta(milliseconds=1)
        return self.current


def test_generate_token_shape():
    token = generate_token()

    assert len(token) >= 24
    assert set(token) <= set(TOKEN_ALPHABET)
    assert len(TOKEN_ALPHABET) == 62
    assert generate_token() != token


@pytest.mark.asyncio
async def test_issue_then_verify(directory, jbrown, clock):
    issued = await StatefulTokenIssuer(directory, clock).issue(jbrown, TTL)

    user = await StatefulTokenVerifier(directory, clock).verify(issued.value)

    assert user.username == "jbrown"
    assert user.token == issued.value
    assert issued.expires_at == clock() + TTL


@pytest.mark.asyncio
async def test_jbrown_expiry_scenario(directory, jbrown, clock):
    """Valid one second in, expired twelve seconds in."""
    issued = await StatefulTokenIssuer(directory, clock).issue(jbrown, TTL)
    verifier = StatefulTokenVerifier(directory, clock)

    clock.advance(1)
    assert (await verifier.verify(issued.value)).username == "jbrown"

    clock.advance(11)
    with pytest.raises(TokenExpired):
        await verifier.verify(issued.value)


@pytest.mark.asyncio
async def test_token_expires_exactly_at_expiry(directory, jbrown, clock):
    issued = await StatefulTokenIssuer(directory, clock).issue(jbrown, TTL)
    verifier = StatefulTokenVerifier(directory, clock)

    clock.advance(TTL.total_seconds())

    with pytest.raises(TokenExpired):
        await verifier.verify(issued.value)

    # Never comes back without a new issue
    clock.advance(3600)
    with pytest.raises(TokenExpired):
        await verifier.verify(issued.value)


@pytest.mark.asyncio
async def test_new_token_supersedes_old(directory, jbrown, clock):
    issuer = StatefulTokenIssuer(directory, clock)
    verifier = StatefulTokenVerifier(directory, clock)

    first = await issuer.issue(jbrown, TTL)
    second = await issuer.issue(jbrown, TTL)

    with pytest.raises(TokenUnallocated):
        await verifier.verify(first.value)
    assert (await verifier.verify(second.value)).token == second.value


@pytest.mark.asyncio
@pytest.mark.parametrize("presented", [None, ""])
async def test_missing_token(directory, clock, presented):
    with pytest.raises(TokenMissing):
        await StatefulTokenVerifier(directory, clock).verify(presented)


@pytest.mark.asyncio
async def test_unknown_and_partial_tokens_are_unallocated(directory, jbrown, clock):
    issued = await StatefulTokenIssuer(directory, clock).issue(jbrown, TTL)
    verifier = StatefulTokenVerifier(directory, clock)

    for presented in ["not-a-token", issued.value[:-1], issued.value + "x", issued.value.lower()]:
        if presented == issued.value:
            continue
        with pytest.raises(TokenUnallocated):
            await verifier.verify(presented)


@pytest.mark.asyncio
async def test_missing_stored_expiry_counts_as_expired(jbrown_hash, clock):
    directory = InMemoryUserDirectory(
        [UserRecord(username="half", display_name="Half", secret_hash=jbrown_hash, token="abc")]
    )

    with pytest.raises(TokenExpired):
        await StatefulTokenVerifier(directory, clock).verify("abc")


@pytest.mark.asyncio
async def test_issue_for_vanished_user_is_storage_error(jbrown, clock):
    with pytest.raises(StorageError) as exc_info:
        await StatefulTokenIssuer(InMemoryUserDirectory(), clock).issue(jbrown, TTL)

    assert exc_info.value.status_code == 500


@pytest.mark.asyncio
async def test_concurrent_issues_leave_consistent_pair(directory, jbrown):
    """Stored token and expiry always come from the same issuance."""
    issuer = StatefulTokenIssuer(directory, TickingClock())

    results = await asyncio.gather(*(issuer.issue(jbrown, TTL) for _ in range(50)))

    stored = await directory.find_by_username("jbrown")
    issued_pairs = {(r.value, r.expires_at) for r in results}

    assert len({r.expires_at for r in results}) == 50
    assert (stored.token, stored.token_expiry) in issued_pairs
