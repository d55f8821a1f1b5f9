"""
Shared pytest fixtures.

- ManualClock: deterministic time source advanced by hand
- A directory seeded with the demo user jbrown / 1234
- FastAPI test clients for the stateful and stateless variants
"""

from datetime import datetime, timedelta, timezone
from typing import Generator

import logfire
import pytest
from fastapi.testclient import TestClient

from main import create_app
from schema.users import UserRecord
from security.credentials import hash_secret
from security.envelope import EnvelopeCipher, generate_key
from services.directory import InMemoryUserDirectory
from utils.config import AuthMode, Settings, decode_key

logfire.configure(send_to_logfire=False, console=False)

START = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)
TTL = timedelta(seconds=10)


class ManualClock:
    """Clock that only moves when told to."""

    def __init__(self, start: datetime = START):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> datetime:
        self.current = self.current + timedelta(seconds=seconds)
        return self.current


@pytest.fixture(scope="session")
def jbrown_hash() -> str:
    """bcrypt is slow, hash the demo secret once."""
    return hash_secret("1234")


@pytest.fixture
def jbrown(jbrown_hash: str) -> UserRecord:
    return UserRecord(username="jbrown", display_name="Jim Brown", secret_hash=jbrown_hash)


@pytest.fixture
def directory(jbrown: UserRecord) -> InMemoryUserDirectory:
    return InMemoryUserDirectory([jbrown])


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture(scope="session")
def encryption_key() -> str:
    return generate_key()


@pytest.fixture
def cipher(encryption_key: str) -> EnvelopeCipher:
    return EnvelopeCipher(decode_key(encryption_key))


@pytest.fixture
def stateful_settings() -> Settings:
    return Settings(
        auth_mode=AuthMode.STATEFUL,
        token_ttl_seconds=int(TTL.total_seconds()),
        refresh_requests_per_minute=1000,
    )


@pytest.fixture
def stateless_settings(encryption_key: str) -> Settings:
    return Settings(
        auth_mode=AuthMode.STATELESS,
        token_ttl_seconds=int(TTL.total_seconds()),
        token_encryption_key=encryption_key,
        cookie_secure=False,
        refresh_requests_per_minute=1000,
    )


@pytest.fixture
def stateful_client(stateful_settings, directory, clock) -> Generator[TestClient, None, None]:
    app = create_app(stateful_settings, directory=directory, clock=clock)
    with TestClient(app) as c:
        yield c


@pytest.fixture
def stateless_client(stateless_settings, directory, clock) -> Generator[TestClient, None, None]:
    app = create_app(stateless_settings, directory=directory, clock=clock)
    with TestClient(app) as c:
        yield c
