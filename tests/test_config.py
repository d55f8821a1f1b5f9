"""
Tests for settings loading and backend selection.
"""
import pytest
from pydantic import ValidationError

from main import build_directory
from security.backends import StatefulBackend, StatelessBackend, build_backend
from security.envelope import generate_key
from services.directory import InMemoryUserDirectory, MongoUserDirectory
from utils.config import AuthMode, DirectoryBackend, Settings, decode_key, load_settings


def test_defaults():
    settings = Settings()

    assert settings.auth_mode == AuthMode.STATEFUL
    assert settings.directory_backend == DirectoryBackend.MEMORY
    assert settings.token_ttl.total_seconds() == 3600


def test_stateless_requires_key():
    with pytest.raises(ValidationError):
        Settings(auth_mode="stateless")


@pytest.mark.parametrize("key", ["not base64 !!", "c2hvcnQ", generate_key() + "AAAA"])
def test_bad_keys_are_rejected(key):
    with pytest.raises(ValidationError):
        Settings(auth_mode="stateless", token_encryption_key=key)


def test_decode_key_round_trip():
    assert len(decode_key(generate_key())) == 32


def test_key_is_not_in_repr():
    key = generate_key()
    settings = Settings(auth_mode="stateless", token_encryption_key=key)

    assert key not in repr(settings)
    assert key not in str(settings.model_dump())


def test_load_settings_reads_environment(monkeypatch):
    key = generate_key()
    monkeypatch.setenv("AUTH_MODE", "stateless")
    monkeypatch.setenv("TOKEN_ENCRYPTION_KEY", key)
    monkeypatch.setenv("TOKEN_TTL_SECONDS", "90")
    monkeypatch.setenv("COOKIE_SECURE", "false")

    settings = load_settings()

    assert settings.auth_mode == AuthMode.STATELESS
    assert settings.token_ttl_seconds == 90
    assert settings.cookie_secure is False
    assert settings.encryption_key == decode_key(key)


def test_load_settings_overrides_win(monkeypatch):
    monkeypatch.setenv("TOKEN_TTL_SECONDS", "90")

    assert load_settings(token_ttl_seconds=5).token_ttl_seconds == 5


def test_parse_demo_users():
    settings = Settings(demo_users="jbrown:1234:Jim Brown, asmith:pa:ss")

    assert settings.parse_demo_users() == [
        ("jbrown", "1234", "Jim Brown"),
        ("asmith", "pa", "ss"),
    ]
    assert Settings(demo_users="solo:pw").parse_demo_users() == [("solo", "pw", "solo")]


@pytest.mark.parametrize("value", ["nopassword", ":1234", "user:"])
def test_parse_demo_users_rejects_bad_entries(value):
    with pytest.raises(ValueError):
        Settings(demo_users=value).parse_demo_users()


def test_build_backend_selects_variant(directory):
    stateful = build_backend(Settings(), directory)
    stateless = build_backend(
        Settings(auth_mode="stateless", token_encryption_key=generate_key()), directory
    )

    assert isinstance(stateful, StatefulBackend)
    assert isinstance(stateless, StatelessBackend)


def test_build_directory():
    assert isinstance(build_directory(Settings(directory_backend="mongo")), MongoUserDirectory)

    memory = build_directory(Settings(demo_users="jbrown:1234"))
    assert isinstance(memory, InMemoryUserDirectory)
    assert "jbrown" in memory._records


def test_trusted_proxies(monkeypatch):
    monkeypatch.setenv("TRUSTED_PROXIES", " 10.1.0.2, 10.1.0.3 ,")

    assert Settings().trusted_proxy_hosts == ["127.0.0.1"]
    assert load_settings().trusted_proxy_hosts == ["10.1.0.2", "10.1.0.3"]
