"""Unit tests for the auth source registry."""

from __future__ import annotations

from dataclasses import dataclass, field

import pytest

from sqlauth.config import AppConfig
from sqlauth.errors import ConfigurationError
from sqlauth.login import SqlAuthSource
from sqlauth.models import LoginResult
from sqlauth.registry import AuthSourceRegistry, UnknownAuthSource, UserPassSource


@dataclass
class _StaticSource:
    auth_id: str
    calls: list[tuple[str, str]] = field(default_factory=list)

    def login(self, username: str, password: str) -> LoginResult:
        self.calls.append((username, password))
        return LoginResult.success({"uid": [username]})


def _sqlite_values(path: str) -> dict[str, str]:
    return {
        "dsn1": f"sqlite:{path}",
        "dsn2": f"sqlite:{path}",
        "username1": "",
        "username2": "",
        "password1": "",
        "password2": "",
        "query": "SELECT :username AS uid",
    }


def test_register_and_list_sources() -> None:
    registry = AuthSourceRegistry()
    registry.register_many([_StaticSource("a"), _StaticSource("b")])

    assert [source.auth_id for source in registry.list_sources()] == ["a", "b"]
    assert isinstance(registry.get("a"), UserPassSource)


def test_register_replaces_existing_id() -> None:
    registry = AuthSourceRegistry()
    first, second = _StaticSource("a"), _StaticSource("a")
    registry.register(first)
    registry.register(second)

    assert registry.get("a") is second


def test_register_requires_an_id() -> None:
    with pytest.raises(ValueError):
        AuthSourceRegistry().register(_StaticSource(""))


def test_login_dispatches_to_registered_source() -> None:
    source = _StaticSource("static")
    registry = AuthSourceRegistry()
    registry.register(source)

    result = registry.login("static", "alice", "pw")

    assert result.attributes == {"uid": ["alice"]}
    assert source.calls == [("alice", "pw")]


def test_unknown_source_raises_lookup_error() -> None:
    with pytest.raises(LookupError, match="nope") as excinfo:
        AuthSourceRegistry().login("nope", "alice", "pw")

    assert isinstance(excinfo.value, UnknownAuthSource)


def test_from_config_builds_sql_sources(tmp_path) -> None:  # type: ignore[no-untyped-def]
    config = AppConfig().with_source("idp-sql", _sqlite_values(str(tmp_path / "users.sqlite")))

    registry = AuthSourceRegistry.from_config(config)

    source = registry.get("idp-sql")
    assert isinstance(source, SqlAuthSource)
    assert registry.login("idp-sql", "alice", "pw").attributes == {"uid": ["alice"]}


def test_from_config_surfaces_invalid_sources() -> None:
    config = AppConfig(sources={"broken": {"dsn1": "sqlite::memory:"}})

    with pytest.raises(ConfigurationError, match="Missing required attribute 'dsn2'"):
        AuthSourceRegistry.from_config(config)
