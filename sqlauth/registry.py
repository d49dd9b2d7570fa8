"""Registration table wiring auth sources into the hosting framework."""

from __future__ import annotations

from typing import Iterable, Protocol, runtime_checkable

from .config import AppConfig
from .drivers import DriverRegistry
from .login import SqlAuthSource
from .models import LoginResult


@runtime_checkable
class UserPassSource(Protocol):
    """Contract implemented by username/password auth sources."""

    auth_id: str

    def login(self, username: str, password: str) -> LoginResult: ...


class UnknownAuthSource(LookupError):
    """Raised when no source is registered under the requested id."""


class AuthSourceRegistry:
    """Collects auth sources by id."""

    def __init__(self) -> None:
        self._sources: dict[str, UserPassSource] = {}

    @classmethod
    def from_config(cls, config: AppConfig, *, drivers: DriverRegistry | None = None) -> AuthSourceRegistry:
        """Build a registry with one `SqlAuthSource` per configured source."""

        registry = cls()
        for auth_id in config.sources:
            registry.register(SqlAuthSource(auth_id, config.source_config(auth_id), drivers=drivers))
        return registry

    def register(self, source: UserPassSource) -> None:
        """Register a source, replacing any previous one with the same id."""

        if not source.auth_id:
            raise ValueError("Auth source is missing an id")
        self._sources[source.auth_id] = source

    def register_many(self, sources: Iterable[UserPassSource]) -> None:
        for source in sources:
            self.register(source)

    def list_sources(self) -> list[UserPassSource]:
        """Return the known sources."""

        return list(self._sources.values())

    def get(self, auth_id: str) -> UserPassSource:
        try:
            return self._sources[auth_id]
        except KeyError:
            raise UnknownAuthSource(f"Auth source '{auth_id}' is not registered") from None

    def login(self, auth_id: str, username: str, password: str) -> LoginResult:
        """Run a login against a registered source by id."""

        return self.get(auth_id).login(username, password)


__all__ = ["AuthSourceRegistry", "UnknownAuthSource", "UserPassSource"]
