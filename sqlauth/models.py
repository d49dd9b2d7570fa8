"""Shared dataclasses used across the resolver, drivers and auth source."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

from .errors import InvalidCredentials

ResultRow = Mapping[str, Any]
AttributeMap = dict[str, list[str]]


@dataclass(frozen=True, slots=True)
class ConnectionSpec:
    """One database endpoint: DSN, credentials and driver options."""

    dsn: str
    user: str
    password: str = field(repr=False)
    options: Mapping[str, Any] = field(default_factory=dict)

    @property
    def scheme(self) -> str:
        """Lower-cased driver prefix of the DSN (text before the first ':')."""

        return self.dsn.split(":", 1)[0].lower()


@dataclass(frozen=True, slots=True)
class LoginResult:
    """Outcome of a login attempt: attributes on success, the rejection otherwise."""

    attributes: AttributeMap | None = None
    error: InvalidCredentials | None = None

    def __post_init__(self) -> None:
        if (self.attributes is None) == (self.error is None):
            raise ValueError("LoginResult needs exactly one of attributes or error")

    @classmethod
    def success(cls, attributes: AttributeMap) -> LoginResult:
        return cls(attributes=attributes)

    @classmethod
    def rejected(cls, error: InvalidCredentials) -> LoginResult:
        return cls(error=error)

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> AttributeMap:
        """Return the attributes or raise the rejection."""

        if self.error is not None:
            raise self.error
        return self.attributes or {}


__all__ = ["AttributeMap", "ConnectionSpec", "LoginResult", "ResultRow"]
