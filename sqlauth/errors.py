"""Error taxonomy shared by the resolver, query runner and auth source."""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Category of a login failure, so callers can branch without isinstance chains."""

    CONFIGURATION = "configuration"
    CONNECTION = "connection"
    QUERY = "query"
    INVALID_CREDENTIALS = "invalid_credentials"


class SqlAuthError(RuntimeError):
    """Base error carrying the id of the auth source that produced it."""

    kind: ErrorKind = ErrorKind.CONFIGURATION

    def __init__(self, auth_id: str, message: str) -> None:
        self.auth_id = auth_id
        self.message = message
        super().__init__(f"sqlauth:{auth_id}: {message}")


class ConfigurationError(SqlAuthError):
    """Raised for missing/mistyped configuration or a query that cannot be prepared."""

    kind = ErrorKind.CONFIGURATION


class DatabaseConnectionError(SqlAuthError):
    """Raised when no usable database connection could be opened."""

    kind = ErrorKind.CONNECTION


class QueryExecutionError(SqlAuthError):
    """Raised when a prepared query fails to execute or fetch."""

    kind = ErrorKind.QUERY


class InvalidCredentials(SqlAuthError):
    """Both databases returned no rows for the submitted username/password.

    This is the expected rejection path; `SqlAuthSource.login` returns it inside a
    `LoginResult` rather than raising it.
    """

    kind = ErrorKind.INVALID_CREDENTIALS
    code = "WRONGUSERPASS"

    def __init__(self, auth_id: str, message: str = "Wrong username or password.") -> None:
        super().__init__(auth_id, message)


__all__ = [
    "ConfigurationError",
    "DatabaseConnectionError",
    "ErrorKind",
    "InvalidCredentials",
    "QueryExecutionError",
    "SqlAuthError",
]
