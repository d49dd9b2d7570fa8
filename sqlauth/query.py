"""Runs the configured login query against an open connection."""

from __future__ import annotations

from .drivers import DatabaseConnection, DriverError
from .errors import ConfigurationError, QueryExecutionError
from .models import ResultRow


class LoginQuery:
    """The parameterized login query shared by both databases."""

    def __init__(self, auth_id: str, sql: str) -> None:
        self._auth_id = auth_id
        self._sql = sql

    @property
    def sql(self) -> str:
        return self._sql

    def run(self, connection: DatabaseConnection, username: str, password: str) -> list[ResultRow]:
        """Prepare, execute and fetch the query with `username`/`password` bound."""

        try:
            statement = connection.prepare(self._sql)
        except DriverError as exc:
            raise ConfigurationError(self._auth_id, f"- Failed to prepare query: {exc}") from exc

        try:
            statement.execute({"username": username, "password": password})
        except DriverError as exc:
            raise QueryExecutionError(self._auth_id, f"- Failed to execute query: {exc}") from exc

        try:
            return statement.fetch_all()
        except DriverError as exc:
            raise QueryExecutionError(self._auth_id, f"- Failed to fetch result set: {exc}") from exc


__all__ = ["LoginQuery"]
