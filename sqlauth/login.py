"""SQL auth source: username/password login with primary/secondary failover."""

from __future__ import annotations

import logging
from typing import Any, Callable, Mapping

from .attributes import collate
from .config import SqlAuthConfig
from .connections import ConnectionResolver, close_quietly
from .drivers import DatabaseConnection, DriverRegistry
from .errors import InvalidCredentials
from .models import LoginResult, ResultRow
from .query import LoginQuery

LOG = logging.getLogger(__name__)


class SqlAuthSource:
    """Authenticates users against rows returned by a configured SQL query.

    The query is run against the primary database (or the secondary, when the
    primary cannot be reached). If it returns no rows, it is run once more on a
    fresh connection to the secondary database. Rows from the attempt that
    matched are collated into the user's attributes.

    Instances hold only immutable configuration and can serve concurrent logins.
    """

    def __init__(
        self,
        auth_id: str,
        config: SqlAuthConfig,
        *,
        drivers: DriverRegistry | None = None,
    ) -> None:
        self.auth_id = auth_id
        self._config = config
        self._resolver = ConnectionResolver(
            auth_id,
            config.primary(),
            config.secondary(),
            drivers=drivers,
        )
        self._query = LoginQuery(auth_id, config.query)

    @classmethod
    def from_mapping(
        cls,
        auth_id: str,
        raw: Mapping[str, Any],
        *,
        drivers: DriverRegistry | None = None,
    ) -> SqlAuthSource:
        """Build a source from a raw configuration record."""

        return cls(auth_id, SqlAuthConfig.from_mapping(auth_id, raw), drivers=drivers)

    @property
    def config(self) -> SqlAuthConfig:
        return self._config

    def login(self, username: str, password: str) -> LoginResult:
        """Attempt to log in using the given username and password.

        Returns a `LoginResult` holding the attributes, or `InvalidCredentials`
        when neither database returned a row. Configuration, connection and
        query failures are raised.
        """

        rows = self._attempt(self._resolver.resolve_primary, username, password, attempt="primary")
        if not rows:
            rows = self._attempt(self._resolver.resolve_secondary, username, password, attempt="secondary")
            if not rows:
                LOG.error(
                    "sqlauth:%s: No rows in result set. Probably wrong username/password.",
                    self.auth_id,
                    extra={"auth_id": self.auth_id},
                )
                return LoginResult.rejected(InvalidCredentials(self.auth_id))

        attributes = collate(rows)
        LOG.info(
            "sqlauth:%s: Attributes: %s",
            self.auth_id,
            ",".join(attributes),
            extra={"auth_id": self.auth_id},
        )
        return LoginResult.success(attributes)

    def _attempt(
        self,
        resolve: Callable[[], DatabaseConnection],
        username: str,
        password: str,
        *,
        attempt: str,
    ) -> list[ResultRow]:
        connection = resolve()
        try:
            rows = self._query.run(connection, username, password)
        finally:
            close_quietly(connection)
        LOG.info(
            "sqlauth:%s: Got %d rows from database",
            self.auth_id,
            len(rows),
            extra={"auth_id": self.auth_id, "attempt": attempt},
        )
        return rows


__all__ = ["SqlAuthSource"]
