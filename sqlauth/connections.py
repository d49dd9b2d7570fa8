"""Connection resolver: opens the primary database, falling back to the secondary."""

from __future__ import annotations

import logging
import re

from .drivers import DEFAULT_DRIVERS, DatabaseConnection, DriverError, DriverRegistry
from .errors import DatabaseConnectionError
from .models import ConnectionSpec

LOG = logging.getLogger(__name__)

MASK = "***"

_CREDENTIALS = re.compile(r"(user|password)=[^;]*", re.IGNORECASE)


def mask_dsn(dsn: str) -> str:
    """Replace `user=`/`password=` values in a DSN with a constant mask."""

    return _CREDENTIALS.sub(lambda match: f"{match.group(1)}={MASK}", dsn)


class ConnectionResolver:
    """Opens database sessions for one auth source.

    The resolver only holds immutable configuration; every call opens a new
    connection that the caller must close.
    """

    def __init__(
        self,
        auth_id: str,
        primary: ConnectionSpec,
        secondary: ConnectionSpec,
        *,
        drivers: DriverRegistry | None = None,
    ) -> None:
        self._auth_id = auth_id
        self._primary = primary
        self._secondary = secondary
        self._drivers = drivers or DEFAULT_DRIVERS

    def resolve_primary(self) -> DatabaseConnection:
        """Connect to the primary database, or to the secondary if the primary is down."""

        try:
            return self._open(self._primary)
        except DriverError as primary_exc:
            LOG.warning(
                "Primary database unreachable, trying secondary",
                extra={
                    "auth_id": self._auth_id,
                    "dsn": mask_dsn(self._primary.dsn),
                    "error": str(primary_exc),
                },
            )
        try:
            return self._open(self._secondary)
        except DriverError as exc:
            raise DatabaseConnectionError(
                self._auth_id,
                f"- Failed to connect to '{mask_dsn(self._primary.dsn)}': {exc}",
            ) from exc

    def resolve_secondary(self) -> DatabaseConnection:
        """Connect to the secondary database only."""

        try:
            return self._open(self._secondary)
        except DriverError as exc:
            raise DatabaseConnectionError(
                self._auth_id,
                f"- Failed to connect to '{mask_dsn(self._secondary.dsn)}': {exc}",
            ) from exc

    def _open(self, spec: ConnectionSpec) -> DatabaseConnection:
        capability = self._drivers.get(spec.scheme)
        connection = capability.connect(spec)
        try:
            for statement in capability.init_statements:
                connection.execute(statement)
        except DriverError:
            close_quietly(connection)
            raise
        LOG.debug(
            "Opened database connection",
            extra={"auth_id": self._auth_id, "dsn": mask_dsn(spec.dsn), "scheme": spec.scheme},
        )
        return connection


def close_quietly(connection: DatabaseConnection) -> None:
    try:
        connection.close()
    except DriverError:
        LOG.debug("Ignoring error while closing connection", exc_info=True)


__all__ = ["ConnectionResolver", "MASK", "close_quietly", "mask_dsn"]
