"""Database drivers and the scheme -> capability table used by the resolver."""

from __future__ import annotations

import asyncio
import re
import sqlite3
import threading
from dataclasses import dataclass
from typing import Any, Callable, Coroutine, Iterable, Mapping, Protocol, Sequence, runtime_checkable

import asyncpg
import pymysql
import pymysql.cursors

from .models import ConnectionSpec, ResultRow

QUERY_PARAMETERS = ("username", "password")

PGSQL_CONNECT_TIMEOUT = 3.0

_PLACEHOLDER = re.compile(r"'(?:[^']|'')*'|::|(?<!\w):([A-Za-z_][A-Za-z0-9_]*)")


class DriverError(RuntimeError):
    """Raised when a driver cannot connect, prepare, execute or fetch."""


@runtime_checkable
class PreparedQuery(Protocol):
    """A compiled query bound to one open connection."""

    def execute(self, params: Mapping[str, str]) -> None:
        """Run the query with the named parameters bound."""

    def fetch_all(self) -> list[ResultRow]:
        """Return every row of the last execution as column -> value mappings."""


@runtime_checkable
class DatabaseConnection(Protocol):
    """Protocol implemented by driver connections."""

    def execute(self, statement: str) -> None:
        """Run a statement that returns no rows (session setup)."""

    def prepare(self, query: str) -> PreparedQuery:
        """Compile a query using `:username`/`:password` placeholders."""

    def close(self) -> None:
        """Release the underlying session."""


Connector = Callable[[ConnectionSpec], DatabaseConnection]


def parse_dsn(dsn: str) -> tuple[str, dict[str, str]]:
    """Split `scheme:key=value;key=value` into its scheme and parameters."""

    scheme, _, rest = dsn.partition(":")
    params: dict[str, str] = {}
    for chunk in rest.split(";"):
        key, sep, value = chunk.partition("=")
        if sep and key.strip():
            params[key.strip().lower()] = value.strip()
    return scheme.lower(), params


def translate_placeholders(query: str, render: Callable[[str, int], str]) -> tuple[str, tuple[str, ...]]:
    """Rewrite `:name` placeholders with `render(name, position)`.

    Quoted literals and `::type` casts are kept as-is. Returns the rewritten query
    and the distinct parameter names in order of first use.
    """

    names: list[str] = []

    def _replace(match: re.Match[str]) -> str:
        name = match.group(1)
        if name is None:
            return match.group(0)
        if name not in QUERY_PARAMETERS:
            raise DriverError(f"Unknown query parameter ':{name}'")
        if name not in names:
            names.append(name)
        return render(name, names.index(name) + 1)

    return _PLACEHOLDER.sub(_replace, query), tuple(names)


def _bind(names: Sequence[str], params: Mapping[str, str]) -> dict[str, str]:
    return {name: params[name] for name in names}


# ---------------------------------------------------------------------------
# SQLite
# ---------------------------------------------------------------------------


class _SqlitePreparedQuery:
    def __init__(self, conn: sqlite3.Connection, query: str, names: tuple[str, ...]) -> None:
        self._conn = conn
        self._query = query
        self._names = names
        self._cursor: sqlite3.Cursor | None = None

    def execute(self, params: Mapping[str, str]) -> None:
        try:
            self._cursor = self._conn.execute(self._query, _bind(self._names, params))
        except sqlite3.Error as exc:
            raise DriverError(str(exc)) from exc

    def fetch_all(self) -> list[ResultRow]:
        if self._cursor is None:
            raise DriverError("Query has not been executed")
        try:
            rows = self._cursor.fetchall()
        except sqlite3.Error as exc:
            raise DriverError(str(exc)) from exc
        if self._cursor.description is None:
            return []
        columns = [column[0] for column in self._cursor.description]
        return [dict(zip(columns, row)) for row in rows]


class SqliteConnection:
    """SQLite connection; the DSN is `sqlite:<path>` or `sqlite::memory:`."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def execute(self, statement: str) -> None:
        try:
            self._conn.execute(statement)
        except sqlite3.Error as exc:
            raise DriverError(str(exc)) from exc

    def prepare(self, query: str) -> PreparedQuery:
        _, names = translate_placeholders(query, lambda name, _: f":{name}")
        try:
            # EXPLAIN compiles the statement without running it.
            self._conn.execute(f"EXPLAIN {query}", {name: "" for name in names})
        except sqlite3.Error as exc:
            raise DriverError(str(exc)) from exc
        return _SqlitePreparedQuery(self._conn, query, names)

    def close(self) -> None:
        try:
            self._conn.close()
        except sqlite3.Error as exc:
            raise DriverError(str(exc)) from exc


def connect_sqlite(spec: ConnectionSpec) -> SqliteConnection:
    path = spec.dsn.split(":", 1)[1] if ":" in spec.dsn else ""
    if not path:
        raise DriverError("SQLite DSN is missing a database path")
    try:
        conn = sqlite3.connect(path, **dict(spec.options))
    except (sqlite3.Error, TypeError, ValueError) as exc:
        raise DriverError(str(exc)) from exc
    return SqliteConnection(conn)


# ---------------------------------------------------------------------------
# MySQL
# ---------------------------------------------------------------------------


class _MysqlPreparedQuery:
    def __init__(self, conn: Any, query: str, names: tuple[str, ...]) -> None:
        self._conn = conn
        self._query = query
        self._names = names
        self._cursor: Any = None

    def execute(self, params: Mapping[str, str]) -> None:
        cursor = self._conn.cursor(pymysql.cursors.DictCursor)
        try:
            cursor.execute(self._query, _bind(self._names, params) if self._names else None)
        except pymysql.MySQLError as exc:
            cursor.close()
            raise DriverError(str(exc)) from exc
        self._cursor = cursor

    def fetch_all(self) -> list[ResultRow]:
        if self._cursor is None:
            raise DriverError("Query has not been executed")
        try:
            rows = self._cursor.fetchall()
        except pymysql.MySQLError as exc:
            raise DriverError(str(exc)) from exc
        finally:
            self._cursor.close()
            self._cursor = None
        return [dict(row) for row in rows]


class MysqlConnection:
    """MySQL/MariaDB connection backed by PyMySQL."""

    def __init__(self, conn: Any) -> None:
        self._conn = conn

    def execute(self, statement: str) -> None:
        try:
            with self._conn.cursor() as cursor:
                cursor.execute(statement)
        except pymysql.MySQLError as exc:
            raise DriverError(str(exc)) from exc

    def prepare(self, query: str) -> PreparedQuery:
        # PyMySQL interpolates client-side, so literal percent signs must be doubled.
        sql, names = translate_placeholders(query.replace("%", "%%"), lambda name, _: f"%({name})s")
        return _MysqlPreparedQuery(self._conn, sql if names else query, names)

    def close(self) -> None:
        try:
            self._conn.close()
        except pymysql.MySQLError as exc:
            raise DriverError(str(exc)) from exc


def connect_mysql(spec: ConnectionSpec) -> MysqlConnection:
    _, params = parse_dsn(spec.dsn)
    kwargs: dict[str, Any] = {"password": spec.password}
    if spec.user:
        kwargs["user"] = spec.user
    if "unix_socket" in params:
        kwargs["unix_socket"] = params["unix_socket"]
    else:
        kwargs["host"] = params.get("host", "localhost")
    if "port" in params:
        kwargs["port"] = _port(params["port"])
    if "dbname" in params:
        kwargs["database"] = params["dbname"]
    if "charset" in params:
        kwargs["charset"] = params["charset"]
    kwargs.update(spec.options)
    try:
        conn = pymysql.connect(**kwargs)
    # Bad option keys raise TypeError; an unknown charset surfaces as AttributeError.
    except (pymysql.MySQLError, TypeError, ValueError, AttributeError) as exc:
        raise DriverError(str(exc) or exc.__class__.__name__) from exc
    return MysqlConnection(conn)


# ---------------------------------------------------------------------------
# PostgreSQL
# ---------------------------------------------------------------------------


class _AsyncpgPreparedQuery:
    def __init__(self, owner: AsyncpgConnection, statement: Any, names: tuple[str, ...]) -> None:
        self._owner = owner
        self._statement = statement
        self._names = names
        self._records: Sequence[Any] | None = None

    def execute(self, params: Mapping[str, str]) -> None:
        args = [params[name] for name in self._names]
        self._records = self._owner._run(self._statement.fetch(*args))

    def fetch_all(self) -> list[ResultRow]:
        if self._records is None:
            raise DriverError("Query has not been executed")
        return [dict(record.items()) for record in self._records]


class AsyncpgConnection:
    """PostgreSQL connection driven synchronously on a private event loop thread."""

    def __init__(self, loop: asyncio.AbstractEventLoop, loop_thread: threading.Thread, conn: Any) -> None:
        self._loop = loop
        self._loop_thread = loop_thread
        self._conn = conn

    def execute(self, statement: str) -> None:
        self._run(self._conn.execute(statement))

    def prepare(self, query: str) -> PreparedQuery:
        sql, names = translate_placeholders(query, lambda _, position: f"${position}")
        statement = self._run(self._conn.prepare(sql))
        return _AsyncpgPreparedQuery(self, statement, names)

    def close(self) -> None:
        try:
            self._run(self._conn.close())
        finally:
            _stop_loop(self._loop, self._loop_thread)

    def _run(self, coro: Coroutine[Any, Any, Any]) -> Any:
        return _run_on(self._loop, coro)


def _start_loop() -> tuple[asyncio.AbstractEventLoop, threading.Thread]:
    loop = asyncio.new_event_loop()
    loop_thread = threading.Thread(target=loop.run_forever, name="sqlauth-asyncpg", daemon=True)
    loop_thread.start()
    return loop, loop_thread


def _stop_loop(loop: asyncio.AbstractEventLoop, loop_thread: threading.Thread) -> None:
    loop.call_soon_threadsafe(loop.stop)
    loop_thread.join(timeout=1)
    if not loop.is_running():
        loop.close()


def _run_on(loop: asyncio.AbstractEventLoop, coro: Coroutine[Any, Any, Any]) -> Any:
    future = asyncio.run_coroutine_threadsafe(coro, loop)
    try:
        return future.result()
    except Exception as exc:
        raise DriverError(str(exc) or exc.__class__.__name__) from exc


def connect_pgsql(spec: ConnectionSpec) -> AsyncpgConnection:
    _, params = parse_dsn(spec.dsn)
    kwargs: dict[str, Any] = {"host": params.get("host", "localhost")}
    if "port" in params:
        kwargs["port"] = _port(params["port"])
    if "dbname" in params:
        kwargs["database"] = params["dbname"]
    if "sslmode" in params:
        kwargs["ssl"] = params["sslmode"]
    kwargs["user"] = spec.user or params.get("user")
    kwargs["password"] = spec.password or params.get("password")
    kwargs.update(spec.options)
    kwargs.setdefault("timeout", PGSQL_CONNECT_TIMEOUT)
    # The loop runs on its own thread so callers inside a running event loop still work.
    loop, loop_thread = _start_loop()
    try:
        conn = _run_on(loop, _open_asyncpg(kwargs))
    except DriverError:
        _stop_loop(loop, loop_thread)
        raise
    return AsyncpgConnection(loop, loop_thread, conn)


async def _open_asyncpg(kwargs: dict[str, Any]) -> Any:
    return await asyncpg.connect(**kwargs)


def _port(value: str) -> int:
    try:
        return int(value)
    except ValueError as exc:
        raise DriverError(f"Invalid port '{value}'") from exc


# ---------------------------------------------------------------------------
# Capability table
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class DriverCapability:
    """How to open a connection for a DSN scheme and how to initialize its session."""

    scheme: str
    connect: Connector
    init_statements: tuple[str, ...] = ()


class DriverRegistry:
    """Maps DSN schemes to driver capabilities."""

    def __init__(self, capabilities: Iterable[DriverCapability] = ()) -> None:
        self._drivers: dict[str, DriverCapability] = {}
        self.register_many(capabilities)

    def register(self, capability: DriverCapability) -> None:
        """Register (or replace) the driver for a scheme."""

        self._drivers[capability.scheme.lower()] = capability

    def register_many(self, capabilities: Iterable[DriverCapability]) -> None:
        for capability in capabilities:
            self.register(capability)

    def get(self, scheme: str) -> DriverCapability:
        try:
            return self._drivers[scheme.lower()]
        except KeyError:
            raise DriverError(f"No driver registered for scheme '{scheme}'") from None

    def schemes(self) -> tuple[str, ...]:
        return tuple(self._drivers)


def default_drivers() -> DriverRegistry:
    """Return a fresh registry holding the built-in drivers."""

    return DriverRegistry(
        [
            DriverCapability("mysql", connect_mysql, ("SET NAMES 'utf8mb4'",)),
            DriverCapability("pgsql", connect_pgsql, ("SET NAMES 'UTF8'",)),
            DriverCapability("sqlite", connect_sqlite),
        ]
    )


DEFAULT_DRIVERS = default_drivers()


__all__ = [
    "AsyncpgConnection",
    "Connector",
    "DEFAULT_DRIVERS",
    "DatabaseConnection",
    "DriverCapability",
    "DriverError",
    "DriverRegistry",
    "MysqlConnection",
    "PreparedQuery",
    "QUERY_PARAMETERS",
    "SqliteConnection",
    "connect_mysql",
    "connect_pgsql",
    "connect_sqlite",
    "default_drivers",
    "parse_dsn",
    "translate_placeholders",
]
