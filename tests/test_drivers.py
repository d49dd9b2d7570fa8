"""Tests for DSN parsing, placeholder translation and the built-in drivers."""

from __future__ import annotations

import asyncio
import threading
from pathlib import Path
from typing import Any

import pytest

from sqlauth.drivers import (
    DEFAULT_DRIVERS,
    DriverCapability,
    DriverError,
    DriverRegistry,
    connect_mysql,
    connect_pgsql,
    connect_sqlite,
    parse_dsn,
    translate_placeholders,
)
from sqlauth.models import ConnectionSpec

LOGIN_SQL = "SELECT uid, mail FROM users WHERE uid = :username AND password = :password"


def test_parse_dsn_splits_scheme_and_parameters() -> None:
    scheme, params = parse_dsn("PgSQL:host=db1; port=5433;dbname=idp;;user=svc")

    assert scheme == "pgsql"
    assert params == {"host": "db1", "port": "5433", "dbname": "idp", "user": "svc"}


def test_translate_placeholders_numbers_distinct_names() -> None:
    sql, names = translate_placeholders(
        "SELECT :username AS u WHERE :password = p AND :username <> ''",
        lambda _, position: f"${position}",
    )

    assert sql == "SELECT $1 AS u WHERE $2 = p AND $1 <> ''"
    assert names == ("username", "password")


def test_translate_placeholders_leaves_literals_and_casts_alone() -> None:
    sql, names = translate_placeholders(
        "SELECT ':password', created::text, 'it''s :username' FROM t WHERE uid = :username",
        lambda name, _: f"%({name})s",
    )

    assert sql == "SELECT ':password', created::text, 'it''s :username' FROM t WHERE uid = %(username)s"
    assert names == ("username",)


def test_translate_placeholders_rejects_unknown_names() -> None:
    with pytest.raises(DriverError, match=":realm"):
        translate_placeholders("SELECT 1 WHERE realm = :realm", lambda name, _: name)


def test_default_drivers_cover_builtin_schemes() -> None:
    assert set(DEFAULT_DRIVERS.schemes()) == {"mysql", "pgsql", "sqlite"}
    assert DEFAULT_DRIVERS.get("MYSQL").init_statements == ("SET NAMES 'utf8mb4'",)
    assert DEFAULT_DRIVERS.get("pgsql").init_statements == ("SET NAMES 'UTF8'",)
    assert DEFAULT_DRIVERS.get("sqlite").init_statements == ()


def test_registry_rejects_unknown_scheme_and_accepts_new_ones() -> None:
    registry = DriverRegistry()

    with pytest.raises(DriverError, match="oci"):
        registry.get("oci")

    registry.register(DriverCapability("OCI", connect_sqlite))
    assert registry.get("oci").connect is connect_sqlite


# ---------------------------------------------------------------------------
# SQLite
# ---------------------------------------------------------------------------


def test_sqlite_driver_runs_named_queries() -> None:
    connection = connect_sqlite(ConnectionSpec(dsn="sqlite::memory:", user="", password=""))
    try:
        connection.execute("CREATE TABLE users (uid TEXT, password TEXT, mail TEXT)")
        connection.execute("INSERT INTO users VALUES ('alice', 'secret', 'alice@example.org')")

        statement = connection.prepare(LOGIN_SQL)
        statement.execute({"username": "alice", "password": "secret"})

        assert statement.fetch_all() == [{"uid": "alice", "mail": "alice@example.org"}]
    finally:
        connection.close()


def test_sqlite_prepare_reports_compile_errors() -> None:
    connection = connect_sqlite(ConnectionSpec(dsn="sqlite::memory:", user="", password=""))
    try:
        with pytest.raises(DriverError, match="no such table"):
            connection.prepare(LOGIN_SQL)
    finally:
        connection.close()


def test_sqlite_connect_fails_for_unreachable_path(tmp_path: Path) -> None:
    spec = ConnectionSpec(dsn=f"sqlite:{tmp_path / 'missing' / 'users.sqlite'}", user="", password="")

    with pytest.raises(DriverError):
        connect_sqlite(spec)


def test_sqlite_connect_wraps_unknown_options() -> None:
    spec = ConnectionSpec(dsn="sqlite::memory:", user="", password="", options={"connect_timeout": 3})

    with pytest.raises(DriverError, match="connect_timeout"):
        connect_sqlite(spec)


# ---------------------------------------------------------------------------
# MySQL
# ---------------------------------------------------------------------------


class _FakeCursor:
    def __init__(self, owner: "_FakeMysqlConnection") -> None:
        self._owner = owner

    def __enter__(self) -> "_FakeCursor":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def execute(self, query: str, args: Any = None) -> int:
        self._owner.executed.append((query, args))
        return len(self._owner.rows)

    def fetchall(self) -> list[dict[str, Any]]:
        return self._owner.rows

    def close(self) -> None:
        self._owner.cursors_closed += 1


class _FakeMysqlConnection:
    def __init__(self, rows: list[dict[str, Any]]) -> None:
        self.rows = rows
        self.executed: list[tuple[str, Any]] = []
        self.cursors_closed = 0
        self.closed = False

    def cursor(self, cursor: Any = None) -> _FakeCursor:
        return _FakeCursor(self)

    def close(self) -> None:
        self.closed = True


def test_mysql_driver_translates_dsn_and_placeholders(monkeypatch: pytest.MonkeyPatch) -> None:
    fake = _FakeMysqlConnection(rows=[{"uid": "alice", "mail": "alice@example.org"}])
    seen: dict[str, Any] = {}

    def _connect(**kwargs: Any) -> _FakeMysqlConnection:
        seen.update(kwargs)
        return fake

    monkeypatch.setattr("sqlauth.drivers.pymysql.connect", _connect)
    spec = ConnectionSpec(
        dsn="mysql:host=db1;port=3307;dbname=idp;charset=utf8mb4",
        user="reader",
        password="pw",
        options={"connect_timeout": 5},
    )

    connection = connect_mysql(spec)
    statement = connection.prepare("SELECT uid, mail FROM users WHERE uid = :username AND note LIKE '50%'")
    statement.execute({"username": "alice", "password": "ignored"})
    rows = statement.fetch_all()
    connection.close()

    assert seen == {
        "host": "db1",
        "port": 3307,
        "database": "idp",
        "charset": "utf8mb4",
        "user": "reader",
        "password": "pw",
        "connect_timeout": 5,
    }
    assert fake.executed == [
        ("SELECT uid, mail FROM users WHERE uid = %(username)s AND note LIKE '50%%'", {"username": "alice"})
    ]
    assert rows == [{"uid": "alice", "mail": "alice@example.org"}]
    assert fake.cursors_closed == 1
    assert fake.closed is True


def test_mysql_driver_wraps_connect_errors(monkeypatch: pytest.MonkeyPatch) -> None:
    import pymysql

    def _broken(**kwargs: Any) -> None:
        raise pymysql.err.OperationalError(2003, "Can't connect to MySQL server on 'db1'")

    monkeypatch.setattr("sqlauth.drivers.pymysql.connect", _broken)

    with pytest.raises(DriverError, match="Can't connect"):
        connect_mysql(ConnectionSpec(dsn="mysql:host=db1", user="reader", password="pw"))


def test_mysql_driver_wraps_unknown_options() -> None:
    spec = ConnectionSpec(dsn="mysql:host=127.0.0.1;port=1", user="reader", password="pw", options={"bogus_option": 1})

    with pytest.raises(DriverError, match="bogus_option"):
        connect_mysql(spec)


def test_mysql_driver_wraps_unknown_charset(monkeypatch: pytest.MonkeyPatch) -> None:
    def _connect(**kwargs: Any) -> None:
        # PyMySQL looks the charset up and dereferences the missing entry.
        raise AttributeError("'NoneType' object has no attribute 'encoding'")

    monkeypatch.setattr("sqlauth.drivers.pymysql.connect", _connect)

    with pytest.raises(DriverError, match="encoding"):
        connect_mysql(ConnectionSpec(dsn="mysql:host=db1;charset=latin-9", user="reader", password="pw"))


# ---------------------------------------------------------------------------
# PostgreSQL
# ---------------------------------------------------------------------------


class _FakeStatement:
    def __init__(self, rows: list[dict[str, Any]]) -> None:
        self.rows = rows
        self.args: tuple[Any, ...] | None = None

    async def fetch(self, *args: Any) -> list[dict[str, Any]]:
        self.args = args
        return self.rows


class _FakePgConnection:
    def __init__(self, rows: list[dict[str, Any]]) -> None:
        self.statement = _FakeStatement(rows)
        self.executed: list[str] = []
        self.prepared: str | None = None
        self.closed = False

    async def execute(self, sql: str) -> str:
        self.executed.append(sql)
        return "SET"

    async def prepare(self, sql: str) -> _FakeStatement:
        self.prepared = sql
        return self.statement

    async def close(self) -> None:
        self.closed = True


def test_pgsql_driver_prepares_positional_statements(monkeypatch: pytest.MonkeyPatch) -> None:
    fake = _FakePgConnection(rows=[{"uid": "alice", "mail": "alice@example.org"}])
    seen: dict[str, Any] = {}

    async def _connect(**kwargs: Any) -> _FakePgConnection:
        seen.update(kwargs)
        return fake

    monkeypatch.setattr("sqlauth.drivers.asyncpg.connect", _connect)
    spec = ConnectionSpec(dsn="pgsql:host=db1;port=5433;dbname=idp", user="reader", password="pw")

    connection = connect_pgsql(spec)
    connection.execute("SET NAMES 'UTF8'")
    statement = connection.prepare(LOGIN_SQL)
    statement.execute({"username": "alice", "password": "secret"})
    rows = statement.fetch_all()
    connection.close()

    assert seen == {
        "host": "db1",
        "port": 5433,
        "database": "idp",
        "user": "reader",
        "password": "pw",
        "timeout": 3.0,
    }
    assert fake.executed == ["SET NAMES 'UTF8'"]
    assert fake.prepared == "SELECT uid, mail FROM users WHERE uid = $1 AND password = $2"
    assert fake.statement.args == ("alice", "secret")
    assert rows == [{"uid": "alice", "mail": "alice@example.org"}]
    assert fake.closed is True


def test_pgsql_driver_uses_dsn_credentials_when_spec_has_none(monkeypatch: pytest.MonkeyPatch) -> None:
    seen: dict[str, Any] = {}

    async def _connect(**kwargs: Any) -> _FakePgConnection:
        seen.update(kwargs)
        return _FakePgConnection(rows=[])

    monkeypatch.setattr("sqlauth.drivers.asyncpg.connect", _connect)

    connection = connect_pgsql(
        ConnectionSpec(dsn="pgsql:host=db1;user=svc;password=dsn-pw", user="", password="", options={"timeout": 9})
    )
    connection.close()

    assert seen["user"] == "svc"
    assert seen["password"] == "dsn-pw"
    assert seen["timeout"] == 9


def test_pgsql_driver_surfaces_connection_errors(monkeypatch: pytest.MonkeyPatch) -> None:
    async def _broken(**kwargs: Any) -> None:
        raise OSError("Connection refused")

    monkeypatch.setattr("sqlauth.drivers.asyncpg.connect", _broken)

    with pytest.raises(DriverError, match="Connection refused"):
        connect_pgsql(ConnectionSpec(dsn="pgsql:host=db1", user="reader", password="pw"))


def test_pgsql_driver_works_inside_a_running_event_loop(monkeypatch: pytest.MonkeyPatch) -> None:
    fake = _FakePgConnection(rows=[{"uid": "alice"}])

    async def _connect(**kwargs: Any) -> _FakePgConnection:
        return fake

    monkeypatch.setattr("sqlauth.drivers.asyncpg.connect", _connect)

    async def _login() -> list[dict[str, Any]]:
        connection = connect_pgsql(ConnectionSpec(dsn="pgsql:host=db1", user="reader", password="pw"))
        try:
            statement = connection.prepare(LOGIN_SQL)
            statement.execute({"username": "alice", "password": "secret"})
            return statement.fetch_all()
        finally:
            connection.close()

    assert asyncio.run(_login()) == [{"uid": "alice"}]
    assert fake.closed is True


def test_pgsql_driver_stops_its_loop_thread(monkeypatch: pytest.MonkeyPatch) -> None:
    async def _connect(**kwargs: Any) -> _FakePgConnection:
        return _FakePgConnection(rows=[])

    async def _broken(**kwargs: Any) -> None:
        raise OSError("Connection refused")

    def _loop_threads() -> list[threading.Thread]:
        return [thread for thread in threading.enumerate() if thread.name == "sqlauth-asyncpg"]

    before = len(_loop_threads())
    monkeypatch.setattr("sqlauth.drivers.asyncpg.connect", _connect)
    connect_pgsql(ConnectionSpec(dsn="pgsql:host=db1", user="reader", password="pw")).close()
    monkeypatch.setattr("sqlauth.drivers.asyncpg.connect", _broken)
    with pytest.raises(DriverError):
        connect_pgsql(ConnectionSpec(dsn="pgsql:host=db1", user="reader", password="pw"))

    assert len(_loop_threads()) == before


def test_pgsql_driver_wraps_invalid_options(monkeypatch: pytest.MonkeyPatch) -> None:
    async def _connect(*, host: str, user: str, password: str, timeout: float) -> None:
        raise AssertionError("unreachable")

    monkeypatch.setattr("sqlauth.drivers.asyncpg.connect", _connect)

    with pytest.raises(DriverError, match="bogus"):
        connect_pgsql(ConnectionSpec(dsn="pgsql:host=db1", user="reader", password="pw", options={"bogus": 1}))
