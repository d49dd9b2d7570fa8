"""Utility that launches primary + replica PostgreSQL Docker containers for sqlauth."""

from __future__ import annotations

import argparse
import subprocess
import sys
import time
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from sqlauth.config import CONFIG_FILE, AppConfig, load_config, save_config

DEFAULT_SOURCE = "sample-sql"
DEFAULT_CONTAINERS = ("sqlauth-primary", "sqlauth-replica")
DEFAULT_PORTS = (5543, 5544)
DEFAULT_PASSWORD = "sqlauth"
DEFAULT_DB = "sqlauth_idp"
DEFAULT_USER = "sqlauth"
DOCKER_IMAGE = "postgres:16-alpine"

LOGIN_QUERY = (
    "SELECT u.uid, u.mail, u.display_name AS \"displayName\", m.group_name AS \"memberOf\" "
    "FROM users u LEFT JOIN memberships m ON m.uid = u.uid "
    "WHERE u.uid = :username "
    "AND u.password_hash = encode(sha256(convert_to(:password, 'UTF8')), 'hex') "
    "ORDER BY m.group_name"
)


def run(cmd: list[str], *, check: bool = True, **kwargs) -> subprocess.CompletedProcess[str]:
    print("$", " ".join(cmd))
    return subprocess.run(cmd, check=check, text=True, **kwargs)


def container_exists(name: str) -> bool:
    result = subprocess.run(
        ["docker", "ps", "-a", "--filter", f"name={name}", "--format", "{{.ID}}"],
        text=True,
        capture_output=True,
    )
    return bool(result.stdout.strip())


def start_container(name: str, port: int, password: str, database: str, user: str) -> None:
    if container_exists(name):
        print(f"Container '{name}' already exists. Reusing it.")
        run(["docker", "start", name], check=False)
    else:
        run(
            [
                "docker",
                "run",
                "-d",
                "--name",
                name,
                "-e",
                f"POSTGRES_PASSWORD={password}",
                "-e",
                f"POSTGRES_DB={database}",
                "-e",
                f"POSTGRES_USER={user}",
                "-p",
                f"{port}:5432",
                DOCKER_IMAGE,
            ]
        )
    wait_for_start(name, user)


def wait_for_start(name: str, user: str, retries: int = 15, delay: float = 1.0) -> None:
    for _ in range(retries):
        result = subprocess.run(["docker", "exec", name, "pg_isready", "-U", user], text=True)
        if result.returncode == 0:
            return
        time.sleep(delay)
    print("Warning: database did not report ready state; continuing anyway.")


def seed_data(name: str, database: str, user: str, *, replica: bool) -> None:
    # Only the replica knows erin, so the empty-result retry is easy to try.
    late_user = ",\n        ('erin', 'erin@example.com', 'Erin', encode(sha256('erin'::bytea), 'hex'))" if replica else ""
    sql = f"""
    CREATE TABLE IF NOT EXISTS users (
        uid TEXT PRIMARY KEY,
        mail TEXT NOT NULL,
        display_name TEXT,
        password_hash TEXT NOT NULL
    );
    CREATE TABLE IF NOT EXISTS memberships (
        uid TEXT REFERENCES users(uid),
        group_name TEXT NOT NULL,
        PRIMARY KEY (uid, group_name)
    );
    INSERT INTO users (uid, mail, display_name, password_hash) VALUES
        ('anna', 'anna@example.com', 'Anna', encode(sha256('anna'::bytea), 'hex')),
        ('ben', 'ben@example.com', NULL, encode(sha256('ben'::bytea), 'hex')){late_user}
    ON CONFLICT DO NOTHING;
    INSERT INTO memberships (uid, group_name) VALUES
        ('anna', 'staff'),
        ('anna', 'admins'),
        ('ben', 'staff')
    ON CONFLICT DO NOTHING;
    """.strip()

    run(
        ["docker", "exec", "-i", name, "psql", "-U", user, "-d", database, "-v", "ON_ERROR_STOP=1"],
        input=sql,
    )


def update_config(source: str, ports: tuple[int, int], user: str, database: str, password: str) -> None:
    try:
        config = load_config()
    except Exception:
        config = AppConfig()
    if source in config.sources:
        print(f"Source '{source}' already present in config; leaving as-is.")
        return
    primary_port, replica_port = ports
    config = config.with_source(
        source,
        {
            "dsn1": f"pgsql:host=localhost;port={primary_port};dbname={database}",
            "dsn2": f"pgsql:host=localhost;port={replica_port};dbname={database}",
            "username1": user,
            "username2": user,
            "password1": password,
            "password2": password,
            "query": LOGIN_QUERY,
            "options1": {"timeout": 3.0},
            "options2": {"timeout": 3.0},
        },
    )
    save_config(config)
    print(f"Added '{source}' source to {CONFIG_FILE}.")


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--source", default=DEFAULT_SOURCE, help="Auth source id to register")
    parser.add_argument("--primary-port", type=int, default=DEFAULT_PORTS[0], help="Host port of the primary")
    parser.add_argument("--replica-port", type=int, default=DEFAULT_PORTS[1], help="Host port of the replica")
    parser.add_argument("--password", default=DEFAULT_PASSWORD, help="Postgres password")
    parser.add_argument("--database", default=DEFAULT_DB, help="Database name to create")
    parser.add_argument("--user", default=DEFAULT_USER, help="Database user")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv or sys.argv[1:])
    ports = (args.primary_port, args.replica_port)
    try:
        for name, port in zip(DEFAULT_CONTAINERS, ports):
            start_container(name, port, args.password, args.database, args.user)
            seed_data(name, args.database, args.user, replica=name == DEFAULT_CONTAINERS[1])
    except FileNotFoundError:
        print("Docker is not installed or not on PATH.")
        return 1
    update_config(args.source, ports, args.user, args.database, args.password)
    print(
        f"Sample databases are ready. Log in through the '{args.source}' source, "
        "e.g. user 'anna' with password 'anna'."
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
