"""SQL-backed username/password authentication with replica failover."""

from __future__ import annotations

__version__ = "0.1.0"

from .attributes import collate
from .config import AppConfig, SqlAuthConfig, load_config, save_config
from .connections import ConnectionResolver, mask_dsn
from .drivers import DEFAULT_DRIVERS, DriverCapability, DriverError, DriverRegistry
from .errors import (
    ConfigurationError,
    DatabaseConnectionError,
    ErrorKind,
    InvalidCredentials,
    QueryExecutionError,
    SqlAuthError,
)
from .login import SqlAuthSource
from .models import AttributeMap, ConnectionSpec, LoginResult, ResultRow
from .registry import AuthSourceRegistry, UnknownAuthSource, UserPassSource

__all__ = [
    "AppConfig",
    "AttributeMap",
    "AuthSourceRegistry",
    "ConfigurationError",
    "ConnectionResolver",
    "ConnectionSpec",
    "DEFAULT_DRIVERS",
    "DatabaseConnectionError",
    "DriverCapability",
    "DriverError",
    "DriverRegistry",
    "ErrorKind",
    "InvalidCredentials",
    "LoginResult",
    "QueryExecutionError",
    "ResultRow",
    "SqlAuthConfig",
    "SqlAuthError",
    "SqlAuthSource",
    "UnknownAuthSource",
    "UserPassSource",
    "collate",
    "load_config",
    "mask_dsn",
    "save_config",
]
