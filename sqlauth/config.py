"""Auth source configuration validation and app config loading helpers."""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any, Mapping

import tomllib

from pydantic import BaseModel, ConfigDict, Field, StrictStr, ValidationError

from .errors import ConfigurationError
from .models import ConnectionSpec

LOG = logging.getLogger(__name__)

CONFIG_FILE = Path.home() / ".config" / "sqlauth" / "config.toml"

_OPTION_FIELDS = ("options1", "options2")
_SECRET_FIELDS = ("password1", "password2")
_BARE_KEY = re.compile(r"^[A-Za-z0-9_-]+$")


class SqlAuthConfig(BaseModel):
    """Configuration record of a single SQL auth source."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    dsn1: StrictStr
    dsn2: StrictStr
    username1: StrictStr
    username2: StrictStr
    password1: StrictStr = Field(repr=False)
    password2: StrictStr = Field(repr=False)
    query: StrictStr
    options1: dict[str, Any] | None = None
    options2: dict[str, Any] | None = None

    @classmethod
    def from_mapping(cls, auth_id: str, raw: Mapping[str, Any]) -> SqlAuthConfig:
        """Validate a raw configuration record, reporting the first bad field."""

        if not isinstance(raw, Mapping):
            raise ConfigurationError(
                auth_id,
                f"Expected configuration for authentication source {auth_id} to be a mapping. "
                f"Instead it was: {raw!r}",
            )
        try:
            return cls.model_validate(dict(raw))
        except ValidationError as exc:
            # ValidationError text repeats the raw input, passwords included.
            raise _translate_error(auth_id, raw, exc) from None

    def primary(self) -> ConnectionSpec:
        return ConnectionSpec(
            dsn=self.dsn1,
            user=self.username1,
            password=self.password1,
            options=dict(self.options1 or {}),
        )

    def secondary(self) -> ConnectionSpec:
        return ConnectionSpec(
            dsn=self.dsn2,
            user=self.username2,
            password=self.password2,
            options=dict(self.options2 or {}),
        )


def _translate_error(auth_id: str, raw: Mapping[str, Any], exc: ValidationError) -> ConfigurationError:
    error = exc.errors()[0]
    param = str(error["loc"][0]) if error["loc"] else "?"
    if error["type"] == "missing":
        return ConfigurationError(
            auth_id,
            f"Missing required attribute '{param}' for authentication source {auth_id}",
        )
    expected = "a mapping" if param in _OPTION_FIELDS else "a string"
    value = raw.get(param)
    shown = f"<redacted {type(value).__name__}>" if param in _SECRET_FIELDS else repr(value)
    return ConfigurationError(
        auth_id,
        f"Expected parameter '{param}' for authentication source {auth_id} to be {expected}. "
        f"Instead it was: {shown}",
    )


class AppConfig(BaseModel):
    """Shape of the application configuration file."""

    sources: dict[str, dict[str, Any]] = Field(default_factory=dict)

    def source_config(self, auth_id: str) -> SqlAuthConfig:
        """Validate and return the configuration of one auth source."""

        if auth_id not in self.sources:
            raise ConfigurationError(auth_id, f"No configuration for authentication source {auth_id}")
        return SqlAuthConfig.from_mapping(auth_id, self.sources[auth_id])

    def with_source(self, auth_id: str, values: Mapping[str, Any]) -> AppConfig:
        """Return a copy with the given source added or replaced."""

        sources = dict(self.sources)
        sources[auth_id] = dict(values)
        return self.model_copy(update={"sources": sources})

    def without_source(self, auth_id: str) -> AppConfig:
        sources = dict(self.sources)
        sources.pop(auth_id, None)
        return self.model_copy(update={"sources": sources})


def load_config() -> AppConfig:
    """Load configuration from disk; fall back to defaults if missing."""

    try:
        data = _read_config_file()
    except FileNotFoundError:
        return AppConfig()
    except (tomllib.TOMLDecodeError, OSError) as exc:
        LOG.warning("Ignoring unreadable config file", extra={"path": str(CONFIG_FILE), "error": str(exc)})
        return AppConfig()
    return AppConfig(sources=data.get("sources", {}))


def save_config(config: AppConfig) -> None:
    """Persist configuration to disk."""

    CONFIG_FILE.parent.mkdir(parents=True, exist_ok=True)
    lines: list[str] = []
    for auth_id in sorted(config.sources):
        values = config.sources[auth_id]
        header = f"sources.{_toml_key(auth_id)}"
        lines.append(f"[{header}]")
        tables: list[tuple[str, Mapping[str, Any]]] = []
        for key, value in values.items():
            if isinstance(value, Mapping):
                tables.append((key, value))
            elif value is not None:
                lines.append(f"{_toml_key(key)} = {_toml_value(value)}")
        lines.append("")
        for key, table in tables:
            lines.append(f"[{header}.{_toml_key(key)}]")
            for name, value in table.items():
                if value is not None:
                    lines.append(f"{_toml_key(name)} = {_toml_value(value)}")
            lines.append("")
    CONFIG_FILE.write_text("\n".join(lines))


def _read_config_file() -> dict[str, object]:
    with CONFIG_FILE.open("rb") as handle:
        raw = tomllib.load(handle)
    data: dict[str, object] = {}
    sources = raw.get("sources")
    if isinstance(sources, dict):
        parsed: dict[str, dict[str, Any]] = {}
        for auth_id, values in sources.items():
            if isinstance(values, dict):
                parsed[str(auth_id)] = dict(values)
        data["sources"] = parsed
    return data


def _toml_key(key: str) -> str:
    if _BARE_KEY.match(key):
        return key
    return json.dumps(key)


def _toml_value(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return repr(value)
    return json.dumps(str(value))


__all__ = [
    "AppConfig",
    "CONFIG_FILE",
    "SqlAuthConfig",
    "load_config",
    "save_config",
]
