"""Configuration loading and validation.

Reads a TOML file, resolves ``${VAR}`` references from the environment,
validates every section and returns an :class:`AppConfig` dataclass.

Example::

    log_level = "INFO"

    [churchtools]
    host = "example.church.tools"
    login_token = "${CT_LOGIN_TOKEN}"
    pull_frequency_seconds = 60

    [[rooms]]
    churchtools_id = 12
    name = "Hall"
    location_hint = "Ground floor"
"""

from __future__ import annotations

import os
import re
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

CONFIG_ENV_VAR = "ROOM_OVERVIEW_CONFIG"
DEFAULT_CONFIG_PATH = Path("/etc/room-overview/config.toml")

_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")
_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
_LOG_FORMATS = ("text", "json")


class ConfigError(Exception):
    """Raised when configuration is missing, malformed, or invalid."""


@dataclass
class ChurchToolsConfig:
    """Upstream connection settings from ``[churchtools]``."""

    host: str
    login_token: str = field(repr=False)
    pull_frequency_seconds: float = 60.0
    window_days: int = 1
    request_timeout_seconds: float = 20.0


@dataclass
class SyncConfig:
    """Retry policy from ``[sync]``."""

    run_on_startup: bool = True
    backoff_base_seconds: float = 30.0
    backoff_max_seconds: float = 900.0


@dataclass
class DatabaseConfig:
    """PostgreSQL settings from ``[database]``.

    When ``url`` is unset the connection falls back to ``DATABASE_URL`` or
    the individual ``POSTGRES_*`` environment variables.
    """

    url: str | None = field(default=None, repr=False)
    name: str | None = None
    min_pool_size: int = 1
    max_pool_size: int = 5


@dataclass
class WebConfig:
    """HTTP listener and presentation settings from ``[web]``."""

    addr: str = "0.0.0.0"
    port: int = 8080
    timezone: str = "Europe/Berlin"
    calendar_name: str = "Room Overview"

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


@dataclass
class LoggingConfig:
    """Logging configuration from ``[logging]``."""

    level: str = "INFO"
    format: str = "text"  # "text" or "json"
    log_root: str | None = None


@dataclass(frozen=True)
class RoomConfig:
    """A single ``[[rooms]]`` entry mapping a ChurchTools resource to a display name."""

    churchtools_id: int
    name: str
    location_hint: str = ""

    @property
    def ics_location(self) -> str:
        if self.location_hint:
            return f"{self.name} - {self.location_hint}"
        return self.name


@dataclass
class AppConfig:
    """Parsed and validated service configuration."""

    churchtools: ChurchToolsConfig
    rooms: list[RoomConfig]
    sync: SyncConfig = field(default_factory=SyncConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    web: WebConfig = field(default_factory=WebConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    source_path: Path | None = None

    @property
    def resource_ids(self) -> list[int]:
        return [room.churchtools_id for room in self.rooms]

    def room_by_id(self, resource_id: int) -> RoomConfig | None:
        for room in self.rooms:
            if room.churchtools_id == resource_id:
                return room
        return None


def resolve_env_vars(value: Any) -> Any:
    """Recursively resolve ``${VAR_NAME}`` references in config values.

    Raises
    ------
    ConfigError
        If a referenced environment variable is not set.
    """
    if isinstance(value, dict):
        return {k: resolve_env_vars(v) for k, v in value.items()}

    if isinstance(value, list):
        return [resolve_env_vars(item) for item in value]

    if isinstance(value, str):
        return _resolve_string(value)

    return value


def _resolve_string(s: str) -> str:
    missing: list[str] = []

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        env_value = os.environ.get(var_name)
        if env_value is None:
            missing.append(var_name)
            return match.group(0)
        return env_value

    result = _ENV_VAR_PATTERN.sub(_replace, s)

    if missing:
        # The original value may hold a secret, so only the names are reported.
        raise ConfigError(f"Unresolved environment variable(s) in config: {', '.join(missing)}")

    return result


def resolve_config_path(explicit: str | Path | None = None) -> Path:
    """Pick the config file: explicit path, then ``$ROOM_OVERVIEW_CONFIG``, then the default."""
    if explicit:
        return Path(explicit)
    from_env = os.environ.get(CONFIG_ENV_VAR)
    if from_env:
        return Path(from_env)
    return DEFAULT_CONFIG_PATH


# ---------------------------------------------------------------------------
# Field helpers
# ---------------------------------------------------------------------------


def _section(data: dict[str, Any], name: str, *, required: bool = False) -> dict[str, Any]:
    section = data.get(name)
    if section is None:
        if required:
            raise ConfigError(f"Missing [{name}] section in config")
        return {}
    if not isinstance(section, dict):
        raise ConfigError(f"[{name}] must be a TOML table")
    return section


def _str(section: dict[str, Any], path: str, key: str, default: str | None = None) -> str:
    value = section.get(key, default)
    if value is None:
        raise ConfigError(f"Missing required field: {path}.{key}")
    if not isinstance(value, str) or not value.strip():
        raise ConfigError(f"{path}.{key} must be a non-empty string")
    return value.strip()


def _positive_number(section: dict[str, Any], path: str, key: str, default: float) -> float:
    value = section.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int | float):
        raise ConfigError(f"{path}.{key} must be a number, got {value!r}")
    if value <= 0:
        raise ConfigError(f"{path}.{key} must be positive, got {value!r}")
    return float(value)


def _positive_int(section: dict[str, Any], path: str, key: str, default: int) -> int:
    value = section.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"{path}.{key} must be an integer, got {value!r}")
    if value <= 0:
        raise ConfigError(f"{path}.{key} must be positive, got {value!r}")
    return value


# ---------------------------------------------------------------------------
# Section parsers
# ---------------------------------------------------------------------------


def _parse_churchtools(data: dict[str, Any]) -> ChurchToolsConfig:
    section = _section(data, "churchtools", required=True)
    return ChurchToolsConfig(
        host=_str(section, "churchtools", "host").removeprefix("https://").rstrip("/"),
        login_token=_str(section, "churchtools", "login_token"),
        pull_frequency_seconds=_positive_number(
            section, "churchtools", "pull_frequency_seconds", 60.0
        ),
        window_days=_positive_int(section, "churchtools", "window_days", 1),
        request_timeout_seconds=_positive_number(
            section, "churchtools", "request_timeout_seconds", 20.0
        ),
    )


def _parse_sync(data: dict[str, Any]) -> SyncConfig:
    section = _section(data, "sync")
    run_on_startup = section.get("run_on_startup", True)
    if not isinstance(run_on_startup, bool):
        raise ConfigError("sync.run_on_startup must be a boolean")
    base = _positive_number(section, "sync", "backoff_base_seconds", 30.0)
    maximum = _positive_number(section, "sync", "backoff_max_seconds", 900.0)
    if maximum < base:
        raise ConfigError(
            f"sync.backoff_max_seconds ({maximum}) must be >= sync.backoff_base_seconds ({base})"
        )
    return SyncConfig(
        run_on_startup=run_on_startup,
        backoff_base_seconds=base,
        backoff_max_seconds=maximum,
    )


def _parse_database(data: dict[str, Any]) -> DatabaseConfig:
    section = _section(data, "database")
    url = section.get("url")
    if url is not None and (not isinstance(url, str) or not url.strip()):
        raise ConfigError("database.url must be a non-empty string when set")
    name = section.get("name")
    if name is not None and (not isinstance(name, str) or not name.strip()):
        raise ConfigError("database.name must be a non-empty string when set")
    min_pool_size = _positive_int(section, "database", "min_pool_size", 1)
    max_pool_size = _positive_int(section, "database", "max_pool_size", 5)
    if max_pool_size < min_pool_size:
        raise ConfigError("database.max_pool_size must be >= database.min_pool_size")
    return DatabaseConfig(
        url=url.strip() if url else None,
        name=name.strip() if name else None,
        min_pool_size=min_pool_size,
        max_pool_size=max_pool_size,
    )


def _parse_web(data: dict[str, Any]) -> WebConfig:
    section = _section(data, "web")
    port = section.get("port", 8080)
    if isinstance(port, bool) or not isinstance(port, int) or not 0 < port < 65536:
        raise ConfigError(f"web.port must be an integer between 1 and 65535, got {port!r}")
    timezone = _str(section, "web", "timezone", "Europe/Berlin")
    try:
        ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ConfigError(f"web.timezone is not a known IANA timezone: {timezone!r}") from exc
    return WebConfig(
        addr=_str(section, "web", "addr", "0.0.0.0"),
        port=port,
        timezone=timezone,
        calendar_name=_str(section, "web", "calendar_name", "Room Overview"),
    )


def _parse_logging(data: dict[str, Any]) -> LoggingConfig:
    section = _section(data, "logging")
    # Top-level log_level is accepted as a shorthand for [logging].level.
    level = str(section.get("level", data.get("log_level", "INFO"))).upper()
    if level not in _LOG_LEVELS:
        raise ConfigError(f"Invalid logging.level: {level!r}. Must be one of {_LOG_LEVELS}.")
    fmt = str(section.get("format", "text")).lower()
    if fmt not in _LOG_FORMATS:
        raise ConfigError(f"Invalid logging.format: {fmt!r}. Must be 'text' or 'json'.")
    log_root = section.get("log_root")
    if log_root is not None and not isinstance(log_root, str):
        raise ConfigError("logging.log_root must be a string when set")
    return LoggingConfig(level=level, format=fmt, log_root=log_root or None)


def _parse_room(entry: Any, index: int) -> RoomConfig:
    path = f"rooms[{index}]"
    if not isinstance(entry, dict):
        raise ConfigError(f"{path} must be a TOML table")
    churchtools_id = entry.get("churchtools_id")
    if isinstance(churchtools_id, bool) or not isinstance(churchtools_id, int):
        raise ConfigError(f"{path}.churchtools_id must be an integer")
    location_hint = entry.get("location_hint", "")
    if not isinstance(location_hint, str):
        raise ConfigError(f"{path}.location_hint must be a string")
    return RoomConfig(
        churchtools_id=churchtools_id,
        name=_str(entry, path, "name"),
        location_hint=location_hint.strip(),
    )


def _parse_rooms(data: dict[str, Any]) -> list[RoomConfig]:
    raw_rooms = data.get("rooms")
    if not isinstance(raw_rooms, list) or not raw_rooms:
        raise ConfigError("At least one [[rooms]] entry is required")
    rooms = [_parse_room(entry, i) for i, entry in enumerate(raw_rooms)]
    seen: set[int] = set()
    for room in rooms:
        if room.churchtools_id in seen:
            raise ConfigError(f"Duplicate room churchtools_id: {room.churchtools_id}")
        seen.add(room.churchtools_id)
    return rooms


def parse_config(data: dict[str, Any], *, source_path: Path | None = None) -> AppConfig:
    """Validate an already-parsed TOML document."""
    data = resolve_env_vars(data)
    return AppConfig(
        churchtools=_parse_churchtools(data),
        rooms=_parse_rooms(data),
        sync=_parse_sync(data),
        database=_parse_database(data),
        web=_parse_web(data),
        logging=_parse_logging(data),
        source_path=source_path,
    )


def load_config(path: str | Path | None = None) -> AppConfig:
    """Load and validate the service configuration.

    Parameters
    ----------
    path:
        Config file path. Defaults to ``$ROOM_OVERVIEW_CONFIG`` and then
        ``/etc/room-overview/config.toml``.

    Raises
    ------
    ConfigError
        If the file is missing, contains invalid TOML, or fails validation.
    """
    toml_path = resolve_config_path(path)

    if not toml_path.is_file():
        raise ConfigError(f"Config file not found: {toml_path}")

    try:
        data = tomllib.loads(toml_path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid TOML in {toml_path}: {exc}") from exc

    return parse_config(data, source_path=toml_path)
