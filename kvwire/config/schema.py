"""Dataclasses for client config."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any
from urllib.parse import unquote, urlparse


DEFAULT_HOST = "localhost"
DEFAULT_PORT = 6379


@dataclass(slots=True)
class ConnectionConfig:
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    db: int | None = None
    password: str | None = None
    connect_timeout_seconds: float = 5.0
    socket_timeout_seconds: float | None = None
    tcp_nodelay: bool = True
    encoding: str = "utf-8"
    decode_responses: bool = False
    check_types: bool = True
    debug: bool = False


@dataclass(slots=True)
class LoggingConfig:
    level: str = "INFO"
    fmt: str = "ecs_json"
    sink: str = "stdout"
    file_path: str | None = None
    service_name: str = "kvwire"


@dataclass(slots=True)
class ClientConfig:
    connection: ConnectionConfig = field(default_factory=ConnectionConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


VALID_LOG_LEVELS = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}
VALID_LOG_FORMATS = {"ecs_json", "text"}
VALID_LOG_SINKS = {"stdout", "file"}
VALID_URL_SCHEMES = {"redis", "kvwire", "tcp"}


def _parse_bool_value(raw: Any, *, field_name: str, default: bool) -> bool:
    if raw is None:
        return default
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, str):
        normalized = raw.strip().lower()
        if normalized in {"1", "true", "yes", "on"}:
            return True
        if normalized in {"0", "false", "no", "off"}:
            return False
    raise ValueError(f"'{field_name}' must be a boolean")


def _parse_port(raw: Any, *, field_name: str) -> int:
    try:
        port = int(raw)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"'{field_name}' must be an integer") from exc
    if port <= 0 or port >= 65536:
        raise ValueError(f"'{field_name}' must be between 1 and 65535")
    return port


def _parse_db(raw: Any, *, field_name: str) -> int | None:
    if raw is None or raw == "":
        return None
    try:
        db = int(raw)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"'{field_name}' must be an integer") from exc
    if db < 0:
        raise ValueError(f"'{field_name}' must not be negative")
    return db


def _parse_optional_timeout(raw: Any, *, field_name: str) -> float | None:
    if raw is None:
        return None
    value = float(raw)
    if value <= 0:
        raise ValueError(f"'{field_name}' must be greater than zero")
    return value


def parse_url(url: str) -> ConnectionConfig:
    """Build a connection config from ``redis://[:password@]host[:port][/db]``."""
    parsed = urlparse(url)
    if parsed.scheme not in VALID_URL_SCHEMES:
        raise ValueError(f"unsupported url scheme '{parsed.scheme}'")
    db_text = parsed.path.lstrip("/")
    return ConnectionConfig(
        host=parsed.hostname or DEFAULT_HOST,
        port=_parse_port(parsed.port or DEFAULT_PORT, field_name="url.port"),
        db=_parse_db(db_text, field_name="url.db"),
        password=unquote(parsed.password) if parsed.password else None,
    )


def parse_connection(raw: dict[str, Any]) -> ConnectionConfig:
    if not isinstance(raw, dict):
        raise ValueError("'connection' must be an object")
    base = parse_url(str(raw["url"])) if raw.get("url") else ConnectionConfig()
    host = str(raw.get("host", base.host)).strip()
    if not host:
        raise ValueError("'connection.host' must not be empty")
    connect_timeout = float(raw.get("connect_timeout_seconds", base.connect_timeout_seconds))
    if connect_timeout <= 0:
        raise ValueError("'connection.connect_timeout_seconds' must be greater than zero")
    password = raw.get("password", base.password)
    encoding = str(raw.get("encoding", base.encoding))
    try:
        "".encode(encoding)
    except LookupError as exc:
        raise ValueError(f"unknown encoding '{encoding}'") from exc
    return ConnectionConfig(
        host=host,
        port=_parse_port(raw.get("port", base.port), field_name="connection.port"),
        db=_parse_db(raw.get("db", base.db), field_name="connection.db"),
        password=str(password) if password not in (None, "") else None,
        connect_timeout_seconds=connect_timeout,
        socket_timeout_seconds=_parse_optional_timeout(
            raw.get("socket_timeout_seconds"),
            field_name="connection.socket_timeout_seconds",
        ),
        tcp_nodelay=_parse_bool_value(raw.get("tcp_nodelay"), field_name="connection.tcp_nodelay", default=True),
        encoding=encoding,
        decode_responses=_parse_bool_value(
            raw.get("decode_responses"),
            field_name="connection.decode_responses",
            default=False,
        ),
        check_types=_parse_bool_value(raw.get("check_types"), field_name="connection.check_types", default=True),
        debug=_parse_bool_value(raw.get("debug"), field_name="connection.debug", default=False),
    )


def parse_logging(raw: dict[str, Any]) -> LoggingConfig:
    if not isinstance(raw, dict):
        raise ValueError("'logging' must be an object")
    level = str(raw.get("level", "INFO")).upper()
    if level not in VALID_LOG_LEVELS:
        raise ValueError(f"invalid log level '{level}'")
    fmt = str(raw.get("fmt", "ecs_json"))
    if fmt not in VALID_LOG_FORMATS:
        raise ValueError(f"invalid log format '{fmt}'")
    sink = str(raw.get("sink", "stdout"))
    if sink not in VALID_LOG_SINKS:
        raise ValueError(f"invalid log sink '{sink}'")
    file_path = raw.get("file_path")
    if sink == "file" and not file_path:
        raise ValueError("logging sink 'file' requires 'logging.file_path'")
    return LoggingConfig(
        level=level,
        fmt=fmt,
        sink=sink,
        file_path=str(file_path) if file_path else None,
        service_name=str(raw.get("service_name", "kvwire")),
    )


def parse_config(data: dict[str, Any]) -> ClientConfig:
    if not isinstance(data, dict):
        raise ValueError("config root must be an object")
    return ClientConfig(
        connection=parse_connection(data.get("connection", {}) or {}),
        logging=parse_logging(data.get("logging", {}) or {}),
    )
