"""Client configuration schema and loader."""

from .loader import CONFIG_ENV_VAR, apply_url, initialize_config, load_config, resolve_config_path
from .schema import ClientConfig, ConnectionConfig, LoggingConfig, parse_config, parse_url

__all__ = [
    "CONFIG_ENV_VAR",
    "ClientConfig",
    "ConnectionConfig",
    "LoggingConfig",
    "apply_url",
    "initialize_config",
    "load_config",
    "parse_config",
    "parse_url",
    "resolve_config_path",
]
