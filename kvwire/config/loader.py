"""Client settings from YAML, the environment and connection URLs."""

from __future__ import annotations

import os
import re
import shutil
from pathlib import Path
from typing import Any

import yaml

from kvwire.config.schema import ClientConfig, parse_config, parse_url


CONFIG_ENV_VAR = "KVWIRE_CONFIG"
DEFAULT_CONFIG_PATH = Path(__file__).with_name("defaults.yml")
_ENV_TOKEN_RE = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-(.*?))?\}")


def resolve_config_path(path: str | Path | None = None) -> Path:
    """Pick the config file: explicit path, then ``$KVWIRE_CONFIG``, then the bundled defaults."""
    if path is None or str(path) == "":
        path = os.environ.get(CONFIG_ENV_VAR) or DEFAULT_CONFIG_PATH
    return Path(path).expanduser()


def load_config(path: str | Path | None = None, *, url: str | None = None) -> ClientConfig:
    """Read a config file, expand ``${VAR}`` tokens and apply an optional URL override.

    ``url`` replaces host, port and db; its password only wins when present.
    """
    config_path = resolve_config_path(path)
    if not config_path.is_file():
        raise FileNotFoundError(f"config file does not exist: {config_path}")
    raw = yaml.safe_load(config_path.read_text(encoding="utf-8"))
    config = parse_config(_expand(raw if raw is not None else {}, ""))
    if url:
        apply_url(config, url)
    return config


def apply_url(config: ClientConfig, url: str) -> ClientConfig:
    override = parse_url(url)
    connection = config.connection
    connection.host = override.host
    connection.port = override.port
    connection.db = override.db
    if override.password is not None:
        connection.password = override.password
    return config


def initialize_config(path: str | Path, force: bool = False) -> Path:
    target = Path(path).expanduser()
    if target.exists() and not force:
        raise FileExistsError(f"config already exists: {target}")
    target.parent.mkdir(parents=True, exist_ok=True)
    shutil.copyfile(DEFAULT_CONFIG_PATH, target)
    return target


def _expand(value: Any, where: str) -> Any:
    if isinstance(value, dict):
        return {key: _expand(item, f"{where}.{key}" if where else str(key)) for key, item in value.items()}
    if isinstance(value, list):
        return [_expand(item, f"{where}[{index}]") for index, item in enumerate(value)]
    if isinstance(value, str) and "${" in value:
        return _ENV_TOKEN_RE.sub(lambda match: _lookup(match, where), value)
    return value


def _lookup(match: re.Match[str], where: str) -> str:
    name, default = match.group(1), match.group(2)
    resolved = os.environ.get(name)
    if resolved is not None:
        return resolved
    if default is not None:
        return default
    raise ValueError(f"{where or 'config'}: missing required environment variable '{name}'")
