"""CLI entry point for kvwire."""

from __future__ import annotations

import argparse
import json
from pathlib import Path
import sys
from typing import Any, Sequence

from kvwire.config.loader import initialize_config, load_config
from kvwire.config.schema import ClientConfig
from kvwire.connection import Connection
from kvwire.core.logging import configure_logging
from kvwire.exceptions import KvwireError
from kvwire.protocol.codec import NULL, ErrorReply


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="kvwire")
    subparsers = parser.add_subparsers(dest="command", required=True)

    init_parser = subparsers.add_parser("init", help="Create starter config")
    init_parser.add_argument("--config", type=Path, default=Path("./config/kvwire.yml"))
    init_parser.add_argument("--force", action="store_true")

    ping_parser = subparsers.add_parser("ping", help="Check that the server answers")
    _add_connection_args(ping_parser)

    call_parser = subparsers.add_parser("call", help="Send one command and print its reply")
    _add_connection_args(call_parser)
    call_parser.add_argument("keyword", help="Command keyword, e.g. GET")
    call_parser.add_argument("args", nargs="*", help="Command arguments")

    info_parser = subparsers.add_parser("info", help="Show server information")
    _add_connection_args(info_parser)
    info_parser.add_argument("--raw", action="store_true", help="Print the unparsed INFO text")

    logs_parser = subparsers.add_parser("logs", help="Show log sink configuration")
    logs_parser.add_argument("--config", type=Path, default=None, help="Defaults to $KVWIRE_CONFIG, then the bundled defaults")
    return parser


def _add_connection_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--config", type=Path, default=None, help="Defaults to $KVWIRE_CONFIG, then the bundled defaults")
    parser.add_argument("--url", type=str, default=None, help="Override host/port/db, e.g. redis://host:6379/0")


def _jsonable(value: Any) -> Any:
    if value is NULL:
        return None
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    if isinstance(value, ErrorReply):
        return {"error": value.message, "code": value.code}
    if isinstance(value, (list, tuple, set)):
        return [_jsonable(item) for item in value]
    if isinstance(value, dict):
        return {str(_jsonable(key)): _jsonable(item) for key, item in value.items()}
    if isinstance(value, str):
        return str(value)
    return value


def _open(config: ClientConfig) -> Connection:
    return Connection.from_config(config.connection).open()


def cmd_init(config_path: Path, force: bool) -> int:
    initialize_config(config_path, force=force)
    print(f"wrote config: {config_path}")
    return 0


def cmd_ping(config_path: Path | None, url: str | None) -> int:
    config = load_config(config_path, url=url)
    configure_logging(config.logging)
    conn = _open(config)
    try:
        print(json.dumps({"host": conn.host, "port": conn.port, "reply": _jsonable(conn.ping())}))
    finally:
        conn.quit()
    return 0


def cmd_call(config_path: Path | None, url: str | None, keyword: str, args: Sequence[str]) -> int:
    config = load_config(config_path, url=url)
    configure_logging(config.logging)
    conn = _open(config)
    try:
        reply = conn.execute_command(keyword, *args)
        print(json.dumps({"command": keyword.upper(), "reply": _jsonable(reply)}, indent=2))
    finally:
        conn.quit()
    return 0


def cmd_info(config_path: Path | None, url: str | None, raw: bool) -> int:
    config = load_config(config_path, url=url)
    configure_logging(config.logging)
    conn = _open(config)
    try:
        info = conn.info(raw=raw)
    finally:
        conn.quit()
    if raw:
        print(_jsonable(info))
    else:
        print(json.dumps(_jsonable(info), indent=2, sort_keys=True))
    return 0


def cmd_logs(config_path: Path | None) -> int:
    config = load_config(config_path)
    payload = {
        "format": config.logging.fmt,
        "level": config.logging.level,
        "sink": config.logging.sink,
        "file_path": config.logging.file_path,
        "service_name": config.logging.service_name,
        "debug_trace": config.connection.debug,
    }
    print(json.dumps(payload, indent=2))
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        if args.command == "init":
            return cmd_init(args.config, args.force)
        if args.command == "ping":
            return cmd_ping(args.config, args.url)
        if args.command == "call":
            return cmd_call(args.config, args.url, args.keyword, args.args)
        if args.command == "info":
            return cmd_info(args.config, args.url, args.raw)
        if args.command == "logs":
            return cmd_logs(args.config)
    except (KvwireError, FileExistsError, FileNotFoundError, ValueError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    parser.error(f"unknown command: {args.command}")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
