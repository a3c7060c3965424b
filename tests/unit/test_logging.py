import json
import logging
import sys

import pytest

from kvwire.config.schema import LoggingConfig
from kvwire.connection import Connection
from kvwire.core.logging import ECSJsonFormatter, configure_logging, get_logger


pytestmark = pytest.mark.usefixtures("isolated_logging")


def test_ecs_log_output_to_file(tmp_path) -> None:
    log_file = tmp_path / "events.log"
    config = LoggingConfig(
        level="INFO",
        fmt="ecs_json",
        sink="file",
        file_path=str(log_file),
        service_name="kvwire-test",
    )
    configure_logging(config, force=True)
    get_logger("kvwire.test.logging").info(
        "connected",
        extra={"event_action": "connect", "peer_host": "10.0.0.5", "peer_port": 6379, "db": 2},
    )

    record = json.loads(log_file.read_text(encoding="utf-8").strip())
    assert record["@timestamp"]
    assert record["message"] == "connected"
    assert record["service"]["name"] == "kvwire-test"
    assert record["event"]["action"] == "connect"
    assert record["event"]["category"] == "network"
    assert record["destination"] == {"address": "10.0.0.5", "port": 6379}
    assert record["kvwire"]["db"] == 2
    assert "outcome" not in record["event"]


def test_formatter_drops_empty_sections() -> None:
    record = logging.LogRecord("kvwire.x", logging.WARNING, __file__, 1, "plain", None, None)
    payload = json.loads(ECSJsonFormatter().format(record))
    assert payload["log"] == {"level": "warning", "logger": "kvwire.x"}
    assert payload["service"]["name"] == "kvwire"
    assert "destination" not in payload
    assert "kvwire" not in payload


def test_formatter_serializes_payload_and_errors() -> None:
    try:
        raise RuntimeError("boom")
    except RuntimeError:
        exc_info = sys.exc_info()
    record = logging.LogRecord("kvwire.x", logging.ERROR, __file__, 1, "failed", None, exc_info)
    record.payload = {"requests": 3, "raw": b"PING"}
    payload = json.loads(ECSJsonFormatter().format(record))
    assert payload["kvwire"]["payload"] == {"requests": 3, "raw": "b'PING'"}
    assert "RuntimeError: boom" in payload["error"]["message"]


def test_configure_logging_is_idempotent_without_force(tmp_path) -> None:
    first = tmp_path / "first.log"
    second = tmp_path / "second.log"
    configure_logging(LoggingConfig(sink="file", file_path=str(first)), force=True)
    configure_logging(LoggingConfig(sink="file", file_path=str(second)))
    get_logger("idempotent").warning("hello")
    assert "hello" in first.read_text(encoding="utf-8")
    assert not second.exists()


def test_text_format_is_plain(tmp_path) -> None:
    log_file = tmp_path / "text.log"
    configure_logging(LoggingConfig(fmt="text", sink="file", file_path=str(log_file)), force=True)
    get_logger("kvwire.test.text").info("plain line")
    line = log_file.read_text(encoding="utf-8").strip()
    assert line.endswith("INFO kvwire.test.text plain line")


def test_get_logger_prefixes_names() -> None:
    assert get_logger("transport").name == "kvwire.transport"
    assert get_logger("kvwire.connection").name == "kvwire.connection"


def test_pipeline_send_is_logged(tmp_path, server) -> None:
    log_file = tmp_path / "pipeline.log"
    configure_logging(LoggingConfig(sink="file", file_path=str(log_file)), force=True)
    conn = Connection(transport_factory=server.transport).open()
    conn.pipeline()
    conn.ping()
    conn.ping()
    conn.send_pipeline()

    records = [json.loads(line) for line in log_file.read_text(encoding="utf-8").splitlines()]
    actions = [record["event"]["action"] for record in records]
    assert actions == ["connect", "pipeline_send"]
    assert records[-1]["kvwire"]["payload"] == {"requests": 2, "pending": 2}
