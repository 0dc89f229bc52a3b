"""
日志配置测试
"""

import json
import logging

from webix.core.logging import (
    HANDLER_NAME,
    bind_request_context,
    clear_request_context,
    get_logger,
    setup_logging,
)


def _json_lines(output: str) -> list[dict]:
    return [json.loads(line) for line in output.splitlines() if line.startswith("{")]


def test_json_logs_render_structlog_events(capsys):
    setup_logging(level="INFO", json_logs=True)
    logger = get_logger("webix.test.json")

    bind_request_context(request_id="req-1")
    try:
        logger.info("tenant_connection_opened", tenant_key="acme")
        logger.debug("tenant_models_bound", tenant_key="acme")
    finally:
        clear_request_context()

    lines = _json_lines(capsys.readouterr().out)
    assert len(lines) == 1
    entry = lines[0]
    assert entry["event"] == "tenant_connection_opened"
    assert entry["logger"] == "webix.test.json"
    assert entry["level"] == "info"
    assert entry["tenant_key"] == "acme"
    assert entry["request_id"] == "req-1"
    assert "timestamp" in entry


def test_stdlib_loggers_share_the_renderer(capsys):
    setup_logging(level="INFO", json_logs=True)

    logging.getLogger("sqlalchemy.pool").warning("pool exhausted")

    lines = _json_lines(capsys.readouterr().out)
    assert [line["event"] for line in lines] == ["pool exhausted"]
    assert lines[0]["logger"] == "sqlalchemy.pool"
    assert lines[0]["level"] == "warning"


def test_console_logs(capsys):
    setup_logging(level="DEBUG", json_logs=False)

    get_logger("webix.test.console").debug("tenant_connection_closed", tenant_key="acme")

    assert "tenant_connection_closed" in capsys.readouterr().out


def test_setup_logging_replaces_its_handler():
    setup_logging(level="INFO", json_logs=True)
    setup_logging(level="WARNING", json_logs=False)

    root = logging.getLogger()
    installed = [h for h in root.handlers if h.get_name() == HANDLER_NAME]
    assert len(installed) == 1
    assert root.level == logging.WARNING
