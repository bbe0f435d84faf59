import json
import logging

from apto.logging import JSONFormatter, setup_logging


def _record(level=logging.INFO, msg="test", args=(), exc_info=None) -> logging.LogRecord:
    return logging.LogRecord(
        name="apto.test",
        level=level,
        pathname="",
        lineno=0,
        msg=msg,
        args=args,
        exc_info=exc_info,
    )


def test_json_formatter_basic():
    output = json.loads(JSONFormatter().format(_record(msg="hello %s", args=("world",))))
    assert output["level"] == "INFO"
    assert output["message"] == "hello world"
    assert output["logger"] == "apto.test"
    assert "timestamp" in output
    assert "chat_id" not in output


def test_json_formatter_extra_fields():
    record = _record(level=logging.WARNING)
    record.chat_id = 12345
    record.handler = "attach"
    record.expense_id = "abc"
    record.latency_ms = 150.5
    output = json.loads(JSONFormatter().format(record))
    assert output["chat_id"] == 12345
    assert output["handler"] == "attach"
    assert output["expense_id"] == "abc"
    assert output["latency_ms"] == 150.5


def test_json_formatter_keeps_accents():
    formatted = JSONFormatter().format(_record(msg="Manutenção"))
    assert "Manutenção" in formatted


def test_json_formatter_exception():
    try:
        raise ValueError("boom")
    except ValueError:
        import sys

        record = _record(level=logging.ERROR, msg="failed", exc_info=sys.exc_info())
    output = json.loads(JSONFormatter().format(record))
    assert "ValueError: boom" in output["exception"]


def test_setup_logging():
    setup_logging(level=logging.DEBUG)
    root = logging.getLogger()
    assert root.level == logging.DEBUG
    assert len(root.handlers) == 1
    assert isinstance(root.handlers[0].formatter, JSONFormatter)
    # Cleanup
    root.handlers.clear()
    logging.basicConfig(level=logging.WARNING)
