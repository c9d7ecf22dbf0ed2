from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest

from aldl_link.logging import JsonFormatter, setup_logging


def _record(**extra: object) -> logging.LogRecord:
    record = logging.LogRecord("aldl_link.test", logging.WARNING, __file__, 1, "Link %s.", ("down",), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_formatter_includes_extra_fields() -> None:
    payload = json.loads(
        JsonFormatter().format(_record(event="aldl.link_refused", baud_rate=8192, request=b"\xf4"))
    )

    assert payload["message"] == "Link down."
    assert payload["level"] == "warning"
    assert payload["logger"] == "aldl_link.test"
    assert payload["event"] == "aldl.link_refused"
    assert payload["baud_rate"] == 8192
    assert payload["request"] == "f4"
    assert "args" not in payload


def test_setup_logging_writes_json_file(tmp_path: Path) -> None:
    destination = tmp_path / "logs" / "aldl.log"
    logger = setup_logging({"logging": {"level": "debug", "output": str(destination), "format": "json"}})

    logging.getLogger("aldl_link.scheduler").debug("Tick.", extra={"event": "scheduler.tick"})
    for handler in logger.handlers:
        handler.flush()

    lines = destination.read_text(encoding="utf-8").splitlines()
    assert json.loads(lines[-1])["event"] == "scheduler.tick"
    assert logger.level == logging.DEBUG


def test_setup_logging_replaces_previous_handler() -> None:
    setup_logging({"logging": {"output": "stderr"}})
    logger = setup_logging({"logging": {"output": "stdout", "format": "text"}})

    installed = [handler for handler in logger.handlers if getattr(handler, "_aldl_link_handler", False)]
    assert len(installed) == 1
    assert not isinstance(installed[0].formatter, JsonFormatter)


@pytest.mark.parametrize(
    "logging_config",
    [
        pytest.param({"level": "chatty"}, id="level"),
        pytest.param({"format": "xml"}, id="format"),
    ],
)
def test_setup_logging_rejects_invalid_values(logging_config: dict[str, str]) -> None:
    with pytest.raises(ValueError):
        setup_logging({"logging": logging_config})
