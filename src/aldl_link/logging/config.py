"""Configure the ``aldl_link`` logger hierarchy from the project configuration."""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import Mapping
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

__all__ = ["JsonFormatter", "setup_logging"]


_ROOT_LOGGER = "aldl_link"
_HANDLER_MARKER = "_aldl_link_handler"
_TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

# Attributes present on every LogRecord; anything else came in through ``extra``.
_RESERVED_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None)).keys()
) | {"message", "asctime", "taskName"}


def _json_default(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).hex()
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Path):
        return str(value)
    return str(value)


class JsonFormatter(logging.Formatter):
    """Render each record as a single JSON object.

    The payload always carries ``timestamp``, ``level``, ``logger`` and
    ``message``; fields passed through ``extra`` (``event`` in particular) are
    merged in unchanged.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in vars(record).items():
            if key in _RESERVED_ATTRS or key.startswith("_"):
                continue
            payload[key] = value
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=_json_default, sort_keys=False)


def _resolve_level(value: Any) -> int:
    if isinstance(value, int):
        return value
    name = str(value or "info").strip().upper()
    level = logging.getLevelName(name)
    if not isinstance(level, int):
        raise ValueError(f"Unknown logging level: {value!r}")
    return level


def _build_handler(output: str) -> logging.Handler:
    target = output.strip() or "stderr"
    if target.lower() == "stderr":
        return logging.StreamHandler(sys.stderr)
    if target.lower() == "stdout":
        return logging.StreamHandler(sys.stdout)
    path = Path(target).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    return logging.FileHandler(path, encoding="utf-8")


def setup_logging(config: Mapping[str, Any] | None = None) -> logging.Logger:
    """Install a single handler on the ``aldl_link`` logger.

    ``config["logging"]`` accepts ``level`` (default ``info``), ``output``
    (``stderr``, ``stdout`` or a file path) and ``format`` (``json`` or
    ``text``).  Calling the function again replaces the handler installed by
    the previous call.
    """

    logging_cfg = dict((config or {}).get("logging", {}) or {})
    level = _resolve_level(logging_cfg.get("level", "info"))
    output = str(logging_cfg.get("output", "stderr"))
    fmt = str(logging_cfg.get("format", "json")).lower()
    if fmt not in {"json", "text"}:
        raise ValueError(f"Unknown logging format: {fmt!r}")

    target = logging.getLogger(_ROOT_LOGGER)
    for existing in list(target.handlers):
        if getattr(existing, _HANDLER_MARKER, False):
            target.removeHandler(existing)
            existing.close()

    handler = _build_handler(output)
    handler.setFormatter(JsonFormatter() if fmt == "json" else logging.Formatter(_TEXT_FORMAT))
    setattr(handler, _HANDLER_MARKER, True)
    target.addHandler(handler)
    target.setLevel(level)
    return target
