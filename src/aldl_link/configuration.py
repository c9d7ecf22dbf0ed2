"""Helpers to load project-level configuration files.

Settings live in the ``[tool.aldl_link]`` table of a ``pyproject.toml``::

    [tool.aldl_link.serial]
    port = "/dev/ttyUSB0"
    read_timeout = 1.0

    [tool.aldl_link.polling]
    interval = 0.12

The file is looked up from an explicit path, then the ``ALDL_LINK_CONFIG``
environment variable, then the working directory.
"""

from __future__ import annotations

import os
from collections.abc import Iterable, Mapping as ABCMapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

try:  # Python 3.11+
    import tomllib  # type: ignore[attr-defined]
except ModuleNotFoundError:  # pragma: no cover - Python < 3.11 fallback
    import tomli as tomllib  # type: ignore

from .scheduler import DEFAULT_POLL_INTERVAL
from .transport import DEFAULT_READ_TIMEOUT

__all__ = [
    "CONFIG_ENV_VAR",
    "DEFAULT_LIBRARY_PATH",
    "AnalysisSettings",
    "PollingSettings",
    "SerialSettings",
    "analysis_settings",
    "library_path",
    "load_config",
    "load_project_config",
    "polling_settings",
    "serial_settings",
]


CONFIG_ENV_VAR = "ALDL_LINK_CONFIG"
DEFAULT_LIBRARY_PATH = Path("~/.aldl_link/library.json")

_PROJECT_FILENAME = "pyproject.toml"
_TOOL_SECTION = "aldl_link"


def _as_dict(payload: ABCMapping[str, Any]) -> dict[str, Any]:
    """Recursively coerce TOML mappings into regular dictionaries."""

    result: dict[str, Any] = {}
    for key, value in payload.items():
        if isinstance(value, ABCMapping):
            result[str(key)] = _as_dict(value)
        elif isinstance(value, list):
            result[str(key)] = [
                _as_dict(item) if isinstance(item, ABCMapping) else item for item in value
            ]
        else:
            result[str(key)] = value
    return result


def _resolve_pyproject_path(candidate: Path) -> Path | None:
    candidate = candidate.expanduser()
    if candidate.name == _PROJECT_FILENAME:
        return candidate
    if candidate.suffix:
        return None
    return candidate / _PROJECT_FILENAME


def _iter_unique_paths(paths: Iterable[Path]) -> list[Path]:
    seen: set[Path] = set()
    ordered: list[Path] = []
    for path in paths:
        resolved = path.expanduser().resolve(strict=False)
        if resolved in seen:
            continue
        seen.add(resolved)
        ordered.append(resolved)
    return ordered


def load_project_config(path: Path) -> tuple[dict[str, Any], Path] | None:
    """Load the ``[tool.aldl_link]`` section from ``pyproject.toml``."""

    pyproject_path = _resolve_pyproject_path(path)
    if pyproject_path is None or not pyproject_path.exists():
        return None
    with pyproject_path.open("rb") as handle:
        payload = tomllib.load(handle)
    tool_section = payload.get("tool")
    if not isinstance(tool_section, ABCMapping):
        return None
    section = tool_section.get(_TOOL_SECTION)
    if not isinstance(section, ABCMapping):
        return None
    return _as_dict(section), pyproject_path.resolve(strict=False)


def load_config(path: Path | None = None) -> dict[str, Any]:
    """Return the first configuration found; ``_config_path`` records its origin."""

    env_config = os.environ.get(CONFIG_ENV_VAR)
    bases: list[Path] = []
    if path is not None:
        bases.append(Path(path))
    if env_config:
        bases.append(Path(env_config))
    bases.append(Path.cwd())

    for candidate in _iter_unique_paths(bases):
        loaded = load_project_config(candidate)
        if not loaded:
            continue
        config, source = loaded
        config["_config_path"] = str(source)
        return config
    return {"_config_path": None}


def _section(config: ABCMapping[str, Any], name: str) -> dict[str, Any]:
    section = config.get(name)
    return dict(section) if isinstance(section, ABCMapping) else {}


@dataclass(frozen=True, slots=True)
class SerialSettings:
    port: str | None = None
    baud_rate: int | None = None
    read_timeout: float | None = DEFAULT_READ_TIMEOUT


@dataclass(frozen=True, slots=True)
class PollingSettings:
    interval: float = DEFAULT_POLL_INTERVAL


@dataclass(frozen=True, slots=True)
class AnalysisSettings:
    model: str | None = None
    api_key: str | None = None


def serial_settings(config: ABCMapping[str, Any]) -> SerialSettings:
    section = _section(config, "serial")
    baud_rate = section.get("baud_rate")
    read_timeout = section.get("read_timeout", DEFAULT_READ_TIMEOUT)
    return SerialSettings(
        port=str(section["port"]) if section.get("port") else None,
        baud_rate=int(baud_rate) if baud_rate else None,
        read_timeout=float(read_timeout) if read_timeout is not None else None,
    )


def polling_settings(config: ABCMapping[str, Any]) -> PollingSettings:
    section = _section(config, "polling")
    interval = section.get("interval", DEFAULT_POLL_INTERVAL)
    return PollingSettings(interval=max(float(interval), 0.0))


def analysis_settings(config: ABCMapping[str, Any]) -> AnalysisSettings:
    section = _section(config, "analysis")
    return AnalysisSettings(
        model=str(section["model"]) if section.get("model") else None,
        api_key=str(section["api_key"]) if section.get("api_key") else None,
    )


def library_path(config: ABCMapping[str, Any]) -> Path:
    """Return the JSON library store path, relative paths anchored at the config file."""

    section = _section(config, "library")
    raw = section.get("path")
    if not raw:
        return DEFAULT_LIBRARY_PATH.expanduser()
    candidate = Path(str(raw)).expanduser()
    origin = config.get("_config_path")
    if not candidate.is_absolute() and origin:
        candidate = Path(str(origin)).parent / candidate
    return candidate
