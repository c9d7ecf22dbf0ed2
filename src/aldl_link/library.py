"""Definition library keyed by name, with JSON persistence.

Textual ADX parsing is provided by the host environment as a
:class:`DefinitionSource`.  The library only stores its results: loading a
definition whose name is already present replaces that entry.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Iterator, Mapping
from pathlib import Path
from typing import Any, Protocol

try:  # Python 3.11+
    import tomllib  # type: ignore[attr-defined]
except ModuleNotFoundError:  # pragma: no cover - Python < 3.11 fallback
    import tomli as tomllib  # type: ignore

from .definitions import Definition, definition_from_mapping, definition_to_mapping

__all__ = [
    "DefinitionLibrary",
    "DefinitionSource",
    "LibraryStore",
    "json_definition_source",
    "load_definition_file",
]


logger = logging.getLogger(__name__)


_STORE_VERSION = 1


class DefinitionSource(Protocol):
    """Turn definition file text into a :class:`Definition`."""

    def __call__(self, text: str, display_name: str) -> Definition:  # pragma: no cover - interface only
        ...


def json_definition_source(text: str, display_name: str) -> Definition:
    """Parse a JSON definition document, naming it after ``display_name`` if unnamed."""

    payload = json.loads(text)
    if not isinstance(payload, Mapping):
        raise ValueError(f"Definition '{display_name}' must be a JSON object")
    data = dict(payload)
    data.setdefault("name", display_name)
    return definition_from_mapping(data)


def load_definition_file(path: Path | str) -> Definition:
    """Load a definition manifest stored as TOML or JSON.

    TOML manifests may keep the definition at the top level or under a
    ``[definition]`` table.
    """

    source = Path(path).expanduser()
    suffix = source.suffix.lower()
    if suffix == ".toml":
        with source.open("rb") as handle:
            payload: Any = tomllib.load(handle)
        if isinstance(payload.get("definition"), Mapping):
            payload = payload["definition"]
        data = dict(payload)
        data.setdefault("name", source.stem)
        return definition_from_mapping(data)
    if suffix == ".json":
        return json_definition_source(source.read_text(encoding="utf-8"), source.stem)
    raise ValueError(f"Unsupported definition format '{source.suffix}' for {source}")


class DefinitionLibrary:
    """Ordered collection of definitions with at most one active entry."""

    def __init__(
        self,
        definitions: Iterable[Definition] = (),
        *,
        active_id: str | None = None,
    ) -> None:
        self._definitions: dict[str, Definition] = {}
        for definition in definitions:
            self.add(definition)
        self._active_id: str | None = None
        if active_id is not None and self.by_id(active_id) is not None:
            self._active_id = active_id

    def __len__(self) -> int:
        return len(self._definitions)

    def __iter__(self) -> Iterator[Definition]:
        return iter(tuple(self._definitions.values()))

    def __contains__(self, name: object) -> bool:
        return name in self._definitions

    @property
    def definitions(self) -> tuple[Definition, ...]:
        return tuple(self._definitions.values())

    @property
    def active_id(self) -> str | None:
        return self._active_id

    @property
    def active(self) -> Definition | None:
        if self._active_id is None:
            return None
        return self.by_id(self._active_id)

    def get(self, name: str) -> Definition | None:
        return self._definitions.get(name)

    def by_id(self, identifier: str) -> Definition | None:
        for definition in self._definitions.values():
            if definition.id == identifier:
                return definition
        return None

    def add(self, definition: Definition) -> Definition:
        """Store ``definition``, replacing any entry with the same name."""

        clash = self.by_id(definition.id)
        if clash is not None and clash.name != definition.name:
            raise ValueError(
                f"Definition id '{definition.id}' already used by '{clash.name}'"
            )
        replaced = definition.name in self._definitions
        self._definitions[definition.name] = definition
        logger.info(
            "Definition stored in library.",
            extra={
                "event": "library.definition_stored",
                "definition": definition.name,
                "replaced": replaced,
            },
        )
        return definition

    def load(self, source: DefinitionSource, text: str, display_name: str) -> Definition:
        """Parse ``text`` through ``source`` and store the result."""

        return self.add(source(text, display_name))

    def activate(self, identifier: str) -> Definition:
        definition = self.by_id(identifier)
        if definition is None:
            raise KeyError(identifier)
        self._active_id = definition.id
        return definition

    def deactivate(self) -> None:
        self._active_id = None

    def remove(self, identifier: str) -> Definition | None:
        """Remove the definition with ``identifier``; clears it if it was active."""

        definition = self.by_id(identifier)
        if definition is None:
            return None
        del self._definitions[definition.name]
        if self._active_id == definition.id:
            self._active_id = None
        return definition


class LibraryStore:
    """Persist a :class:`DefinitionLibrary` and its active id as JSON."""

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path).expanduser()

    def load(self) -> DefinitionLibrary:
        if not self.path.exists():
            return DefinitionLibrary()
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise ValueError(f"Library store {self.path} is not valid JSON: {exc}") from exc
        if not isinstance(payload, Mapping):
            raise ValueError(f"Library store {self.path} must contain a JSON object")
        definitions = [
            definition_from_mapping(item) for item in payload.get("definitions", ())
        ]
        active_id = payload.get("active_id")
        return DefinitionLibrary(
            definitions,
            active_id=str(active_id) if active_id is not None else None,
        )

    def save(self, library: DefinitionLibrary) -> Path:
        payload = {
            "version": _STORE_VERSION,
            "active_id": library.active_id,
            "definitions": [definition_to_mapping(item) for item in library],
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(payload, indent=2, sort_keys=True) + "\n", encoding="utf-8")
        logger.info(
            "Definition library saved.",
            extra={"event": "library.saved", "path": str(self.path), "definitions": len(library)},
        )
        return self.path
