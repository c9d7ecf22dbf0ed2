"""In-memory model describing how an ECM packet maps to parameters.

A :class:`Definition` groups the :class:`ParameterDefinition` entries of one
ECM variant together with its serial settings and dashboard gauge slots.
Instances are immutable; editing helpers such as :func:`rebind_gauge` return
new objects.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, replace
from typing import Any

__all__ = [
    "DEFAULT_BAUD_RATE",
    "DEFAULT_GAUGE_RANGE",
    "DEFAULT_REQUEST_COMMAND",
    "GAUGE_RANGE_RULES",
    "Definition",
    "GaugeBinding",
    "GaugeRange",
    "ParameterDefinition",
    "build_gauge_binding",
    "definition_from_mapping",
    "definition_to_mapping",
    "gauge_range_for",
    "parse_hex_bytes",
    "parse_request_command",
    "rebind_gauge",
]


DEFAULT_BAUD_RATE = 8192
DEFAULT_REQUEST_COMMAND = bytes((0xF4, 0x57, 0x01, 0x00, 0xB4))

_VALID_BYTE_COUNTS = (1, 2)


@dataclass(frozen=True, slots=True)
class GaugeRange:
    """Display range of a dashboard gauge."""

    minimum: float = 0.0
    maximum: float = 255.0


DEFAULT_GAUGE_RANGE = GaugeRange(0.0, 255.0)

# Evaluated in order against the upper-cased parameter title; first hit wins.
GAUGE_RANGE_RULES: tuple[tuple[str, GaugeRange], ...] = (
    ("RPM", GaugeRange(0.0, 7000.0)),
    ("TEMP", GaugeRange(0.0, 120.0)),
    ("TPS", GaugeRange(0.0, 100.0)),
)


@dataclass(frozen=True, slots=True)
class ParameterDefinition:
    """One physical channel carried inside the response packet.

    ``scale`` and ``offset`` describe the linear conversion
    ``raw * scale + offset``.  ``gauge_range`` optionally pins the display
    range instead of deriving it from the title.
    """

    id: str
    title: str
    units: str = ""
    packet_offset: int = 0
    byte_count: int = 1
    scale: float = 1.0
    offset: float = 0.0
    gauge_range: GaugeRange | None = None

    def __post_init__(self) -> None:
        if not self.id:
            raise ValueError("Parameter id must be a non-empty string")
        if self.packet_offset < 0:
            raise ValueError(
                f"Parameter '{self.id}' has a negative packet offset: {self.packet_offset}"
            )
        if self.byte_count not in _VALID_BYTE_COUNTS:
            raise ValueError(
                f"Parameter '{self.id}' byte count must be 1 or 2, got {self.byte_count}"
            )


@dataclass(frozen=True, slots=True)
class GaugeBinding:
    """Dashboard slot bound to a parameter id."""

    slot_id: str
    parameter_id: str
    label: str = ""
    unit: str = ""
    range: GaugeRange = DEFAULT_GAUGE_RANGE


@dataclass(frozen=True, slots=True)
class Definition:
    """Communication profile for one ECM variant."""

    name: str
    parameters: tuple[ParameterDefinition, ...] = ()
    gauges: tuple[GaugeBinding, ...] = ()
    baud_rate: int = DEFAULT_BAUD_RATE
    request_command: bytes = DEFAULT_REQUEST_COMMAND
    id: str = ""

    def __post_init__(self) -> None:
        parameters = tuple(self.parameters)
        seen: set[str] = set()
        for parameter in parameters:
            if parameter.id in seen:
                raise ValueError(
                    f"Duplicated parameter id '{parameter.id}' in definition '{self.name}'"
                )
            seen.add(parameter.id)
        object.__setattr__(self, "parameters", parameters)
        object.__setattr__(self, "gauges", tuple(self.gauges))
        object.__setattr__(self, "request_command", bytes(self.request_command))
        if not self.id:
            object.__setattr__(self, "id", _slugify(self.name))

    @property
    def parameter_ids(self) -> frozenset[str]:
        return frozenset(parameter.id for parameter in self.parameters)

    def parameter(self, parameter_id: str) -> ParameterDefinition | None:
        for parameter in self.parameters:
            if parameter.id == parameter_id:
                return parameter
        return None


def gauge_range_for(parameter: ParameterDefinition) -> GaugeRange:
    """Return the display range for ``parameter``.

    An explicit :attr:`ParameterDefinition.gauge_range` wins.  Otherwise the
    title is matched against :data:`GAUGE_RANGE_RULES`, which is a best-effort
    default only.
    """

    if parameter.gauge_range is not None:
        return parameter.gauge_range
    title = parameter.title.upper()
    for token, gauge_range in GAUGE_RANGE_RULES:
        if token in title:
            return gauge_range
    return DEFAULT_GAUGE_RANGE


def build_gauge_binding(parameter: ParameterDefinition, slot_id: str) -> GaugeBinding:
    return GaugeBinding(
        slot_id=slot_id,
        parameter_id=parameter.id,
        label=parameter.title,
        unit=parameter.units,
        range=gauge_range_for(parameter),
    )


def rebind_gauge(definition: Definition, index: int, parameter_id: str) -> Definition:
    """Return a copy of ``definition`` with gauge ``index`` showing ``parameter_id``.

    Unknown parameter ids leave the definition untouched.  ``IndexError`` is
    raised when ``index`` does not address an existing slot.
    """

    parameter = definition.parameter(parameter_id)
    if parameter is None:
        return definition
    gauges = list(definition.gauges)
    current = gauges[index]
    gauges[index] = build_gauge_binding(parameter, current.slot_id)
    return replace(definition, gauges=tuple(gauges))


def parse_hex_bytes(text: str) -> bytes:
    """Parse ``"F4 57 01"``, ``"0xF4,0x57"`` or ``"f45701"`` into bytes."""

    cleaned = re.sub(r"0x", "", text, flags=re.IGNORECASE)
    cleaned = re.sub(r"[\s,:]", "", cleaned)
    return bytes.fromhex(cleaned)


def parse_request_command(value: Any) -> bytes:
    """Coerce a request command given as bytes, integers or a hex string."""

    if value is None:
        return DEFAULT_REQUEST_COMMAND
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if isinstance(value, str):
        try:
            return parse_hex_bytes(value)
        except ValueError as exc:
            raise ValueError(f"Invalid request command: {value!r}") from exc
    if isinstance(value, Iterable):
        try:
            return bytes(int(item) for item in value)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Invalid request command: {value!r}") from exc
    raise ValueError(f"Invalid request command: {value!r}")


def _optional_float(value: Any, default: float) -> float:
    if value is None:
        return default
    return float(value)


def _range_from_mapping(payload: Mapping[str, Any]) -> GaugeRange | None:
    minimum = payload.get("gauge_min")
    maximum = payload.get("gauge_max")
    if minimum is None and maximum is None:
        return None
    return GaugeRange(
        minimum=_optional_float(minimum, DEFAULT_GAUGE_RANGE.minimum),
        maximum=_optional_float(maximum, DEFAULT_GAUGE_RANGE.maximum),
    )


def _parameter_from_mapping(payload: Mapping[str, Any]) -> ParameterDefinition:
    identifier = str(payload["id"])
    return ParameterDefinition(
        id=identifier,
        title=str(payload.get("title") or identifier),
        units=str(payload.get("units") or ""),
        packet_offset=int(payload.get("packet_offset", 0)),
        byte_count=int(payload.get("byte_count", 1)),
        scale=_optional_float(payload.get("scale"), 1.0),
        offset=_optional_float(payload.get("offset"), 0.0),
        gauge_range=_range_from_mapping(payload),
    )


def _gauges_from_mapping(
    entries: Sequence[Mapping[str, Any]],
    parameters: Sequence[ParameterDefinition],
) -> tuple[GaugeBinding, ...]:
    by_id = {parameter.id: parameter for parameter in parameters}
    gauges: list[GaugeBinding] = []
    for index, entry in enumerate(entries):
        slot_id = str(entry.get("id") or f"gauge-{index}")
        parameter_id = str(entry["parameter"])
        parameter = by_id.get(parameter_id)
        if parameter is None:
            raise ValueError(f"Gauge '{slot_id}' references unknown parameter '{parameter_id}'")
        binding = build_gauge_binding(parameter, slot_id)
        if "min" in entry or "max" in entry:
            binding = replace(
                binding,
                range=GaugeRange(
                    minimum=_optional_float(entry.get("min"), binding.range.minimum),
                    maximum=_optional_float(entry.get("max"), binding.range.maximum),
                ),
            )
        gauges.append(binding)
    return tuple(gauges)


def definition_from_mapping(payload: Mapping[str, Any]) -> Definition:
    """Build a :class:`Definition` from a plain mapping (TOML table or JSON object).

    Unset ``baud_rate``/``request_command``/``scale``/``offset`` fall back to
    their documented defaults.
    """

    name = str(payload["name"])
    parameters = tuple(
        _parameter_from_mapping(item) for item in payload.get("parameters", ())
    )
    gauges = _gauges_from_mapping(payload.get("gauges", ()), parameters)
    baud_rate = payload.get("baud_rate")
    return Definition(
        name=name,
        parameters=parameters,
        gauges=gauges,
        baud_rate=int(baud_rate) if baud_rate else DEFAULT_BAUD_RATE,
        request_command=parse_request_command(payload.get("request_command")),
        id=str(payload.get("id") or ""),
    )


def definition_to_mapping(definition: Definition) -> dict[str, Any]:
    """Serialise ``definition`` into JSON-friendly primitives."""

    parameters: list[dict[str, Any]] = []
    for parameter in definition.parameters:
        item: dict[str, Any] = {
            "id": parameter.id,
            "title": parameter.title,
            "units": parameter.units,
            "packet_offset": parameter.packet_offset,
            "byte_count": parameter.byte_count,
            "scale": parameter.scale,
            "offset": parameter.offset,
        }
        if parameter.gauge_range is not None:
            item["gauge_min"] = parameter.gauge_range.minimum
            item["gauge_max"] = parameter.gauge_range.maximum
        parameters.append(item)
    return {
        "id": definition.id,
        "name": definition.name,
        "baud_rate": definition.baud_rate,
        "request_command": list(definition.request_command),
        "parameters": parameters,
        "gauges": [
            {
                "id": gauge.slot_id,
                "parameter": gauge.parameter_id,
                "min": gauge.range.minimum,
                "max": gauge.range.maximum,
            }
            for gauge in definition.gauges
        ],
    }


def _slugify(token: str) -> str:
    normalised = token.strip().lower()
    slug = re.sub(r"[^a-z0-9]+", "-", normalised, flags=re.ASCII)
    slug = slug.strip("-")
    return slug or "definition"
