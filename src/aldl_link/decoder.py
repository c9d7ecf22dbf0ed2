"""Decode raw ALDL response packets into telemetry samples.

:func:`decode` walks the parameters of a :class:`~aldl_link.definitions.Definition`
in order and extracts each one that fits inside the received packet.  Packets
on the ALDL bus routinely arrive short, so fields whose first byte lies past the
end of the packet are simply omitted from the sample; no error is raised.

A two-byte field whose low byte is missing decodes as a single byte at the
same offset.  Existing logs depend on that behaviour.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Callable

from .definitions import Definition, ParameterDefinition

__all__ = ["Clock", "TelemetrySample", "decode", "extract_raw"]


Clock = Callable[[], datetime]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class TelemetrySample(Mapping[str, float]):
    """Immutable mapping of parameter id to decoded value plus capture time."""

    __slots__ = ("_values", "_timestamp")

    def __init__(self, values: Mapping[str, float], timestamp: datetime) -> None:
        self._values: Mapping[str, float] = MappingProxyType(
            {str(key): float(value) for key, value in values.items()}
        )
        self._timestamp = timestamp

    @classmethod
    def for_definition(
        cls,
        definition: Definition,
        values: Mapping[str, float],
        timestamp: datetime,
    ) -> "TelemetrySample":
        """Build a sample after checking ``values`` against ``definition``'s ids."""

        unknown = set(values) - definition.parameter_ids
        if unknown:
            raise ValueError(
                f"Sample keys not declared by definition '{definition.name}': "
                f"{', '.join(sorted(unknown))}"
            )
        return cls(values, timestamp)

    @property
    def timestamp(self) -> datetime:
        return self._timestamp

    @property
    def values(self) -> Mapping[str, float]:
        return self._values

    def __getitem__(self, key: str) -> float:
        return self._values[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, TelemetrySample):
            return self._timestamp == other._timestamp and dict(self._values) == dict(
                other._values
            )
        return NotImplemented

    def __hash__(self) -> int:
        return hash((self._timestamp, frozenset(self._values.items())))

    def __repr__(self) -> str:
        return f"TelemetrySample({dict(self._values)!r}, timestamp={self._timestamp.isoformat()!r})"


def extract_raw(parameter: ParameterDefinition, packet: bytes) -> int | None:
    """Return the raw integer for ``parameter`` or ``None`` when it does not fit."""

    position = parameter.packet_offset
    if position >= len(packet):
        return None
    if parameter.byte_count == 2 and position + 1 < len(packet):
        return (packet[position] << 8) | packet[position + 1]
    return packet[position]


def decode(
    definition: Definition,
    packet: bytes | bytearray | memoryview,
    *,
    clock: Clock | None = None,
) -> TelemetrySample:
    """Decode ``packet`` according to ``definition``.

    Parameters
    ----------
    definition:
        Definition whose parameters are extracted in declaration order.
    packet:
        Response bytes exactly as read from the bus; may be partial or empty.
    clock:
        Optional callable returning the capture timestamp.  Defaults to the
        current UTC time.
    """

    payload = bytes(packet)
    values: dict[str, float] = {}
    for parameter in definition.parameters:
        raw = extract_raw(parameter, payload)
        if raw is None:
            continue
        values[parameter.id] = raw * parameter.scale + parameter.offset
    timestamp = (clock or _utc_now)()
    return TelemetrySample.for_definition(definition, values, timestamp)
