"""Builders for definitions used across the test-suite."""

from __future__ import annotations

from typing import Any, Iterable

from aldl_link.definitions import (
    Definition,
    ParameterDefinition,
    build_gauge_binding,
)

# rpm=3000, coolant=56.0, tps=50.0, o2=448.0
SAMPLE_PACKET = bytes((0x0B, 0xB8, 0x80, 0x64, 0x70))


def build_parameter(identifier: str = "rpm", **overrides: Any) -> ParameterDefinition:
    payload: dict[str, Any] = {"id": identifier, "title": identifier.upper()}
    payload.update(overrides)
    return ParameterDefinition(**payload)


def _default_parameters() -> tuple[ParameterDefinition, ...]:
    return (
        build_parameter("rpm", title="Engine RPM", units="rpm", packet_offset=0, byte_count=2),
        build_parameter(
            "coolant",
            title="Coolant Temp",
            units="C",
            packet_offset=2,
            scale=0.75,
            offset=-40.0,
        ),
        build_parameter("tps", title="TPS", units="%", packet_offset=3, scale=0.5),
        build_parameter("o2", title="O2 Sensor", units="mV", packet_offset=4, scale=4.0),
    )


def build_definition(
    name: str = "Test ECM",
    *,
    parameters: Iterable[ParameterDefinition] | None = None,
    **overrides: Any,
) -> Definition:
    resolved = tuple(parameters) if parameters is not None else _default_parameters()
    gauges = overrides.pop(
        "gauges",
        tuple(
            build_gauge_binding(parameter, f"gauge-{index}")
            for index, parameter in enumerate(resolved[:2])
        ),
    )
    return Definition(name=name, parameters=resolved, gauges=gauges, **overrides)


def definition_payload(name: str = "Manifest ECM") -> dict[str, Any]:
    return {
        "name": name,
        "baud_rate": 8192,
        "request_command": "F4 57 01 00 B4",
        "parameters": [
            {"id": "rpm", "title": "Engine RPM", "units": "rpm", "packet_offset": 0, "byte_count": 2},
            {
                "id": "coolant",
                "title": "Coolant Temp",
                "units": "C",
                "packet_offset": 2,
                "scale": 0.75,
                "offset": -40,
            },
            {"id": "map", "title": "MAP", "units": "kPa", "packet_offset": 3, "gauge_max": 105},
        ],
        "gauges": [{"id": "main", "parameter": "rpm"}],
    }
