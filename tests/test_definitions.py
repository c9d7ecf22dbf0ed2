from __future__ import annotations

import dataclasses

import pytest

from aldl_link.definitions import (
    DEFAULT_BAUD_RATE,
    DEFAULT_GAUGE_RANGE,
    DEFAULT_REQUEST_COMMAND,
    Definition,
    GaugeRange,
    definition_from_mapping,
    definition_to_mapping,
    gauge_range_for,
    parse_hex_bytes,
    parse_request_command,
    rebind_gauge,
)
from tests.helpers import build_definition, build_parameter, definition_payload


def test_defaults_match_aldl_conventions() -> None:
    definition = Definition(name="Bare")

    assert definition.baud_rate == DEFAULT_BAUD_RATE == 8192
    assert definition.request_command == bytes.fromhex("F45701 00B4")
    assert definition.parameters == ()
    assert definition.id == "bare"


def test_parameter_defaults_scale_and_offset() -> None:
    parameter = build_parameter("spark")

    assert parameter.scale == 1.0
    assert parameter.offset == 0.0
    assert parameter.byte_count == 1


@pytest.mark.parametrize(
    "overrides",
    [
        pytest.param({"packet_offset": -1}, id="negative-offset"),
        pytest.param({"byte_count": 3}, id="byte-count"),
    ],
)
def test_parameter_rejects_invalid_layout(overrides: dict[str, int]) -> None:
    with pytest.raises(ValueError):
        build_parameter("bad", **overrides)


def test_definition_rejects_duplicate_ids() -> None:
    with pytest.raises(ValueError, match="Duplicated parameter id 'rpm'"):
        build_definition(parameters=[build_parameter("rpm"), build_parameter("rpm", packet_offset=1)])


def test_definition_is_immutable(definition: Definition) -> None:
    with pytest.raises(dataclasses.FrozenInstanceError):
        definition.name = "Other"  # type: ignore[misc]


@pytest.mark.parametrize(
    ("title", "expected"),
    [
        ("Engine RPM", GaugeRange(0.0, 7000.0)),
        ("Coolant Temp", GaugeRange(0.0, 120.0)),
        ("tps", GaugeRange(0.0, 100.0)),
        ("Battery Voltage", DEFAULT_GAUGE_RANGE),
        # First matching rule wins.
        ("RPM at TEMP", GaugeRange(0.0, 7000.0)),
    ],
)
def test_gauge_range_heuristic(title: str, expected: GaugeRange) -> None:
    assert gauge_range_for(build_parameter("x", title=title)) == expected


def test_explicit_gauge_range_overrides_heuristic() -> None:
    parameter = build_parameter("x", title="Engine RPM", gauge_range=GaugeRange(500.0, 6500.0))

    assert gauge_range_for(parameter) == GaugeRange(500.0, 6500.0)


def test_rebind_gauge_uses_parameter_metadata(definition: Definition) -> None:
    rebound = rebind_gauge(definition, 1, "tps")

    gauge = rebound.gauges[1]
    assert gauge.slot_id == "gauge-1"
    assert gauge.parameter_id == "tps"
    assert gauge.label == "TPS"
    assert gauge.unit == "%"
    assert gauge.range == GaugeRange(0.0, 100.0)
    assert definition.gauges[1].parameter_id == "coolant"


def test_rebind_gauge_ignores_unknown_parameter(definition: Definition) -> None:
    assert rebind_gauge(definition, 0, "missing") is definition


def test_rebind_gauge_rejects_unknown_slot(definition: Definition) -> None:
    with pytest.raises(IndexError):
        rebind_gauge(definition, 9, "tps")


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (None, DEFAULT_REQUEST_COMMAND),
        ("F4 57 01 00 B4", DEFAULT_REQUEST_COMMAND),
        ("0xF4,0x57,0x01,0x00,0xB4", DEFAULT_REQUEST_COMMAND),
        ([0xF4, 0x57, 0x01, 0x00, 0xB4], DEFAULT_REQUEST_COMMAND),
        (b"\x01\x02", b"\x01\x02"),
    ],
)
def test_parse_request_command(value: object, expected: bytes) -> None:
    assert parse_request_command(value) == expected


def test_parse_request_command_rejects_garbage() -> None:
    with pytest.raises(ValueError, match="Invalid request command"):
        parse_request_command("zz")


def test_parse_hex_bytes_accepts_colons() -> None:
    assert parse_hex_bytes("00:64:ff") == b"\x00\x64\xff"


def test_definition_from_mapping() -> None:
    definition = definition_from_mapping(definition_payload())

    assert definition.name == "Manifest ECM"
    assert definition.id == "manifest-ecm"
    assert [parameter.id for parameter in definition.parameters] == ["rpm", "coolant", "map"]
    coolant = definition.parameter("coolant")
    assert coolant is not None
    assert coolant.scale == 0.75
    assert coolant.offset == -40.0
    map_parameter = definition.parameter("map")
    assert map_parameter is not None
    assert map_parameter.scale == 1.0
    assert map_parameter.gauge_range == GaugeRange(0.0, 105.0)
    assert definition.gauges[0].range == GaugeRange(0.0, 7000.0)


def test_definition_from_mapping_keeps_explicit_zero_scale() -> None:
    payload = definition_payload()
    payload["parameters"][0]["scale"] = 0
    payload["parameters"][1]["scale"] = None

    definition = definition_from_mapping(payload)

    assert definition.parameters[0].scale == 0.0
    assert definition.parameters[1].scale == 1.0


def test_definition_from_mapping_rejects_unknown_gauge_parameter() -> None:
    payload = definition_payload()
    payload["gauges"] = [{"id": "main", "parameter": "boost"}]

    with pytest.raises(ValueError, match="unknown parameter 'boost'"):
        definition_from_mapping(payload)


def test_definition_mapping_round_trip(definition: Definition) -> None:
    assert definition_from_mapping(definition_to_mapping(definition)) == definition
