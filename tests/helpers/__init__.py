"""Convenience re-exports for test helpers."""

from __future__ import annotations

from .definitions import SAMPLE_PACKET, build_definition, build_parameter, definition_payload
from .transport import FakeTransport, ScriptedHandle, TickingClock

__all__ = [
    "FakeTransport",
    "SAMPLE_PACKET",
    "ScriptedHandle",
    "TickingClock",
    "build_definition",
    "build_parameter",
    "definition_payload",
]
