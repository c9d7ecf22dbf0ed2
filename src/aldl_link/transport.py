"""Transport contract consumed by the connection manager.

The host environment supplies a :class:`Transport` whose :meth:`Transport.open`
returns a :class:`TransportHandle`.  Handles expose blocking ``write`` and
``read`` primitives; any failure is reported by raising an exception with a
human-readable message.

:class:`SerialTransport` implements the contract on top of :mod:`serial`
(pyserial) for USB/RS-232 ALDL interfaces.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

import serial
from serial.tools import list_ports as _list_ports

from .definitions import DEFAULT_BAUD_RATE

__all__ = [
    "DEFAULT_MAX_PACKET_SIZE",
    "DEFAULT_READ_TIMEOUT",
    "SerialHandle",
    "SerialTransport",
    "Transport",
    "TransportHandle",
    "TransportOptions",
    "available_ports",
]


logger = logging.getLogger(__name__)


DEFAULT_READ_TIMEOUT = 1.0
DEFAULT_INTER_BYTE_TIMEOUT = 0.02
DEFAULT_MAX_PACKET_SIZE = 256


@dataclass(frozen=True, slots=True)
class TransportOptions:
    """Options forwarded to :meth:`Transport.open`.

    ``baud_rate`` left as ``None`` lets the connection manager pick the active
    definition's rate, then the ALDL default of 8192.
    """

    baud_rate: int | None = None


@runtime_checkable
class TransportHandle(Protocol):
    def write(self, data: bytes) -> None:  # pragma: no cover - interface only
        ...

    def read(self) -> bytes:  # pragma: no cover - interface only
        ...

    def close(self) -> None:  # pragma: no cover - interface only
        ...


@runtime_checkable
class Transport(Protocol):
    def open(self, options: TransportOptions) -> TransportHandle:  # pragma: no cover - interface only
        ...


class SerialHandle:
    """Open pyserial port used for a single ALDL session."""

    def __init__(self, port: serial.Serial, *, max_packet_size: int) -> None:
        self._serial = port
        self._max_packet_size = max_packet_size

    @property
    def port(self) -> str:
        return str(self._serial.port)

    def write(self, data: bytes) -> None:
        self._serial.write(data)
        self._serial.flush()

    def read(self) -> bytes:
        # Returns on the first inter-byte gap, so a single call yields one frame.
        return bytes(self._serial.read(self._max_packet_size))

    def close(self) -> None:
        if self._serial.is_open:
            self._serial.close()


class SerialTransport:
    """Open ALDL interfaces through pyserial.

    Parameters
    ----------
    port:
        Device name, e.g. ``/dev/ttyUSB0`` or ``COM3``.
    read_timeout:
        Upper bound in seconds for a single read.  ``None`` blocks until the
        first byte arrives.
    inter_byte_timeout:
        Silence, in seconds, that terminates a frame once bytes started to
        arrive.
    max_packet_size:
        Largest frame returned by one read.
    """

    def __init__(
        self,
        port: str,
        *,
        read_timeout: float | None = DEFAULT_READ_TIMEOUT,
        inter_byte_timeout: float | None = DEFAULT_INTER_BYTE_TIMEOUT,
        max_packet_size: int = DEFAULT_MAX_PACKET_SIZE,
    ) -> None:
        self.port = port
        self.read_timeout = read_timeout
        self.inter_byte_timeout = inter_byte_timeout
        self.max_packet_size = max(int(max_packet_size), 1)

    def open(self, options: TransportOptions) -> SerialHandle:
        device = serial.Serial(
            port=self.port,
            baudrate=options.baud_rate or DEFAULT_BAUD_RATE,
            bytesize=serial.EIGHTBITS,
            parity=serial.PARITY_NONE,
            stopbits=serial.STOPBITS_ONE,
            timeout=self.read_timeout,
            inter_byte_timeout=self.inter_byte_timeout,
            write_timeout=self.read_timeout,
        )
        logger.info(
            "Serial port opened.",
            extra={
                "event": "serial.opened",
                "port": self.port,
                "baud_rate": options.baud_rate,
            },
        )
        return SerialHandle(device, max_packet_size=self.max_packet_size)


def available_ports() -> list[str]:
    """Return the device names of the serial ports visible to pyserial."""

    return sorted(info.device for info in _list_ports.comports())
