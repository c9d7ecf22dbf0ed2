"""Simulated ECM for running the acquisition engine without hardware.

Usage::

    from aldl_link.simulator import SimulatedEcm, SimulatedTransport

    transport = SimulatedTransport(SimulatedEcm(packet_size=20, seed=7))
    connection = ConnectionManager(transport)
"""

from __future__ import annotations

import itertools
import logging
import random
from collections.abc import Iterable, Iterator

from .definitions import DEFAULT_REQUEST_COMMAND
from .transport import TransportOptions

__all__ = ["SimulatedEcm", "SimulatedHandle", "SimulatedTransport"]


logger = logging.getLogger(__name__)


_MAX_STEP = 3


class SimulatedEcm:
    """Answer the request command with synthetic data frames.

    When ``frames`` is given those frames are replayed in a loop.  Otherwise
    every byte of a ``packet_size`` frame performs a bounded random walk
    seeded by ``seed``, so repeated runs produce identical streams.
    Requests that differ from ``request_command`` get no answer.
    """

    def __init__(
        self,
        *,
        request_command: bytes = DEFAULT_REQUEST_COMMAND,
        packet_size: int = 64,
        seed: int = 0,
        frames: Iterable[bytes] | None = None,
    ) -> None:
        self.request_command = bytes(request_command)
        self._random = random.Random(seed)
        self._state = [self._random.randint(32, 224) for _ in range(max(packet_size, 0))]
        self._frames: Iterator[bytes] | None = (
            itertools.cycle([bytes(frame) for frame in frames]) if frames is not None else None
        )
        self.requests_seen = 0

    def respond(self, request: bytes) -> bytes:
        self.requests_seen += 1
        if bytes(request) != self.request_command:
            logger.debug(
                "Simulated ECM ignored unknown request.",
                extra={"event": "simulator.unknown_request", "request": bytes(request).hex()},
            )
            return b""
        if self._frames is not None:
            return next(self._frames)
        return self._next_frame()

    def _next_frame(self) -> bytes:
        for index, value in enumerate(self._state):
            step = self._random.randint(-_MAX_STEP, _MAX_STEP)
            self._state[index] = min(255, max(0, value + step))
        return bytes(self._state)


class SimulatedHandle:
    def __init__(self, ecm: SimulatedEcm) -> None:
        self._ecm = ecm
        self._pending = b""
        self.closed = False

    def write(self, data: bytes) -> None:
        if self.closed:
            raise OSError("Simulated port is closed")
        self._pending = self._ecm.respond(data)

    def read(self) -> bytes:
        if self.closed:
            raise OSError("Simulated port is closed")
        payload, self._pending = self._pending, b""
        return payload

    def close(self) -> None:
        self.closed = True


class SimulatedTransport:
    """Transport returning handles bound to a :class:`SimulatedEcm`."""

    def __init__(self, ecm: SimulatedEcm | None = None) -> None:
        self.ecm = ecm or SimulatedEcm()
        self.opened_with: TransportOptions | None = None

    def open(self, options: TransportOptions) -> SimulatedHandle:
        self.opened_with = options
        logger.info(
            "Simulated ECM link opened.",
            extra={"event": "simulator.opened", "baud_rate": options.baud_rate},
        )
        return SimulatedHandle(self.ecm)
