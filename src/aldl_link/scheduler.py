"""Poll scheduler driving the request/response cycle of an ALDL session.

The scheduler is the single writer of engine state.  Each iteration issues the
definition's request command, decodes the answer and publishes the resulting
:class:`~aldl_link.decoder.TelemetrySample` by swapping the ``latest``
reference and notifying subscribers.  Requests are strictly paired with
responses: a new exchange is only issued after the previous one returned.

Cancellation is cooperative.  :meth:`PollScheduler.stop` raises a flag that is
checked at the top of every iteration, so an exchange already in flight always
completes.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from enum import Enum
from typing import Callable

from .connection import ConnectionManager
from .decoder import Clock, TelemetrySample, decode
from .definitions import Definition
from .errors import BusError
from .session_log import SessionLogger

__all__ = [
    "DEFAULT_POLL_INTERVAL",
    "PollScheduler",
    "SchedulerState",
    "Subscriber",
]


logger = logging.getLogger(__name__)


DEFAULT_POLL_INTERVAL = 0.12

Subscriber = Callable[[TelemetrySample], None]


class SchedulerState(str, Enum):
    IDLE = "idle"
    POLLING = "polling"


class PollScheduler:
    """Poll the ECM through ``connection`` until stopped or failed.

    Parameters
    ----------
    connection:
        Connection manager owning the transport handle.
    definition:
        Active definition.  Can be replaced between sessions through the
        :attr:`definition` attribute.
    session_log:
        Optional logger receiving every sample while it is active.
    interval:
        Pause in seconds between iterations.
    max_cycles:
        Optional bound on the number of exchanges per session.
    clock:
        Timestamp source forwarded to :func:`~aldl_link.decoder.decode`.
    sleep:
        Blocking pause used by :meth:`start`.
    """

    def __init__(
        self,
        connection: ConnectionManager,
        *,
        definition: Definition | None = None,
        session_log: SessionLogger | None = None,
        interval: float = DEFAULT_POLL_INTERVAL,
        max_cycles: int | None = None,
        clock: Clock | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._connection = connection
        self.definition = definition
        self.session_log = session_log
        self.interval = max(float(interval), 0.0)
        self.max_cycles = max_cycles
        self._clock = clock
        self._sleep = sleep
        self._stop_requested = threading.Event()
        self._lock = threading.Lock()
        self._state = SchedulerState.IDLE
        self._latest: TelemetrySample | None = None
        self._last_error: BusError | None = None
        self._subscribers: tuple[Subscriber, ...] = ()
        self._transmitted = 0
        self._received = 0
        self._empty_responses = 0

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def is_polling(self) -> bool:
        return self._state is SchedulerState.POLLING

    @property
    def latest(self) -> TelemetrySample | None:
        return self._latest

    @property
    def last_error(self) -> BusError | None:
        return self._last_error

    @property
    def statistics(self) -> dict[str, int]:
        """Return exchange accounting for the current scheduler."""

        return {
            "transmitted": self._transmitted,
            "received": self._received,
            "empty_responses": self._empty_responses,
        }

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register ``callback`` for every published sample.

        Returns a callable removing the subscription.
        """

        with self._lock:
            self._subscribers = self._subscribers + (callback,)

        def _unsubscribe() -> None:
            with self._lock:
                self._subscribers = tuple(
                    existing for existing in self._subscribers if existing is not callback
                )

        return _unsubscribe

    def stop(self) -> None:
        self._stop_requested.set()

    def start(self) -> bool:
        """Run the polling loop in the calling thread.

        Returns ``False`` without polling when the link is not open, no
        definition is active or a session is already running.  Otherwise
        blocks until :meth:`stop` is called, ``max_cycles`` is reached or an
        exchange fails, and returns ``True``.
        """

        definition = self._begin()
        if definition is None:
            return False
        cycles = 0
        try:
            while not self._stop_requested.is_set():
                try:
                    packet = self._connection.exchange(definition.request_command)
                except BusError as exc:
                    self._fail(exc)
                    break
                self._handle_response(definition, packet)
                cycles += 1
                if self._limit_reached(cycles):
                    break
                self._sleep(self.interval)
        finally:
            self._finish()
        return True

    async def start_async(self) -> bool:
        """Asynchronous rendition of :meth:`start`.

        The blocking exchange runs in a worker thread and the pause between
        iterations is an :func:`asyncio.sleep`.
        """

        definition = self._begin()
        if definition is None:
            return False
        cycles = 0
        try:
            while not self._stop_requested.is_set():
                try:
                    packet = await asyncio.to_thread(
                        self._connection.exchange, definition.request_command
                    )
                except BusError as exc:
                    self._fail(exc)
                    break
                self._handle_response(definition, packet)
                cycles += 1
                if self._limit_reached(cycles):
                    break
                await asyncio.sleep(self.interval)
        finally:
            self._finish()
        return True

    def _begin(self) -> Definition | None:
        definition = self.definition
        if not self._connection.is_open:
            logger.info(
                "Polling not started: link is closed.",
                extra={"event": "scheduler.start_skipped", "reason": "link_closed"},
            )
            return None
        if definition is None:
            logger.info(
                "Polling not started: no active definition.",
                extra={"event": "scheduler.start_skipped", "reason": "no_definition"},
            )
            return None
        with self._lock:
            if self._state is SchedulerState.POLLING:
                return None
            self._stop_requested.clear()
            self._state = SchedulerState.POLLING
        self._last_error = None
        logger.info(
            "Polling started.",
            extra={
                "event": "scheduler.started",
                "definition": definition.name,
                "interval": self.interval,
            },
        )
        return definition

    def _finish(self) -> None:
        self._state = SchedulerState.IDLE
        logger.info(
            "Polling stopped.",
            extra={"event": "scheduler.stopped", **self.statistics},
        )

    def _fail(self, exc: BusError) -> None:
        self._last_error = exc
        logger.error(
            "ALDL exchange failed; polling halted.",
            extra={"event": "scheduler.bus_error", "reason": exc.message, **exc.context},
        )

    def _limit_reached(self, cycles: int) -> bool:
        return self.max_cycles is not None and cycles >= self.max_cycles

    def _handle_response(self, definition: Definition, packet: bytes) -> None:
        self._transmitted += 1
        if not packet:
            self._empty_responses += 1
            logger.debug(
                "ECM returned an empty response.",
                extra={"event": "scheduler.empty_response"},
            )
        sample = decode(definition, packet, clock=self._clock)
        self._publish(sample)
        if self.session_log is not None:
            self.session_log.record(sample)
        self._received += 1

    def _publish(self, sample: TelemetrySample) -> None:
        self._latest = sample
        for callback in self._subscribers:
            try:
                callback(sample)
            except Exception:
                logger.exception(
                    "Telemetry subscriber raised.",
                    extra={"event": "scheduler.subscriber_error"},
                )
