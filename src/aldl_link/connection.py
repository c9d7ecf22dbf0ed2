"""Own the transport handle and perform single request/response exchanges."""

from __future__ import annotations

import logging
from types import TracebackType
from typing import Optional

from .definitions import DEFAULT_BAUD_RATE, Definition
from .errors import BusError, LinkRefused
from .transport import Transport, TransportHandle, TransportOptions

__all__ = ["ConnectionManager"]


logger = logging.getLogger(__name__)


class ConnectionManager:
    """Wrap a :class:`~aldl_link.transport.Transport` for one ALDL link.

    The manager performs no queuing: callers must not issue a new
    :meth:`exchange` before the previous one returned.  The poll scheduler
    guarantees that ordering.
    """

    def __init__(self, transport: Transport, *, definition: Definition | None = None) -> None:
        self._transport = transport
        self._handle: TransportHandle | None = None
        self.definition = definition

    @property
    def is_open(self) -> bool:
        return self._handle is not None

    def resolve_baud_rate(self, options: TransportOptions | None = None) -> int:
        """Return the baud rate used by :meth:`open` for ``options``."""

        if options is not None and options.baud_rate:
            return int(options.baud_rate)
        if self.definition is not None and self.definition.baud_rate:
            return int(self.definition.baud_rate)
        return DEFAULT_BAUD_RATE

    def open(self, options: TransportOptions | None = None) -> TransportHandle:
        """Acquire a transport handle, replacing any handle already held."""

        if self._handle is not None:
            self.close()
        baud_rate = self.resolve_baud_rate(options)
        try:
            handle = self._transport.open(TransportOptions(baud_rate=baud_rate))
        except Exception as exc:
            logger.warning(
                "ALDL link refused by transport.",
                extra={"event": "aldl.link_refused", "baud_rate": baud_rate, "reason": str(exc)},
            )
            raise LinkRefused(
                str(exc) or exc.__class__.__name__,
                context={"baud_rate": baud_rate},
            ) from exc
        self._handle = handle
        logger.info(
            "ALDL link opened.",
            extra={"event": "aldl.link_opened", "baud_rate": baud_rate},
        )
        return handle

    def close(self) -> None:
        handle, self._handle = self._handle, None
        if handle is None:
            return
        try:
            handle.close()
        except Exception as exc:
            logger.warning(
                "Closing the ALDL link failed.",
                extra={"event": "aldl.close_failed", "reason": str(exc)},
            )
        else:
            logger.info("ALDL link closed.", extra={"event": "aldl.link_closed"})

    def exchange(self, request: bytes) -> bytes:
        """Write ``request`` and return the bytes delivered by exactly one read.

        The returned packet may be partial or empty.  Any transport failure,
        including calling this method without an open link, raises
        :class:`~aldl_link.errors.BusError`.
        """

        handle = self._handle
        if handle is None:
            raise BusError("No open ALDL link", context={"request": bytes(request).hex()})
        try:
            handle.write(bytes(request))
            response = handle.read()
        except Exception as exc:
            raise BusError(
                str(exc) or exc.__class__.__name__,
                context={"request": bytes(request).hex()},
            ) from exc
        return bytes(response or b"")

    def __enter__(self) -> "ConnectionManager":
        return self

    def __exit__(
        self,
        exc_type: Optional[type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> None:
        self.close()
