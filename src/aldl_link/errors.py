"""Error taxonomy shared by the acquisition engine."""

from __future__ import annotations

from typing import Any, Mapping, MutableMapping, Optional

__all__ = [
    "AldlError",
    "AnalysisUnavailable",
    "BusError",
    "LinkRefused",
    "TransportError",
]


def _normalise_context(context: Optional[Mapping[str, Any]]) -> Mapping[str, Any]:
    if not context:
        return {}
    payload: MutableMapping[str, Any] = {}
    for key, value in context.items():
        if isinstance(value, (str, int, float, bool)) or value is None:
            payload[str(key)] = value
        else:
            payload[str(key)] = str(value)
    return dict(payload)


class AldlError(Exception):
    """Base class for errors raised by :mod:`aldl_link`.

    ``context`` carries JSON-friendly details that log records and CLI
    payloads can forward without further conversion.
    """

    def __init__(self, message: str, *, context: Optional[Mapping[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = _normalise_context(context)


class TransportError(AldlError):
    """Failure reported by the transport supplied by the host environment."""


class LinkRefused(TransportError):
    """Opening the transport failed or access to it was denied.

    Recoverable: the user retries through the connect flow.
    """


class BusError(TransportError):
    """A write or read failed while a poll exchange was in progress.

    Fatal to the current polling session only.
    """


class AnalysisUnavailable(AldlError):
    """The analysis collaborator failed or returned nothing."""
