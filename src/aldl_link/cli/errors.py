"""Error helpers for the ``aldl-link`` command line."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from ..errors import AldlError, _normalise_context

__all__ = [
    "CliError",
    "ErrorPayload",
    "build_error_payload",
    "log_cli_error",
]


_CATEGORY_STATUS_CODES: Mapping[str, int] = {
    "runtime": 1,
    "usage": 2,
    "io": 3,
    "not_found": 4,
}

_DEFAULT_CATEGORY = "runtime"
_DEFAULT_LOGGER_NAME = "aldl_link.cli"


@dataclass(frozen=True, slots=True)
class ErrorPayload:
    """Exit status, category and context describing one CLI failure."""

    status_code: int
    category: str
    message: str
    context: Mapping[str, Any]

    def as_dict(self) -> Mapping[str, Any]:
        return {
            "status_code": self.status_code,
            "category": self.category,
            "message": self.message,
            "context": dict(self.context),
        }


def build_error_payload(
    message: str,
    *,
    category: str = _DEFAULT_CATEGORY,
    status_code: Optional[int] = None,
    context: Optional[Mapping[str, Any]] = None,
) -> ErrorPayload:
    resolved_category = category or _DEFAULT_CATEGORY
    if status_code is None:
        status_code = _CATEGORY_STATUS_CODES.get(
            resolved_category, _CATEGORY_STATUS_CODES[_DEFAULT_CATEGORY]
        )
    return ErrorPayload(
        status_code=status_code,
        category=resolved_category,
        message=message,
        context=_normalise_context(context),
    )


def log_cli_error(
    payload: ErrorPayload,
    *,
    logger: Optional[logging.Logger] = None,
    exc_info: Optional[BaseException] = None,
) -> None:
    target = logger or logging.getLogger(_DEFAULT_LOGGER_NAME)
    target.error(
        payload.message,
        extra={
            "event": "cli.error",
            "category": payload.category,
            "status_code": payload.status_code,
            "context": dict(payload.context),
        },
        exc_info=exc_info,
    )


class CliError(AldlError):
    """Failure reported to the user with a category-specific exit status."""

    def __init__(
        self,
        message: str,
        *,
        category: str = _DEFAULT_CATEGORY,
        status_code: Optional[int] = None,
        context: Optional[Mapping[str, Any]] = None,
        logged: bool = False,
    ) -> None:
        payload = build_error_payload(
            message, category=category, status_code=status_code, context=context
        )
        super().__init__(message, context=payload.context)
        self.category = payload.category
        self.status_code = payload.status_code
        self.payload = payload
        self.logged = logged

    @classmethod
    def from_exception(
        cls,
        exc: BaseException,
        *,
        category: str = _DEFAULT_CATEGORY,
        context: Optional[Mapping[str, Any]] = None,
    ) -> "CliError":
        """Wrap ``exc`` while keeping an :class:`AldlError`'s own context."""

        merged: dict[str, Any] = {}
        if isinstance(exc, AldlError):
            merged.update(exc.context)
        merged.update(context or {})
        message = getattr(exc, "message", None) or str(exc) or exc.__class__.__name__
        return cls(message, category=category, context=merged)
