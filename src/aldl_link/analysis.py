"""Best-effort AI collaborators: engine-state summaries and fault-code help.

The acquisition engine only depends on the :class:`AnalysisService` contract.
:class:`GuardedAnalysis` wraps any implementation so callers never see an
exception: failures and empty answers become a fixed fallback message.
:class:`GeminiAnalysisService` implements the contract against the Gemini
``generateContent`` endpoint using :mod:`httpx`.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from types import TracebackType
from typing import Any, Optional, Protocol, runtime_checkable

import httpx

from .errors import AnalysisUnavailable

__all__ = [
    "ANALYSIS_FALLBACK",
    "API_KEY_ENV_VAR",
    "AnalysisService",
    "DEFAULT_MODEL",
    "EXPLANATION_FALLBACK",
    "GeminiAnalysisService",
    "GuardedAnalysis",
]


logger = logging.getLogger(__name__)


ANALYSIS_FALLBACK = "Engine analysis is not available right now."
EXPLANATION_FALLBACK = "Could not fetch an explanation for this fault code right now."

API_KEY_ENV_VAR = "GEMINI_API_KEY"
DEFAULT_MODEL = "gemini-2.0-flash"
DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
DEFAULT_TIMEOUT = 30.0


@runtime_checkable
class AnalysisService(Protocol):
    async def analyze(self, sample: Mapping[str, float]) -> str:  # pragma: no cover - interface only
        ...

    async def explain_code(self, code: str) -> str:  # pragma: no cover - interface only
        ...


class GuardedAnalysis:
    """Shield callers from failures of an :class:`AnalysisService`."""

    def __init__(
        self,
        service: AnalysisService,
        *,
        analysis_fallback: str = ANALYSIS_FALLBACK,
        explanation_fallback: str = EXPLANATION_FALLBACK,
    ) -> None:
        self._service = service
        self.analysis_fallback = analysis_fallback
        self.explanation_fallback = explanation_fallback

    async def analyze(self, sample: Mapping[str, float]) -> str:
        try:
            answer = await self._service.analyze(sample)
        except Exception as exc:
            self._log_failure("analyze", exc)
            return self.analysis_fallback
        return answer.strip() if answer and answer.strip() else self.analysis_fallback

    async def explain_code(self, code: str) -> str:
        try:
            answer = await self._service.explain_code(code)
        except Exception as exc:
            self._log_failure("explain_code", exc, code=code)
            return self.explanation_fallback
        return answer.strip() if answer and answer.strip() else self.explanation_fallback

    @staticmethod
    def _log_failure(operation: str, exc: BaseException, **context: Any) -> None:
        logger.warning(
            "Analysis service failed; returning fallback message.",
            extra={
                "event": "analysis.unavailable",
                "operation": operation,
                "reason": str(exc) or exc.__class__.__name__,
                **context,
            },
        )


def _format_sample(sample: Mapping[str, float]) -> str:
    return "\n".join(f"{key}: {value:g}" for key, value in sample.items())


def _extract_text(payload: Mapping[str, Any]) -> str:
    candidates = payload.get("candidates") or []
    if not candidates:
        return ""
    parts = (candidates[0].get("content") or {}).get("parts") or []
    return "".join(str(part.get("text", "")) for part in parts)


class GeminiAnalysisService:
    """:class:`AnalysisService` backed by the Gemini REST API.

    Parameters
    ----------
    api_key:
        API key; falls back to the ``GEMINI_API_KEY`` environment variable.
    model:
        Model name used in the ``generateContent`` call.
    client:
        Optional pre-configured :class:`httpx.AsyncClient`.  When omitted the
        service owns a client and closes it in :meth:`aclose`.
    transport:
        Optional :mod:`httpx` transport for the owned client.
    """

    def __init__(
        self,
        api_key: str | None = None,
        *,
        model: str = DEFAULT_MODEL,
        base_url: str = DEFAULT_BASE_URL,
        client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = api_key or os.environ.get(API_KEY_ENV_VAR) or None
        self.model = model
        self.base_url = base_url.rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout, transport=transport)

    async def analyze(self, sample: Mapping[str, float]) -> str:
        prompt = (
            "You are an automotive diagnostic assistant. Summarise the state of "
            "this engine from the following live ECM readings and point out "
            "anything abnormal. Keep the answer short.\n\n"
            f"{_format_sample(sample)}"
        )
        return await self._generate(prompt)

    async def explain_code(self, code: str) -> str:
        prompt = (
            "You are an automotive diagnostic assistant. Explain the GM ALDL "
            f"diagnostic trouble code {code.strip()}: its meaning, common causes "
            "and first checks."
        )
        return await self._generate(prompt)

    async def _generate(self, prompt: str) -> str:
        if not self.api_key:
            raise AnalysisUnavailable("Gemini API key not configured")
        url = f"{self.base_url}/models/{self.model}:generateContent"
        payload = {"contents": [{"role": "user", "parts": [{"text": prompt}]}]}
        response = await self._client.post(url, params={"key": self.api_key}, json=payload)
        response.raise_for_status()
        text = _extract_text(response.json())
        if not text.strip():
            raise AnalysisUnavailable(
                "Gemini returned an empty answer", context={"model": self.model}
            )
        return text

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "GeminiAnalysisService":
        return self

    async def __aexit__(
        self,
        exc_type: Optional[type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> None:
        await self.aclose()
