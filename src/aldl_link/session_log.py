"""Append-only session log of decoded samples with CSV export."""

from __future__ import annotations

import csv
import io
import logging
import threading
import time
from pathlib import Path
from typing import Callable

import pandas as pd

from .decoder import TelemetrySample

__all__ = ["SessionLogger", "export_filename"]


logger = logging.getLogger(__name__)


TIMESTAMP_COLUMN = "timestamp"


def export_filename(epoch_ms: int) -> str:
    return f"aldl_log_{epoch_ms}.csv"


def _format_value(value: float | None) -> str:
    if value is None:
        return ""
    number = float(value)
    if number.is_integer():
        return str(int(number))
    return repr(number)


class SessionLogger:
    """Buffer samples while logging is active.

    :meth:`start` clears the buffer, :meth:`stop` keeps it for export and
    :meth:`record` ignores samples while the logger is inactive.
    """

    def __init__(self, *, now_ms: Callable[[], int] | None = None) -> None:
        self._samples: list[TelemetrySample] = []
        self._active = False
        self._lock = threading.Lock()
        self._now_ms = now_ms or (lambda: int(time.time() * 1000))

    @property
    def active(self) -> bool:
        return self._active

    @property
    def samples(self) -> tuple[TelemetrySample, ...]:
        with self._lock:
            return tuple(self._samples)

    def __len__(self) -> int:
        return len(self._samples)

    def start(self) -> None:
        with self._lock:
            self._samples.clear()
            self._active = True
        logger.info("Session logging started.", extra={"event": "session_log.started"})

    def stop(self) -> None:
        with self._lock:
            self._active = False
            count = len(self._samples)
        logger.info(
            "Session logging stopped.",
            extra={"event": "session_log.stopped", "samples": count},
        )

    def clear(self) -> None:
        with self._lock:
            self._samples.clear()

    def record(self, sample: TelemetrySample) -> bool:
        """Append ``sample`` when logging is active and report whether it was kept."""

        with self._lock:
            if not self._active:
                return False
            self._samples.append(sample)
            return True

    def columns(self) -> list[str]:
        """Return the export header derived from the first buffered sample."""

        with self._lock:
            if not self._samples:
                return []
            return [TIMESTAMP_COLUMN, *self._samples[0].keys()]

    def export(self) -> str | None:
        """Render the buffer as comma-separated text.

        The header is ``timestamp`` followed by the keys of the first sample.
        Later samples missing one of those keys get an empty cell.  Returns
        ``None`` when nothing was recorded.
        """

        samples = self.samples
        if not samples:
            return None
        keys = list(samples[0].keys())
        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")
        writer.writerow([TIMESTAMP_COLUMN, *keys])
        for sample in samples:
            writer.writerow(
                [sample.timestamp.isoformat(), *(_format_value(sample.get(key)) for key in keys)]
            )
        return buffer.getvalue()

    def export_to(self, directory: Path | str) -> Path | None:
        """Write :meth:`export` output to ``directory`` and return the file path."""

        text = self.export()
        if text is None:
            logger.info(
                "Nothing to export: session log is empty.",
                extra={"event": "session_log.export_skipped"},
            )
            return None
        target_dir = Path(directory).expanduser()
        target_dir.mkdir(parents=True, exist_ok=True)
        destination = target_dir / export_filename(self._now_ms())
        destination.write_text(text, encoding="utf-8")
        logger.info(
            "Session log exported.",
            extra={
                "event": "session_log.exported",
                "path": str(destination),
                "samples": len(self._samples),
            },
        )
        return destination

    def to_frame(self) -> pd.DataFrame:
        """Return the buffered samples as a :class:`pandas.DataFrame`.

        Columns follow :meth:`columns`; missing values become ``NaN``.
        """

        samples = self.samples
        columns = self.columns()
        rows = [
            {TIMESTAMP_COLUMN: sample.timestamp, **dict(sample.values)} for sample in samples
        ]
        frame = pd.DataFrame.from_records(rows)
        if not columns:
            return frame
        return frame.reindex(columns=columns)
