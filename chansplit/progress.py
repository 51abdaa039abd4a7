"""CHANSPLIT progress reporting.

The conversion worker is the only writer; any number of readers (a UI loop,
an API status endpoint) may poll a ``ProgressLog`` while it runs.
"""

from __future__ import annotations

import threading
import time
from dataclasses import asdict, dataclass
from typing import Any, Protocol

import structlog

logger = structlog.get_logger()


class ProgressSink(Protocol):
    """Receives at most one update per source track."""

    def report(self, fraction: float, message: str) -> None: ...


@dataclass(frozen=True)
class ProgressUpdate:
    """One progress sample."""

    fraction: float  # 0-1
    message: str
    timestamp: float

    @property
    def percentage(self) -> int:
        return round(self.fraction * 100)

    def to_dict(self) -> dict[str, Any]:
        return {**asdict(self), "percentage": self.percentage}


class ProgressLog:
    """Thread-safe, append-only progress history."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._updates: list[ProgressUpdate] = []

    def report(self, fraction: float, message: str) -> None:
        if not 0.0 <= fraction <= 1.0:
            raise ValueError(f"Progress fraction must be within 0-1, got {fraction}")
        update = ProgressUpdate(fraction=fraction, message=message, timestamp=time.monotonic())
        with self._lock:
            if self._updates and fraction < self._updates[-1].fraction:
                raise ValueError(
                    f"Progress went backwards: {fraction} < {self._updates[-1].fraction}"
                )
            self._updates.append(update)

    def latest(self) -> ProgressUpdate | None:
        with self._lock:
            return self._updates[-1] if self._updates else None

    def snapshot(self) -> list[ProgressUpdate]:
        with self._lock:
            return list(self._updates)

    @property
    def done(self) -> bool:
        last = self.latest()
        return last is not None and last.fraction >= 1.0


class LoggingProgress:
    """Forwards progress to the structured log."""

    def report(self, fraction: float, message: str) -> None:
        logger.info("convert.progress", percentage=round(fraction * 100), message=message)


class NullProgress:
    """Discards updates; used when the caller passes no sink."""

    def report(self, fraction: float, message: str) -> None:
        pass
