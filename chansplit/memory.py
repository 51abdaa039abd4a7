"""CHANSPLIT memory governor: soft ceiling with a reclamation pause.

The ceiling is a pacing valve, not a correctness mechanism. When sampled
usage is above it, the governor runs a full ``gc.collect()`` and sleeps a
short fixed delay before the next track starts.

Usage is sampled as the process resident set size by default, which covers
the decoded input document as well as the tracks produced so far.
``tracemalloc`` tracing is available as an opt-in probe; it slows every
allocation down and only sees objects created after tracing started.
"""

from __future__ import annotations

import gc
import os
import sys
import time
import tracemalloc
from collections.abc import Callable
from pathlib import Path

import structlog

logger = structlog.get_logger()

MB = 1024 * 1024

MemoryProbe = Callable[[], int]

_STATM = Path("/proc/self/statm")


def process_rss_bytes() -> int:
    """Current resident set size of this process (0 when unknown).

    Reads ``/proc/self/statm`` where it exists; elsewhere falls back to the
    peak RSS reported by ``getrusage``.
    """
    try:
        resident_pages = int(_STATM.read_text().split()[1])
        return resident_pages * os.sysconf("SC_PAGE_SIZE")
    except (OSError, ValueError, IndexError):
        pass

    try:
        import resource
    except ImportError:  # Windows has no resource module
        return 0
    peak = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
    # bytes on macOS, kilobytes everywhere else
    return peak if sys.platform == "darwin" else peak * 1024


def traced_heap_bytes() -> int:
    """Bytes currently allocated by Python objects (0 when not tracing)."""
    if not tracemalloc.is_tracing():
        return 0
    current, _peak = tracemalloc.get_traced_memory()
    return current


PROBES: dict[str, MemoryProbe] = {
    "rss": process_rss_bytes,
    "traced": traced_heap_bytes,
}


class MemoryGovernor:
    """Samples memory after each track and reclaims above the ceiling.

    Use as a context manager. With the ``traced_heap_bytes`` probe,
    ``tracemalloc`` is started on entry (when a ceiling is set) and stopped
    again on exit if this governor started it.
    """

    def __init__(
        self,
        ceiling_bytes: int | None = None,
        pause_s: float = 0.05,
        probe: MemoryProbe | None = None,
    ) -> None:
        self.ceiling_bytes = ceiling_bytes or None
        self.pause_s = pause_s
        self._probe = probe or process_rss_bytes
        self._owns_tracing = False
        self.reclaims = 0

    def __enter__(self) -> MemoryGovernor:
        if self.ceiling_bytes and self._probe is traced_heap_bytes and not tracemalloc.is_tracing():
            tracemalloc.start()
            self._owns_tracing = True
        return self

    def __exit__(self, *exc_info: object) -> None:
        if self._owns_tracing:
            tracemalloc.stop()
            self._owns_tracing = False

    def usage(self) -> int:
        return self._probe()

    def relieve(self) -> int:
        """Sample usage; reclaim and pause if it exceeds the ceiling."""
        used = self.usage()
        if self.ceiling_bytes is None or used <= self.ceiling_bytes:
            return used

        logger.warning(
            "memory.ceiling_exceeded",
            used_mb=round(used / MB, 2),
            ceiling_mb=round(self.ceiling_bytes / MB, 2),
        )
        gc.collect()
        time.sleep(self.pause_s)
        self.reclaims += 1
        return self.usage()
