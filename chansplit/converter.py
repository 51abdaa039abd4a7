"""CHANSPLIT converter: splits every track of a document by channel.

Tracks are processed one at a time on a single worker. Each track's
materialized events are dropped as soon as its output tracks exist, and a
``MemoryGovernor`` pauses the worker when sampled usage goes above the soft
ceiling. Any error aborts the run: a partial document is never returned.
"""

from __future__ import annotations

import asyncio
import threading
import time
from dataclasses import dataclass
from typing import Any

import structlog

from chansplit.config import Settings, settings
from chansplit.errors import ConversionCancelled, ResourceExhaustion
from chansplit.events import MidiDocument, Track
from chansplit.memory import MB, PROBES, MemoryGovernor, MemoryProbe
from chansplit.progress import NullProgress, ProgressSink
from chansplit.splitter import discover_channels, split_timed
from chansplit.timing import materialize

logger = structlog.get_logger()


# ── Result ───────────────────────────────────────────────


@dataclass
class ConversionResult:
    """Terminal status of one conversion run."""

    succeeded: bool
    document: MidiDocument | None = None
    error: str = ""
    elapsed_s: float = 0.0
    tracks_in: int = 0
    tracks_out: int = 0
    output_path: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "succeeded": self.succeeded,
            "error": self.error,
            "elapsed_s": round(self.elapsed_s, 3),
            "tracks_in": self.tracks_in,
            "tracks_out": self.tracks_out,
            "output_path": self.output_path,
        }


# ── Core loop ────────────────────────────────────────────


def _status(index: int, total: int, channels: list[int], used: int) -> str:
    if len(channels) > 1:
        split = f"split into {len(channels)} channels ({', '.join(map(str, channels))})"
    else:
        split = "single channel"
    return f"Track {index + 1}/{total} {split}, memory {used / MB:.2f} MB"


def convert_document(
    document: MidiDocument,
    progress: ProgressSink | None = None,
    *,
    memory_ceiling_bytes: int | None = None,
    reclaim_pause_s: float = 0.05,
    cancel: threading.Event | None = None,
    probe: MemoryProbe | None = None,
) -> MidiDocument:
    """Return a new document with one track per channel per source track.

    Raises ``ConversionError`` subclasses; nothing is returned on failure.
    """
    sink = progress or NullProgress()
    total = len(document.tracks)
    out_tracks: list[Track] = []

    with MemoryGovernor(memory_ceiling_bytes, reclaim_pause_s, probe) as governor:
        for index, track in enumerate(document.tracks):
            if cancel is not None and cancel.is_set():
                raise ConversionCancelled(index)

            try:
                timed = list(materialize(track))
                channels = discover_channels(timed)
                produced = split_timed(timed, channels)
            except MemoryError as e:
                raise ResourceExhaustion(index) from e

            out_tracks.extend(produced)
            del timed, produced

            used = governor.relieve()
            logger.info(
                "convert.track.done",
                track=index + 1,
                total=total,
                channels=channels,
                memory_mb=round(used / MB, 2),
            )
            sink.report((index + 1) / total, _status(index, total, channels, used))

        if total == 0:
            sink.report(1.0, "No tracks to convert")

    return MidiDocument(
        tracks=out_tracks,
        ticks_per_beat=document.ticks_per_beat,
        file_type=document.file_type,
    )


# ── Terminal status ──────────────────────────────────────


def run_conversion(
    document: MidiDocument,
    progress: ProgressSink | None = None,
    *,
    cancel: threading.Event | None = None,
    config: Settings | None = None,
    probe: MemoryProbe | None = None,
) -> ConversionResult:
    """Convert a document and report success or failure instead of raising."""
    cfg = config or settings
    t0 = time.monotonic()
    tracks_in = len(document.tracks)

    try:
        converted = convert_document(
            document,
            progress,
            memory_ceiling_bytes=cfg.memory_ceiling_bytes,
            reclaim_pause_s=cfg.reclaim_pause_s,
            cancel=cancel,
            probe=probe or PROBES[cfg.memory_probe],
        )
    except Exception as e:
        logger.error("convert.failed", error=str(e), error_type=type(e).__name__)
        return ConversionResult(
            succeeded=False,
            error=str(e),
            elapsed_s=time.monotonic() - t0,
            tracks_in=tracks_in,
        )

    elapsed = time.monotonic() - t0
    logger.info(
        "convert.complete",
        tracks_in=tracks_in,
        tracks_out=len(converted.tracks),
        elapsed_s=round(elapsed, 3),
    )
    return ConversionResult(
        succeeded=True,
        document=converted,
        elapsed_s=elapsed,
        tracks_in=tracks_in,
        tracks_out=len(converted.tracks),
    )


async def run_conversion_async(
    document: MidiDocument,
    progress: ProgressSink | None = None,
    *,
    cancel: threading.Event | None = None,
    config: Settings | None = None,
) -> ConversionResult:
    """Run the conversion on a worker thread, leaving the event loop free
    to poll ``progress``."""
    return await asyncio.to_thread(
        run_conversion, document, progress, cancel=cancel, config=config
    )
