"""CHANSPLIT errors: everything a conversion run can fail with."""

from __future__ import annotations


class ConversionError(Exception):
    """Base class for failures that abort a whole conversion run."""


class DecodeFailure(ConversionError):
    """The MIDI decoder could not produce a document; conversion never starts."""


class ArithmeticAnomaly(ConversionError):
    """A recomputed delta-time came out negative or too large to encode."""

    def __init__(self, tick: int, previous_tick: int, delta: int) -> None:
        self.tick = tick
        self.previous_tick = previous_tick
        self.delta = delta
        super().__init__(
            f"Delta-time {delta} out of range at tick {tick} (previous tick {previous_tick})"
        )


class ResourceExhaustion(ConversionError):
    """Allocation failed while processing a track."""

    def __init__(self, track_index: int) -> None:
        self.track_index = track_index
        super().__init__(f"Out of memory while converting track {track_index + 1}")


class ConversionCancelled(ConversionError):
    """The caller cancelled the run between two tracks."""

    def __init__(self, completed_tracks: int) -> None:
        self.completed_tracks = completed_tracks
        super().__init__(f"Conversion cancelled after {completed_tracks} track(s)")
