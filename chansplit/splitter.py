"""CHANSPLIT channel splitter and re-quantizer.

Takes one track's materialized events and produces one output track per
channel found in it. Non-channel events (meta, sysex, system) are copied into
every partition so tempo, time signature and track names survive the split.
Delta-times are recomputed from the absolute ticks of each partition.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from chansplit.errors import ArithmeticAnomaly
from chansplit.events import EventKind, MidiEvent, Track
from chansplit.timing import TimedEvent, materialize

# Largest delta-time a variable-length quantity in a standard MIDI file holds
MAX_DELTA_TICKS = 0x0FFFFFFF


def _tick_of(timed: TimedEvent) -> int:
    return timed.tick


def discover_channels(timed: Iterable[TimedEvent]) -> list[int]:
    """Distinct channels of channel events, in order of first appearance."""
    seen: dict[int, None] = {}
    for item in timed:
        if item.event.kind is EventKind.CHANNEL:
            seen.setdefault(item.event.channel, None)
    return list(seen)


def partition(timed: Iterable[TimedEvent], channel: int) -> list[TimedEvent]:
    """All non-channel events plus the channel events on ``channel``.

    Sorted by tick only; ``sorted`` is stable so ties keep source order.
    """
    kept = [
        item
        for item in timed
        if item.event.kind is not EventKind.CHANNEL or item.event.channel == channel
    ]
    return sorted(kept, key=_tick_of)


def requantize(timed: Iterable[TimedEvent]) -> Track:
    """Build a fresh track whose delta-times reproduce the given ticks."""
    track: Track = []
    previous = 0
    for item in sorted(timed, key=_tick_of):
        delta = int(item.tick - previous)
        if delta < 0 or delta > MAX_DELTA_TICKS:
            raise ArithmeticAnomaly(item.tick, previous, delta)
        track.append(item.event.with_delta(delta))
        previous = item.tick
    return track


def split_timed(timed: Sequence[TimedEvent], channels: Sequence[int] | None = None) -> list[Track]:
    """Split materialized events into one track per channel.

    Tracks with zero or one channel come back as a single re-quantized track
    (an empty source track gives one empty track).
    """
    if channels is None:
        channels = discover_channels(timed)
    if len(channels) <= 1:
        return [requantize(timed)]

    tracks: list[Track] = []
    for channel in channels:
        part = partition(timed, channel)
        tracks.append(requantize(part))
        del part
    return tracks


def split_track(track: Iterable[MidiEvent]) -> list[Track]:
    """Materialize and split a delta-time encoded track."""
    return split_timed(list(materialize(track)))
