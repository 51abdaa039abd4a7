"""CHANSPLIT absolute-time materializer."""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass

from chansplit.events import MidiEvent


@dataclass(frozen=True)
class TimedEvent:
    """An event paired with its absolute tick inside its source track."""

    event: MidiEvent
    tick: int


def materialize(track: Iterable[MidiEvent]) -> Iterator[TimedEvent]:
    """Yield events with absolute ticks (running sum of delta-times).

    Order is preserved and nothing is validated: a negative delta simply
    moves the running sum backwards.
    """
    tick = 0
    for event in track:
        tick += event.delta
        yield TimedEvent(event, tick)
