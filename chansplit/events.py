"""CHANSPLIT event model: tagged MIDI events, tracks and documents.

A ``MidiEvent`` wraps one decoded mido message. The ``kind`` tag decides
whether the event belongs to a single channel or has to be copied into every
channel partition; only ``EventKind.CHANNEL`` events carry a channel number.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum

import mido

MAX_CHANNEL = 15


class EventKind(StrEnum):
    """What a MIDI event is bound to."""

    CHANNEL = "channel"  # note on/off, control change, program change, ...
    META = "meta"
    SYSEX = "sysex"
    SYSTEM = "system"  # realtime / common messages without a channel


@dataclass(frozen=True)
class MidiEvent:
    """One MIDI message plus its delta-time (``message.time``)."""

    kind: EventKind
    message: mido.Message | mido.MetaMessage
    channel: int | None = None

    def __post_init__(self) -> None:
        if self.kind is EventKind.CHANNEL:
            if self.channel is None or not 0 <= self.channel <= MAX_CHANNEL:
                raise ValueError(f"Channel event needs a channel 0-15, got {self.channel!r}")
        elif self.channel is not None:
            raise ValueError(f"{self.kind} event cannot carry a channel")

    @property
    def delta(self) -> int:
        """Ticks elapsed since the previous event in the track."""
        return self.message.time

    def with_delta(self, delta: int) -> MidiEvent:
        """Clone this event with a new delta-time."""
        return MidiEvent(self.kind, self.message.copy(time=delta), self.channel)

    @classmethod
    def from_message(cls, message: mido.Message | mido.MetaMessage) -> MidiEvent:
        """Tag a decoded mido message.

        Meta messages are checked first: ``channel_prefix`` has a ``channel``
        attribute but is a meta event and belongs in every partition.
        """
        if message.is_meta:
            return cls(EventKind.META, message)
        if message.type == "sysex":
            return cls(EventKind.SYSEX, message)
        channel = getattr(message, "channel", None)
        if channel is not None:
            return cls(EventKind.CHANNEL, message, channel)
        return cls(EventKind.SYSTEM, message)


Track = list[MidiEvent]


@dataclass
class MidiDocument:
    """Decoded MIDI file: ordered tracks plus the time-division."""

    tracks: list[Track] = field(default_factory=list)
    ticks_per_beat: int = 480
    file_type: int = 1

    @property
    def event_count(self) -> int:
        return sum(len(t) for t in self.tracks)
