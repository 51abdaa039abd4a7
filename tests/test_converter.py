"""CHANSPLIT converter tests: document loop, memory governor, progress,
cancellation and terminal status."""

from __future__ import annotations

import asyncio
import threading

import mido
import pytest

import chansplit.converter as converter_mod
import chansplit.memory as memory_mod
from chansplit.config import Settings
from chansplit.converter import convert_document, run_conversion, run_conversion_async
from chansplit.errors import ArithmeticAnomaly, ConversionCancelled, ResourceExhaustion
from chansplit.events import MidiDocument, MidiEvent
from chansplit.memory import MB, MemoryGovernor, process_rss_bytes, traced_heap_bytes
from chansplit.progress import ProgressLog


# ── Helpers ──────────────────────────────────────────────


def _on(channel: int, delta: int = 0, note: int = 60) -> MidiEvent:
    return MidiEvent.from_message(
        mido.Message("note_on", channel=channel, note=note, velocity=80, time=delta)
    )


def _tempo(delta: int = 0) -> MidiEvent:
    return MidiEvent.from_message(mido.MetaMessage("set_tempo", tempo=600000, time=delta))


def _document() -> MidiDocument:
    """Conductor track, a two-channel track, an empty track and a three-channel track."""
    return MidiDocument(
        tracks=[
            [_tempo(0), _tempo(1920)],
            [_tempo(0), _on(0), _on(1, 10), _on(0, 5)],
            [],
            [_on(4), _on(5, 1), _on(6, 1), _tempo(2)],
        ],
        ticks_per_beat=960,
    )


class _Recorder:
    def __init__(self) -> None:
        self.updates: list[tuple[float, str]] = []

    def report(self, fraction: float, message: str) -> None:
        self.updates.append((fraction, message))


def _quiet_settings(**overrides) -> Settings:
    values = {"memory_ceiling_mb": 0, "reclaim_pause_s": 0.0}
    values.update(overrides)
    return Settings(**values)


# ── Document loop ────────────────────────────────────────


def test_output_track_order_and_count():
    """Source order first, then channel-discovery order."""
    out = convert_document(_document())

    assert len(out.tracks) == 1 + 2 + 1 + 3
    assert out.ticks_per_beat == 960
    assert out.file_type == 1
    channels = [
        sorted({e.channel for e in t if e.channel is not None}) for t in out.tracks
    ]
    assert channels == [[], [0], [1], [], [4], [5], [6]]


def test_source_document_is_untouched():
    doc = _document()
    before = [[e.delta for e in t] for t in doc.tracks]
    convert_document(doc)
    assert [[e.delta for e in t] for t in doc.tracks] == before
    assert len(doc.tracks) == 4


def test_progress_is_monotonic_and_reaches_one():
    recorder = _Recorder()
    convert_document(_document(), recorder)

    fractions = [f for f, _ in recorder.updates]
    assert len(fractions) == 4
    assert fractions == sorted(fractions)
    assert fractions[-1] == 1.0
    assert recorder.updates[1][1].startswith("Track 2/4 split into 2 channels")
    assert "MB" in recorder.updates[0][1]


def test_empty_document_reports_completion():
    recorder = _Recorder()
    out = convert_document(MidiDocument(tracks=[], ticks_per_beat=96), recorder)
    assert out.tracks == []
    assert out.ticks_per_beat == 96
    assert recorder.updates == [(1.0, "No tracks to convert")]


# ── Memory governor ──────────────────────────────────────


def test_reclaim_runs_above_ceiling(monkeypatch):
    """Above the ceiling: gc.collect() plus a bounded pause, once per track."""
    calls = {"collect": 0, "sleep": []}
    monkeypatch.setattr(memory_mod.gc, "collect", lambda: calls.__setitem__("collect", calls["collect"] + 1))
    monkeypatch.setattr(memory_mod.time, "sleep", lambda s: calls["sleep"].append(s))

    convert_document(
        _document(),
        memory_ceiling_bytes=1000,
        reclaim_pause_s=0.05,
        probe=lambda: 5000,
    )
    assert calls["collect"] == 4
    assert calls["sleep"] == [0.05] * 4


def test_no_reclaim_below_ceiling(monkeypatch):
    monkeypatch.setattr(memory_mod.gc, "collect", lambda: pytest.fail("collected below ceiling"))
    convert_document(_document(), memory_ceiling_bytes=10_000, probe=lambda: 10)


def test_governor_without_ceiling_never_reclaims():
    governor = MemoryGovernor(None, probe=lambda: 10**12)
    assert governor.relieve() == 10**12
    assert governor.reclaims == 0


def test_governor_owns_tracemalloc_only_when_it_started_it():
    """Tracing is opt-in: only the traced probe starts tracemalloc."""
    import tracemalloc

    assert not tracemalloc.is_tracing()
    with MemoryGovernor(1024 * 1024):
        assert not tracemalloc.is_tracing()
    with MemoryGovernor(1024 * 1024, probe=traced_heap_bytes) as governor:
        assert tracemalloc.is_tracing()
        assert governor.usage() >= 0
    assert not tracemalloc.is_tracing()


def test_default_probe_counts_memory_allocated_before_the_run():
    """Resident memory includes buffers that existed before sampling started."""
    baseline = process_rss_bytes()
    if baseline == 0:
        pytest.skip("no RSS source on this platform")

    held = b"\x01" * (64 * MB)
    with MemoryGovernor(1024 * MB) as governor:
        assert governor.usage() >= 64 * MB
    assert len(held) == 64 * MB


def test_run_conversion_uses_configured_probe(monkeypatch):
    """The probe named in settings drives the ceiling check."""
    seen = []
    monkeypatch.setitem(converter_mod.PROBES, "rss", lambda: seen.append("rss") or 0)
    monkeypatch.setitem(converter_mod.PROBES, "traced", lambda: seen.append("traced") or 0)

    run_conversion(_document(), config=_quiet_settings(memory_ceiling_mb=1))
    assert set(seen) == {"rss"}
    seen.clear()
    run_conversion(_document(), config=_quiet_settings(memory_ceiling_mb=1, memory_probe="traced"))
    assert set(seen) == {"traced"}


# ── Failure modes ─────────────────────────────────────────


def test_cancellation_stops_at_track_boundary():
    cancel = threading.Event()

    class _CancelAfterFirst(_Recorder):
        def report(self, fraction: float, message: str) -> None:
            super().report(fraction, message)
            cancel.set()

    sink = _CancelAfterFirst()
    with pytest.raises(ConversionCancelled) as info:
        convert_document(_document(), sink, cancel=cancel)
    assert info.value.completed_tracks == 1
    assert len(sink.updates) == 1


def test_memory_error_becomes_resource_exhaustion(monkeypatch):
    def _boom(timed, channels=None):
        raise MemoryError

    monkeypatch.setattr(converter_mod, "split_timed", _boom)
    with pytest.raises(ResourceExhaustion) as info:
        convert_document(_document())
    assert info.value.track_index == 0


def test_anomaly_aborts_remaining_tracks():
    recorder = _Recorder()
    doc = MidiDocument(tracks=[[_on(0, 1)], [_on(0, -3)], [_on(1, 1)]])
    with pytest.raises(ArithmeticAnomaly):
        convert_document(doc, recorder)
    assert [f for f, _ in recorder.updates] == [pytest.approx(1 / 3)]


# ── Terminal status ──────────────────────────────────────


def test_run_conversion_success():
    result = run_conversion(_document(), config=_quiet_settings())
    assert result.succeeded
    assert result.error == ""
    assert result.tracks_in == 4
    assert result.tracks_out == 7
    assert result.document is not None
    assert result.to_dict()["tracks_out"] == 7


def test_run_conversion_failure_is_reported_not_raised():
    doc = MidiDocument(tracks=[[_on(0, -1)]])
    result = run_conversion(doc, config=_quiet_settings())
    assert not result.succeeded
    assert result.document is None
    assert "out of range" in result.error


def test_run_conversion_async_with_polling():
    """The worker runs off-loop while the caller polls the progress log."""
    log = ProgressLog()

    async def _main():
        task = asyncio.create_task(run_conversion_async(_document(), log, config=_quiet_settings()))
        seen = []
        while not task.done():
            latest = log.latest()
            if latest is not None:
                seen.append(latest.fraction)
            await asyncio.sleep(0)
        return await task, seen

    result, seen = asyncio.run(_main())
    assert result.succeeded
    assert seen == sorted(seen)
    assert log.done
    assert [u.fraction for u in log.snapshot()][-1] == 1.0
