"""CHANSPLIT file adapter: mido in, mido out.

All binary parsing and writing is done by mido. This module only maps
``mido.MidiFile`` to and from ``MidiDocument`` and strings the single-file
flow together: decode, convert, and write only after the whole document has
been converted.
"""

from __future__ import annotations

import os
import threading
from pathlib import Path

import mido
import structlog

from chansplit.config import Settings, settings
from chansplit.converter import ConversionResult, run_conversion
from chansplit.errors import DecodeFailure
from chansplit.events import MidiDocument, MidiEvent
from chansplit.progress import ProgressSink

logger = structlog.get_logger()


def default_output_path(input_path: str | Path, suffix: str = "_converted") -> Path:
    """``song.mid`` -> ``song_converted.mid`` next to the input."""
    src = Path(input_path)
    return src.with_name(f"{src.stem}{suffix}.mid")


def from_midi_file(mid: mido.MidiFile) -> MidiDocument:
    return MidiDocument(
        tracks=[[MidiEvent.from_message(msg) for msg in track] for track in mid.tracks],
        ticks_per_beat=mid.ticks_per_beat,
        file_type=mid.type,
    )


def to_midi_file(document: MidiDocument, charset: str = "latin1") -> mido.MidiFile:
    """Build a mido file; a type 0 document that now has several tracks is written as type 1."""
    file_type = document.file_type
    if file_type == 0 and len(document.tracks) > 1:
        file_type = 1
    mid = mido.MidiFile(type=file_type, ticks_per_beat=document.ticks_per_beat, charset=charset)
    for track in document.tracks:
        mid.tracks.append(mido.MidiTrack(event.message for event in track))
    return mid


def load_document(path: str | Path, charset: str = "latin1") -> MidiDocument:
    """Decode a MIDI file.

    mido raises a mix of OSError, EOFError, ValueError, IndexError and its own
    KeySignatureError on damaged input; all of them become ``DecodeFailure``.
    """
    try:
        mid = mido.MidiFile(str(path), charset=charset)
    except Exception as e:
        raise DecodeFailure(f"Cannot read MIDI file {path}: {e}") from e
    document = from_midi_file(mid)
    logger.info(
        "midi.loaded",
        path=str(path),
        type=mid.type,
        tracks=len(document.tracks),
        events=document.event_count,
        ticks_per_beat=document.ticks_per_beat,
    )
    return document


def save_document(document: MidiDocument, path: str | Path, charset: str = "latin1") -> Path:
    """Encode and write atomically, replacing any existing file."""
    dst = Path(path)
    tmp = dst.with_name(dst.name + ".tmp")
    mid = to_midi_file(document, charset=charset)
    try:
        mid.save(str(tmp))
        os.replace(tmp, dst)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise
    logger.info("midi.saved", path=str(dst), tracks=len(document.tracks))
    return dst


def convert_file(
    input_path: str | Path,
    output_path: str | Path | None = None,
    progress: ProgressSink | None = None,
    *,
    cancel: threading.Event | None = None,
    config: Settings | None = None,
) -> ConversionResult:
    """Split one MIDI file by channel and write the result.

    The output file is only written once every track has been converted.
    """
    cfg = config or settings
    src = Path(input_path)
    dst = Path(output_path) if output_path else default_output_path(src, cfg.output_suffix)

    try:
        document = load_document(src, charset=cfg.text_charset)
    except DecodeFailure as e:
        logger.error("convert.decode_failed", path=str(src), error=str(e))
        return ConversionResult(succeeded=False, error=str(e))

    result = run_conversion(document, progress, cancel=cancel, config=cfg)
    del document
    if not result.succeeded or result.document is None:
        return result

    try:
        save_document(result.document, dst, charset=cfg.text_charset)
    except Exception as e:
        logger.error("convert.write_failed", path=str(dst), error=str(e))
        result.succeeded = False
        result.document = None
        result.error = f"Cannot write {dst}: {e}"
        return result

    result.output_path = str(dst)
    return result
