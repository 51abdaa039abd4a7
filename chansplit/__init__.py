"""CHANSPLIT: split multi-channel MIDI tracks into one track per channel.

Modules:
  events: tagged MIDI events, tracks and documents
  timing: absolute-time materializer
  splitter: channel partitioning and delta-time re-quantization
  converter: bounded-memory conversion loop and terminal status
  midi_io: mido file adapter

Imports are lazy so the core can be used without touching the file adapter.
"""

__version__ = "0.3.0"


def convert_document(*args, **kwargs):
    """Split every track of a decoded document by channel."""
    from chansplit.converter import convert_document as _convert_document
    return _convert_document(*args, **kwargs)


def run_conversion(*args, **kwargs):
    """Convert a document and return a ConversionResult."""
    from chansplit.converter import run_conversion as _run_conversion
    return _run_conversion(*args, **kwargs)


async def run_conversion_async(*args, **kwargs):
    """Convert a document on a worker thread."""
    from chansplit.converter import run_conversion_async as _run_conversion_async
    return await _run_conversion_async(*args, **kwargs)


def convert_file(*args, **kwargs):
    """Read, convert and write one MIDI file."""
    from chansplit.midi_io import convert_file as _convert_file
    return _convert_file(*args, **kwargs)


__all__ = [
    "__version__",
    "convert_document",
    "convert_file",
    "run_conversion",
    "run_conversion_async",
]
