"""Incremental newline-delimited JSON decoding for process output streams.

Each stream keeps its own text buffer and incremental UTF-8 decoder, so the
sequence of decoded lines does not depend on how the operating system split
the bytes into chunks.
"""

from __future__ import annotations

import codecs
import json
from typing import TYPE_CHECKING

from .models import DecodedEvent, JsonEvent, TextEvent

if TYPE_CHECKING:
    from collections.abc import Hashable

STDOUT = "stdout"
STDERR = "stderr"


def decode_line(line: str) -> DecodedEvent:
    """Parse one complete line as JSON, falling back to raw text."""
    try:
        return JsonEvent(data=json.loads(line), line=line)
    except (ValueError, RecursionError):
        # Covers JSONDecodeError, over-long integers, and deep nesting.
        return TextEvent(line=line)


class StreamDecoder:
    """Turn arbitrary output chunks into complete decoded lines."""

    def __init__(self, encoding: str = "utf-8") -> None:
        self._encoding = encoding
        self._buffers: dict[Hashable, str] = {}
        self._decoders: dict[Hashable, codecs.IncrementalDecoder] = {}

    def feed(self, stream_id: Hashable, chunk: bytes | str) -> list[DecodedEvent]:
        """Append a chunk and return events for every line it completed."""
        if isinstance(chunk, bytes):
            chunk = self._decoder(stream_id).decode(chunk)

        segments = (self._buffers.get(stream_id, "") + chunk).split("\n")
        self._buffers[stream_id] = segments.pop()
        return [decode_line(line) for line in segments if line.strip()]

    def flush(self, stream_id: Hashable) -> DecodedEvent | None:
        """Emit whatever is left in a stream's buffer as a final line."""
        remainder = self._buffers.pop(stream_id, "")
        decoder = self._decoders.pop(stream_id, None)
        if decoder is not None:
            remainder += decoder.decode(b"", final=True)
        if not remainder.strip():
            return None
        return decode_line(remainder)

    def pending(self, stream_id: Hashable) -> str:
        """Return the not-yet-terminated text buffered for a stream."""
        return self._buffers.get(stream_id, "")

    def _decoder(self, stream_id: Hashable) -> codecs.IncrementalDecoder:
        decoder = self._decoders.get(stream_id)
        if decoder is None:
            decoder = codecs.getincrementaldecoder(self._encoding)(errors="replace")
            self._decoders[stream_id] = decoder
        return decoder
