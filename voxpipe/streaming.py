"""
Incremental reader for streamed transcription responses.

The API sends server-sent events, one JSON payload per "data:" line:

    data: {"type": "transcript.text.delta", "delta": "Hel"}
    data: {"type": "transcript.text.delta", "delta": "lo"}
    data: {"type": "transcript.text.done", "text": "Hello"}
    data: [DONE]

Chunks arrive at arbitrary byte boundaries. Only newline-terminated lines
are processed; the trailing partial line waits for the next chunk. A
complete data line whose JSON doesn't parse is held and joined with the
following continuation line.
"""

import codecs
import json
from collections import Counter
from typing import Iterable, Optional, Union


DELTA_EVENT = "transcript.text.delta"
SEGMENT_EVENT = "transcript.text.segment"
DONE_EVENT = "transcript.text.done"
DONE_MARKER = "[DONE]"


class TranscriptionStreamReader:
    """
    Accumulates transcript text from a byte stream.

    Usage:
        reader = TranscriptionStreamReader()
        for chunk in response.iter_content(chunk_size=None):
            reader.feed(chunk)
        text = reader.finish()
    """

    def __init__(self):
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._pending: Optional[str] = None
        self.collected = ""
        self.final_text: Optional[str] = None
        self.event_count = 0
        self.event_types: Counter = Counter()

    def feed(self, chunk: Union[bytes, str]) -> None:
        """Add one chunk and process every complete line it finishes."""
        if isinstance(chunk, bytes):
            chunk = self._decoder.decode(chunk)
        if not chunk:
            return

        self._buffer += chunk
        *lines, self._buffer = self._buffer.split("\n")
        for line in lines:
            self._process_line(line)

    def finish(self) -> str:
        """
        End of stream: process what's left and return the transcript.

        Returns:
            The done-event text if one arrived, otherwise the accumulated deltas
        """
        tail = self._decoder.decode(b"", final=True)
        remainder = self._buffer + tail
        self._buffer = ""
        if remainder.strip():
            self._process_line(remainder)

        if self._pending is not None:
            print(f"[Cloud] Dropping unparseable stream record: {self._pending[:100]}")
            self._pending = None

        return self.text

    @property
    def text(self) -> str:
        return self.final_text if self.final_text is not None else self.collected

    def _process_line(self, line: str) -> None:
        stripped = line.strip()
        if not stripped:
            return

        if stripped.startswith("data:"):
            if self._pending is not None:
                print(f"[Cloud] Dropping unparseable stream record: {self._pending[:100]}")
                self._pending = None
            self._handle_data(stripped[5:].strip())
            return

        if self._pending is not None:
            # Continuation of a record split across lines
            joined = self._pending + stripped
            self._pending = None
            self._handle_data(joined)
        # Anything else (comments, "event:" fields) is ignored

    def _handle_data(self, data: str) -> None:
        if data == DONE_MARKER:
            if self.final_text is None:
                self.final_text = self.collected
            return

        try:
            payload = json.loads(data)
        except json.JSONDecodeError:
            self._pending = data
            return

        self._handle_event(payload)

    def _handle_event(self, payload) -> None:
        if not isinstance(payload, dict):
            return

        self.event_count += 1
        event_type = payload.get("type", "unknown")
        self.event_types[event_type] += 1

        if event_type == DELTA_EVENT and isinstance(payload.get("delta"), str):
            self.collected += payload["delta"]
        elif event_type == SEGMENT_EVENT and isinstance(payload.get("text"), str):
            self.collected += payload["text"]
        elif event_type == DONE_EVENT and isinstance(payload.get("text"), str):
            self.final_text = payload["text"]


def read_transcription_stream(chunks: Iterable[Union[bytes, str]]) -> str:
    """
    Drive a reader over an iterable of chunks.

    Args:
        chunks: Raw response body pieces, e.g. response.iter_content(None)

    Returns:
        Final transcript text
    """
    reader = TranscriptionStreamReader()
    for chunk in chunks:
        reader.feed(chunk)
    text = reader.finish()

    print(
        f"[Cloud] Stream complete: {reader.event_count} events "
        f"{dict(reader.event_types)}, {len(text)} chars"
    )
    return text
