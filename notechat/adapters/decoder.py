"""
Incremental decoder for streamed response bodies.

Turns arbitrary byte chunks into complete records. Two framings are
supported:

- ndjson: one JSON value per line (Ollama)
- sse:    Server-Sent Events, JSON payloads in ``data:`` lines
          (Anthropic, OpenAI-compatible, Gemini)

Chunk boundaries may fall anywhere, including inside a multi-byte
character; the incomplete tail is carried over to the next ``feed()``.
"""

import codecs
import json
import logging
from typing import Any, Literal

logger = logging.getLogger(__name__)

Framing = Literal["ndjson", "sse"]

# Payload of the OpenAI-style end-of-stream event
DONE = "[DONE]"


class DecodeError(ValueError):
    """A single record could not be parsed. Never escapes the decoder."""
    pass


def parse_record(text: str) -> Any:
    """Parse one record payload as JSON."""
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise DecodeError(f"Malformed record: {text[:80]!r}") from e


class StreamDecoder:
    """
    Stateful per-call decoder.

    Not shared between calls: every streaming request builds its own.
    """

    def __init__(self, framing: Framing):
        if framing not in ("ndjson", "sse"):
            raise ValueError(f"Unknown framing: {framing}")
        self.framing = framing
        self._utf8 = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        # SSE: data lines that have not parsed on their own yet
        self._data_lines: list[str] = []

    def feed(self, chunk: bytes) -> list[Any]:
        """Consume one chunk, return the records it completed (in order)."""
        self._buffer += self._utf8.decode(chunk)
        lines = self._buffer.split("\n")
        # Last segment is incomplete (or empty) - carry it over
        self._buffer = lines.pop()
        return self._records(lines)

    def flush(self) -> list[Any]:
        """Body ended: drain the carry-over buffer and any pending event."""
        self._buffer += self._utf8.decode(b"", final=True)
        lines = [self._buffer] if self._buffer else []
        self._buffer = ""
        records = self._records(lines)
        if self.framing == "sse":
            records.extend(self._dispatch_event())
        return records

    def _records(self, lines: list[str]) -> list[Any]:
        records = []
        for raw in lines:
            line = raw.rstrip("\r")
            if self.framing == "ndjson":
                if line.strip():
                    records.extend(self._parse(line))
            else:
                records.extend(self._sse_line(line))
        return records

    def _sse_line(self, line: str) -> list[Any]:
        if not line:
            return self._dispatch_event()
        if line.startswith(":"):
            return []  # comment / keep-alive
        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if field == "data":
            return self._data_line(value)
        # event:, id:, retry: carry nothing the adapters need
        return []

    def _data_line(self, value: str) -> list[Any]:
        """
        Each data line is normally a record of its own; vendors do not always
        separate events with blank lines. Lines that do not parse alone are
        held and joined with the following ones (multi-line data events).
        """
        if self._data_lines:
            self._data_lines.append(value)
            ok, record = _attempt("\n".join(self._data_lines))
            if ok:
                self._data_lines = []
                return [record]
            ok, record = _attempt(value)
            if ok:
                logger.debug("Skipping record: %r", "\n".join(self._data_lines[:-1])[:80])
                self._data_lines = []
                return [record]
            return []

        if not value.strip():
            return []
        ok, record = _attempt(value)
        if ok:
            return [record]
        self._data_lines.append(value)
        return []

    def _dispatch_event(self) -> list[Any]:
        if not self._data_lines:
            return []
        payload = "\n".join(self._data_lines).strip()
        self._data_lines = []
        if not payload:
            return []
        return self._parse(payload)

    def _parse(self, text: str) -> list[Any]:
        try:
            return [parse_record(text)]
        except DecodeError as e:
            logger.debug("Skipping record: %s", e)
            return []


def _attempt(text: str) -> tuple[bool, Any]:
    """Parse an SSE payload quietly; the DONE sentinel counts as parsed."""
    text = text.strip()
    if text == DONE:
        return True, DONE
    try:
        return True, parse_record(text)
    except DecodeError:
        return False, None
