"""
LineDecoder -- Reassembles newline-delimited JSON generate records.

Network chunks arrive cut at arbitrary byte offsets, so the decoder keeps a
byte buffer and only decodes complete lines:

    decoder = LineDecoder()
    decoder.feed(b'{"response":"ab"}\\n{"respo')   # -> ["ab"]
    decoder.feed(b'nse":"cd"}\\n{"done":true}\\n')  # -> ["cd"], decoder.done
    decoder.finish()                               # leftover bytes, if any

Each record is a JSON object with an optional string `response` (a text
fragment, concatenated in order) and an optional boolean `done`. Blank,
non-JSON or wrongly-typed lines are dropped: servers emit keep-alives.
"""

import json
import logging
from dataclasses import dataclass

from ..errors import MalformedStreamLine

logger = logging.getLogger(__name__)

LINE_FEED = b"\n"


@dataclass(frozen=True)
class StreamRecord:
    """One decoded generate record."""

    response: str | None = None
    done: bool = False


def decode_record(line: bytes) -> StreamRecord:
    """Decode one line. Raises MalformedStreamLine for anything unusable."""
    if not line.strip():
        raise MalformedStreamLine(line, "blank line")
    try:
        payload = json.loads(line.decode("utf-8"))
    except UnicodeDecodeError:
        raise MalformedStreamLine(line, "not UTF-8")
    except json.JSONDecodeError as e:
        raise MalformedStreamLine(line, f"invalid JSON: {e.msg}")

    if not isinstance(payload, dict):
        raise MalformedStreamLine(line, f"expected object, got {type(payload).__name__}")

    response = payload.get("response")
    if response is not None and not isinstance(response, str):
        raise MalformedStreamLine(line, "'response' is not a string")
    done = payload.get("done", False)
    if not isinstance(done, bool):
        raise MalformedStreamLine(line, "'done' is not a boolean")

    return StreamRecord(response=response, done=done)


class LineDecoder:
    """Incremental NDJSON decoder for one stream.

    `feed()` and `finish()` return the text deltas decoded so far; `done`
    flips once a record with `done: true` is seen.
    """

    def __init__(self):
        self._buffer = bytearray()
        self._done = False
        self._dropped = 0

    @property
    def done(self) -> bool:
        return self._done

    @property
    def dropped_lines(self) -> int:
        """Number of malformed lines discarded so far."""
        return self._dropped

    @property
    def pending_bytes(self) -> int:
        return len(self._buffer)

    def feed(self, chunk: bytes) -> list[str]:
        """Append a chunk and decode every complete line it finishes."""
        self._buffer.extend(chunk)
        deltas: list[str] = []
        while True:
            newline = self._buffer.find(LINE_FEED)
            if newline == -1:
                break
            line = bytes(self._buffer[:newline])
            del self._buffer[: newline + 1]
            self._consume(line, deltas)
        return deltas

    def finish(self) -> list[str]:
        """Give leftover bytes one final decode attempt, then discard them."""
        deltas: list[str] = []
        if self._buffer:
            line = bytes(self._buffer)
            self._buffer.clear()
            self._consume(line, deltas)
        return deltas

    def _consume(self, line: bytes, deltas: list[str]) -> None:
        try:
            record = decode_record(line)
        except MalformedStreamLine as e:
            self._dropped += 1
            logger.debug(f"[LineDecoder] Dropped line: {e.reason}")
            return
        if record.response:
            deltas.append(record.response)
        if record.done:
            self._done = True
