"""Incremental decoding of newline-delimited JSON generation streams.

The generation endpoint answers with one JSON object per line::

    {"model": "llama3", "response": "Hel", "done": false}
    {"model": "llama3", "response": "lo", "done": false}
    {"model": "llama3", "response": "", "done": true, "total_duration": 1234}

Network reads do not respect line boundaries, so a ``ChunkDecoder`` buffers
the trailing partial line of each chunk and only parses complete lines. The
final partial line is parsed when the stream ends.
"""

from __future__ import annotations

import codecs
import json
import logging
import re
from dataclasses import dataclass
from typing import AsyncIterable, AsyncIterator, Iterator

logger = logging.getLogger(__name__)

CONTROL_CHARS = re.compile(r"[\u0000-\u001F\u007F-\u009F]")


@dataclass(frozen=True, slots=True)
class DecodedLine:
    """Result of decoding one complete line: a fragment, or nothing usable."""

    ok: bool
    fragment: str = ""


SKIPPED = DecodedLine(ok=False)


def _parse_json_line(line: str) -> object | None:
    try:
        return json.loads(line)
    except json.JSONDecodeError:
        logger.warning(f"Invalid JSON line: {line[:200]!r}")

    cleaned = CONTROL_CHARS.sub("", line)
    if not cleaned.strip():
        return None
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        logger.error(f"Failed to recover JSON line, skipping: {line[:200]!r}")
        return None


def decode_line(line: str) -> DecodedLine:
    record = _parse_json_line(line)
    if not isinstance(record, dict):
        return SKIPPED
    fragment = record.get("response")
    if not isinstance(fragment, str) or not fragment:
        return SKIPPED
    return DecodedLine(ok=True, fragment=fragment)


class ChunkDecoder:
    def __init__(self, encoding: str = "utf-8"):
        self._text = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._pending = ""
        self._finished = False

    def reset(self) -> None:
        self._text.reset()
        self._pending = ""
        self._finished = False

    def feed(self, chunk: bytes) -> list[DecodedLine]:
        """Consume one network chunk and decode every line it completes."""
        if self._finished:
            raise RuntimeError("feed() called after finish(); call reset() first")
        self._pending += self._text.decode(chunk)
        *complete, self._pending = self._pending.split("\n")
        return [decode_line(line) for line in complete if line.strip()]

    def finish(self) -> list[DecodedLine]:
        """Signal end of stream and decode any trailing partial line."""
        if self._finished:
            return []
        self._finished = True
        tail = self._pending + self._text.decode(b"", final=True)
        self._pending = ""
        if not tail.strip():
            return []
        return [decode_line(tail)]

    def fragments(self, chunk: bytes) -> Iterator[str]:
        for decoded in self.feed(chunk):
            if decoded.ok:
                yield decoded.fragment


async def decode_stream(chunks: AsyncIterable[bytes]) -> AsyncIterator[str]:
    decoder = ChunkDecoder()
    async for chunk in chunks:
        for fragment in decoder.fragments(chunk):
            yield fragment
    for decoded in decoder.finish():
        if decoded.ok:
            yield decoded.fragment
