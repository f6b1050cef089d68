"""Incremental decoding of provider Server-Sent Event streams.

Bytes arrive in arbitrary chunks: a chunk boundary may fall inside a
``data:`` line, inside a JSON token, or inside a multi-byte UTF-8
character. :class:`StreamDecoder` keeps a stateful UTF-8 decoder plus the
trailing partial line between chunks, so the sequence of payloads it
produces does not depend on how the stream was chunked.
"""

from __future__ import annotations

import codecs
import json
import logging
from collections.abc import AsyncIterable
from typing import Any, AsyncGenerator

from .errors import StreamParseError

logger = logging.getLogger(__name__)

_DATA_PREFIX = "data:"
_SKIP = object()
_END = object()


class StreamDecoder:
    """Turn raw SSE bytes into decoded JSON payloads, one per ``data:`` line.

    A decoder is single-use: once the end sentinel has been seen or
    :meth:`close` has been called it yields nothing further.
    """

    def __init__(self, *, end_sentinel: str | None = None) -> None:
        self._end_sentinel = end_sentinel
        self._text_decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._closed = False
        self.done = False
        self.skipped_events = 0

    @property
    def buffer(self) -> str:
        """Text received after the last newline, awaiting completion."""

        return self._buffer

    @property
    def finished(self) -> bool:
        return self.done or self._closed

    def feed(self, chunk: bytes) -> list[Any]:
        """Consume one chunk and return the payloads completed by it."""

        if self.finished:
            return []
        self._buffer += self._text_decoder.decode(chunk)
        return self._drain(final=False)

    def close(self) -> list[Any]:
        """Flush pending bytes at end of input, treating leftovers as a line."""

        if self.finished:
            return []
        self._buffer += self._text_decoder.decode(b"", final=True)
        payloads = self._drain(final=True)
        self._closed = True
        return payloads

    async def iter_payloads(
        self, source: AsyncIterable[bytes]
    ) -> AsyncGenerator[Any, None]:
        """Yield payloads as they complete until the sentinel or end of input."""

        async for chunk in source:
            for payload in self.feed(chunk):
                yield payload
            if self.done:
                return
        for payload in self.close():
            yield payload

    def _drain(self, *, final: bool) -> list[Any]:
        *lines, self._buffer = self._buffer.split("\n")
        if final and self._buffer:
            lines.append(self._buffer)
            self._buffer = ""

        payloads: list[Any] = []
        for raw_line in lines:
            try:
                payload = self._parse_line(raw_line.rstrip("\r"))
            except StreamParseError as exc:
                self.skipped_events += 1
                logger.warning("Skipping malformed stream event: %s", exc)
                continue
            if payload is _END:
                self.done = True
                self._buffer = ""
                break
            if payload is not _SKIP:
                payloads.append(payload)
        return payloads

    def _parse_line(self, line: str) -> Any:
        # Blank separators, comments, and event/id/retry fields carry no payload.
        if not line.startswith(_DATA_PREFIX):
            return _SKIP
        data = line[len(_DATA_PREFIX) :]
        if data.startswith(" "):
            data = data[1:]
        if not data.strip():
            return _SKIP
        if self._end_sentinel is not None and data.strip() == self._end_sentinel:
            return _END
        try:
            return json.loads(data)
        except json.JSONDecodeError as exc:
            raise StreamParseError(line, f"invalid JSON ({exc.msg})") from exc


async def iter_sse_payloads(
    source: AsyncIterable[bytes], *, end_sentinel: str | None = None
) -> AsyncGenerator[Any, None]:
    """Decode a complete byte stream with a fresh :class:`StreamDecoder`."""

    decoder = StreamDecoder(end_sentinel=end_sentinel)
    async for payload in decoder.iter_payloads(source):
        yield payload


__all__ = ["StreamDecoder", "iter_sse_payloads"]
