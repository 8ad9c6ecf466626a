from __future__ import annotations

import logging
from typing import Iterable, Iterator, List


class FrameDecoder:
    """
    Streaming line splitter for newline-delimited device output.

    Text chunks are accumulated until a newline arrives; each complete line is
    emitted trimmed and the partial tail stays buffered for the next chunk.
    Message-based transports deliver complete units already, so in passthrough
    mode every message is emitted as one line.
    """

    def __init__(self, passthrough: bool = False):
        self.passthrough = passthrough
        self._buffer = ""
        self._stats = {"chunks": 0, "lines": 0}
        self._log = logging.getLogger(__name__)

    def feed(self, chunk: str) -> List[str]:
        if not chunk:
            return []
        self._stats["chunks"] += 1
        if self.passthrough:
            line = chunk.strip()
            if not line:
                return []
            self._stats["lines"] += 1
            return [line]
        self._buffer += chunk
        return list(self._extract_lines())

    def parse_chunks(self, chunks: Iterable[str]) -> Iterator[str]:
        for chunk in chunks:
            yield from self.feed(chunk)

    def _extract_lines(self) -> Iterator[str]:
        while True:
            idx = self._buffer.find("\n")
            if idx < 0:
                break
            line = self._buffer[:idx].strip()
            self._buffer = self._buffer[idx + 1 :]
            if not line:
                continue
            self._stats["lines"] += 1
            yield line

    @property
    def pending(self) -> str:
        return self._buffer

    def stats(self) -> dict[str, int]:
        return dict(self._stats)

    def reset(self) -> None:
        if self._buffer:
            self._log.debug("Dropping %d buffered characters", len(self._buffer))
        self._buffer = ""
