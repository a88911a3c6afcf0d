"""Line reconstruction: turn an unbounded byte stream into complete lines."""

from typing import AsyncIterator

DELIMITER = b"\n"


class LineSplitter:
    """Splits byte chunks on newlines, holding a trailing partial line between chunks.

    Lines are decoded only once complete, so a multibyte character split
    across two chunks is never mangled. Empty lines are dropped.
    """

    def __init__(self, encoding: str = "utf-8"):
        self._encoding = encoding
        self._held: list[bytes] = []   # pieces of the partial line
        self._held_len = 0

    @property
    def pending(self) -> int:
        """Bytes held after the last delimiter."""
        return self._held_len

    def feed(self, chunk: bytes) -> list[str]:
        if not chunk:
            return []
        if DELIMITER not in chunk:
            self._hold(chunk)
            return []
        parts = chunk.split(DELIMITER)
        if self._held:
            parts[0] = self._take() + parts[0]
        self._hold(parts.pop())
        return self._decode_all(parts)

    def finish(self) -> list[str]:
        """Flush the held partial line at end of stream."""
        return self._decode_all([self._take()])

    def _hold(self, piece: bytes):
        if piece:
            self._held.append(piece)
            self._held_len += len(piece)

    def _take(self) -> bytes:
        rest = b"".join(self._held)
        self._held = []
        self._held_len = 0
        return rest

    def _decode_all(self, parts: list[bytes]) -> list[str]:
        lines = []
        for part in parts:
            if part.endswith(b"\r"):
                part = part[:-1]
            if part:
                lines.append(part.decode(self._encoding, errors="replace"))
        return lines


async def iter_lines(chunks: AsyncIterator[bytes], encoding: str = "utf-8") -> AsyncIterator[str]:
    """Lazily yield complete lines from an async iterator of byte chunks.

    If the chunk stream raises, the held partial line is discarded and the
    error propagates.
    """
    splitter = LineSplitter(encoding)
    async for chunk in chunks:
        for line in splitter.feed(chunk):
            yield line
    for line in splitter.finish():
        yield line
