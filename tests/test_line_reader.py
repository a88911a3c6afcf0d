"""Tests for line reconstruction."""

import pytest

from log_tailer.errors import StreamError
from log_tailer.line_reader import LineSplitter, iter_lines


async def _chunks(*parts, error: Exception | None = None):
    for part in parts:
        yield part
    if error is not None:
        raise error


async def _collect(agen) -> list[str]:
    return [line async for line in agen]


class TestLineSplitter:
    def test_complete_lines(self):
        s = LineSplitter()
        assert s.feed(b"one\ntwo\n") == ["one", "two"]
        assert s.pending == 0
        assert s.finish() == []

    def test_partial_line_held_across_chunks(self):
        s = LineSplitter()
        assert s.feed(b"hel") == []
        assert s.feed(b"lo\nwor") == ["hello"]
        assert s.pending == 3
        assert s.feed(b"ld\n") == ["world"]

    def test_trailing_partial_flushed_on_finish(self):
        s = LineSplitter()
        assert s.feed(b"hello\nworld") == ["hello"]
        assert s.finish() == ["world"]
        assert s.finish() == []

    def test_empty_lines_dropped(self):
        s = LineSplitter()
        assert s.feed(b"a\n\n\nb\n\n") == ["a", "b"]

    def test_crlf_stripped(self):
        s = LineSplitter()
        assert s.feed(b"one\r\ntwo\r\n\r\n") == ["one", "two"]

    def test_whitespace_is_content(self):
        s = LineSplitter()
        assert s.feed(b"  indented\n") == ["  indented"]

    def test_multibyte_split_across_chunks(self):
        data = "héllo wörld\n".encode("utf-8")
        s = LineSplitter()
        assert s.feed(data[:2]) == []
        assert s.feed(data[2:]) == ["héllo wörld"]

    def test_invalid_utf8_replaced(self):
        s = LineSplitter()
        assert s.feed(b"bad \xff byte\n") == ["bad \ufffd byte"]

    def test_empty_chunk_is_noop(self):
        s = LineSplitter()
        s.feed(b"abc")
        assert s.feed(b"") == []
        assert s.pending == 3

    def test_every_split_point_yields_same_lines(self):
        data = b"alpha\nbeta\n\ngamma\ndelta"
        expected = ["alpha", "beta", "gamma", "delta"]
        for i in range(len(data) + 1):
            s = LineSplitter()
            lines = s.feed(data[:i]) + s.feed(data[i:]) + s.finish()
            assert lines == expected, f"split at {i}"

    def test_long_line_across_many_chunks(self):
        s = LineSplitter()
        chunk = b"x" * 65536
        for _ in range(200):
            assert s.feed(chunk) == []
        assert s.pending == 200 * 65536
        lines = s.feed(b"\r\nnext")
        assert len(lines) == 1
        assert len(lines[0]) == 200 * 65536
        assert s.pending == 4
        assert s.finish() == ["next"]


class TestIterLines:
    @pytest.mark.asyncio
    async def test_hello_world_without_trailing_newline(self):
        lines = await _collect(iter_lines(_chunks(b"hello\nwor", b"ld")))
        assert lines == ["hello", "world"]

    @pytest.mark.asyncio
    async def test_empty_stream(self):
        assert await _collect(iter_lines(_chunks())) == []

    @pytest.mark.asyncio
    async def test_error_discards_partial_line(self):
        received = []
        with pytest.raises(StreamError):
            async for line in iter_lines(_chunks(b"done\npart", error=StreamError("gone"))):
                received.append(line)
        assert received == ["done"]
