"""Tail readers: follow a growing file from its current end, or read standard input."""

import asyncio
import logging
import os
import threading
from typing import AsyncIterator, BinaryIO

from log_tailer.errors import StreamError
from log_tailer.models import TailState

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024


class TailSession:
    """Streams bytes appended to one file after the session was opened.

    Handles:
    - File growth (new bytes flow through)
    - File truncation (cursor reset to the start of the file)
    - File deleted or replaced at its path (session ends after a final drain)
    """

    def __init__(self, path: str, poll_interval: float = 0.25, chunk_size: int = CHUNK_SIZE):
        self.path = os.path.abspath(path)
        self.state = TailState.OPENING
        self.offset: int | None = None
        self._poll_interval = poll_interval
        self._chunk_size = chunk_size
        self._file: BinaryIO | None = None
        self._inode: int | None = None
        self._closed = asyncio.Event()

    @property
    def cursor(self) -> int | None:
        """Current read position, or None when the file is not open."""
        return self._file.tell() if self._file else None

    def open(self):
        """Open the file positioned at its current size. Existing content is never replayed."""
        try:
            fh = open(self.path, "rb")
            try:
                stat = os.fstat(fh.fileno())
                fh.seek(stat.st_size)
            except OSError:
                fh.close()
                raise
        except OSError as e:
            self.state = TailState.ERRORED
            raise StreamError(f"Cannot open {self.path}: {e}") from e

        self._file = fh
        self._inode = stat.st_ino
        self.offset = stat.st_size
        self.state = TailState.STREAMING
        logger.debug("Opened %s at offset %d (inode=%d)", self.path, self.offset, self._inode)

    def close(self):
        """Ask chunks() to drain what is left and stop."""
        self._closed.set()

    @property
    def closed(self) -> bool:
        return self.state in (TailState.CLOSED, TailState.ERRORED)

    async def chunks(self) -> AsyncIterator[bytes]:
        if self._file is None:
            raise StreamError(f"Session for {self.path} is not open")
        try:
            while True:
                data = self._read()
                if data:
                    self.state = TailState.STREAMING
                    yield data
                    continue

                if self._closed.is_set():
                    break
                if self._replaced():
                    logger.info("File %s was removed or replaced, ending session", self.path)
                    break

                self.state = TailState.EOF_IDLE
                try:
                    await asyncio.wait_for(self._closed.wait(), timeout=self._poll_interval)
                except asyncio.TimeoutError:
                    pass
        finally:
            self._close_file()

    def _read(self) -> bytes:
        try:
            self._check_truncation()
            return self._file.read(self._chunk_size)
        except OSError as e:
            self.state = TailState.ERRORED
            raise StreamError(f"Read failed for {self.path}: {e}") from e

    def _check_truncation(self):
        """Detect truncation (e.g. ``> file``) and seek back to the start."""
        size = os.fstat(self._file.fileno()).st_size
        if size < self._file.tell():
            logger.info("File truncation detected for %s", self.path)
            self._file.seek(0)

    def _replaced(self) -> bool:
        try:
            return os.stat(self.path).st_ino != self._inode
        except FileNotFoundError:
            return True

    def _close_file(self):
        if self._file:
            self._file.close()
            self._file = None
        if self.state != TailState.ERRORED:
            self.state = TailState.CLOSED


def open_session(path: str, poll_interval: float = 0.25, chunk_size: int = CHUNK_SIZE) -> TailSession:
    """Open a TailSession positioned at the file's current size."""
    session = TailSession(path, poll_interval=poll_interval, chunk_size=chunk_size)
    session.open()
    return session


class StdinReader:
    """Reads a byte stream (standard input by default) from its current position.

    A daemon thread performs the blocking reads and hands chunks to the event
    loop, so a read that never returns cannot hold up shutdown.
    """

    def __init__(self, stream: BinaryIO, chunk_size: int = CHUNK_SIZE):
        self._stream = stream
        self._chunk_size = chunk_size
        self.state = TailState.OPENING

    async def chunks(self) -> AsyncIterator[bytes]:
        loop = asyncio.get_running_loop()
        q: asyncio.Queue = asyncio.Queue()
        reader = threading.Thread(target=self._read_loop, args=(loop, q), daemon=True)
        reader.start()
        self.state = TailState.STREAMING

        while True:
            item = await q.get()
            if item is None:
                self.state = TailState.CLOSED
                return
            if isinstance(item, Exception):
                self.state = TailState.ERRORED
                raise StreamError(f"Standard input read failed: {item}") from item
            yield item

    def _read_loop(self, loop: asyncio.AbstractEventLoop, q: asyncio.Queue):
        read = getattr(self._stream, "read1", self._stream.read)
        while True:
            try:
                data = read(self._chunk_size)
            except (OSError, ValueError) as e:
                self._hand_off(loop, q, e)
                return
            if not data:
                self._hand_off(loop, q, None)
                return
            if not self._hand_off(loop, q, data):
                return

    @staticmethod
    def _hand_off(loop: asyncio.AbstractEventLoop, q: asyncio.Queue, item) -> bool:
        try:
            loop.call_soon_threadsafe(q.put_nowait, item)
        except RuntimeError:
            # event loop already closed
            return False
        return True
