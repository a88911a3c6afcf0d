"""Stream multiplexer: fans per-source line streams into one shared event queue."""

import asyncio
import logging
from typing import AsyncIterator

from log_tailer.errors import StreamError
from log_tailer.models import LineEvent

logger = logging.getLogger(__name__)


class StreamMultiplexer:
    """Merges a growing set of line streams into a single LineEvent sequence.

    Each attached source gets its own pump task, so lines from one source stay
    in order while sources interleave freely. A failing source is logged and
    dropped without disturbing the others.
    """

    def __init__(self):
        self._queue: asyncio.Queue[LineEvent] = asyncio.Queue()
        self._pumps: set[asyncio.Task] = set()
        self._events_in = 0

    @property
    def active_sources(self) -> int:
        return len(self._pumps)

    @property
    def events_in(self) -> int:
        return self._events_in

    def attach(self, source_tag: str, lines: AsyncIterator[str]) -> asyncio.Task:
        """Splice a new source into the stream. Safe to call at any time."""
        task = asyncio.get_running_loop().create_task(
            self._pump(source_tag, lines), name=f"pump:{source_tag}",
        )
        self._pumps.add(task)
        task.add_done_callback(self._pumps.discard)
        logger.debug("Attached source %s (%d active)", source_tag, len(self._pumps))
        return task

    async def _pump(self, source_tag: str, lines: AsyncIterator[str]):
        count = 0
        try:
            async for line in lines:
                self._events_in += 1
                count += 1
                await self._queue.put(LineEvent(source_tag, line))
        except StreamError as e:
            logger.error("Source %s failed after %d line(s): %s", source_tag, count, e)
            return
        except asyncio.CancelledError:
            logger.debug("Source %s detached after %d line(s)", source_tag, count)
            raise
        except Exception:
            logger.exception("Source %s crashed after %d line(s)", source_tag, count)
            return
        logger.info("Source %s ended after %d line(s)", source_tag, count)

    async def get(self) -> LineEvent:
        return await self._queue.get()

    def __aiter__(self):
        return self

    async def __anext__(self) -> LineEvent:
        return await self._queue.get()

    def drain_nowait(self) -> list[LineEvent]:
        """Remove and return every event currently queued."""
        events = []
        while True:
            try:
                events.append(self._queue.get_nowait())
            except asyncio.QueueEmpty:
                break
        return events

    async def wait_sources(self, timeout: float | None = None) -> bool:
        """Wait for every pump to finish. Returns False if some were still running at timeout."""
        if not self._pumps:
            return True
        _, pending = await asyncio.wait(set(self._pumps), timeout=timeout)
        return not pending

    async def aclose(self):
        """Cancel every pump still running."""
        pumps = list(self._pumps)
        for task in pumps:
            task.cancel()
        if pumps:
            await asyncio.gather(*pumps, return_exceptions=True)
