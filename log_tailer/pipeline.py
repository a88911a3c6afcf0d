"""TailPipeline: wires discovery, tail sessions, the multiplexer and batch delivery together."""

import asyncio
import functools
import logging
import sys
from typing import BinaryIO, Callable

from log_tailer.config import Config
from log_tailer.coordinator import BatchDeliveryCoordinator
from log_tailer.discovery import SourceWatcher
from log_tailer.errors import DeliveryExhaustedError, SourceAccessError, StreamError
from log_tailer.line_reader import iter_lines
from log_tailer.metrics import DeliveryMetrics
from log_tailer.models import STDIN_TAG, RecordTemplate, SourceSpec
from log_tailer.multiplexer import StreamMultiplexer
from log_tailer.parsers import LineParser, apply_parser, get_parser
from log_tailer.sink import Sink
from log_tailer.tail import StdinReader, TailSession, open_session

logger = logging.getLogger(__name__)


class TailPipeline:
    """Discovery -> tail session -> lines -> parser -> multiplexer -> delivery."""

    def __init__(
        self,
        config: Config,
        template: RecordTemplate,
        sink: Sink,
        on_exhausted: Callable[[DeliveryExhaustedError], None] | None = None,
        stdin: BinaryIO | None = None,
    ):
        self._config = config
        self._stdin = stdin
        self._metrics = DeliveryMetrics()
        self._coordinator = BatchDeliveryCoordinator(
            sink,
            config.table,
            template,
            backoff=config.backoff_ms / 1000,
            max_retries=config.max_retries,
            exponential_backoff=config.exponential_backoff,
            max_backoff=config.max_backoff_ms / 1000,
            on_exhausted=on_exhausted,
            metrics=self._metrics,
        )
        self._mux = StreamMultiplexer()
        self._watchers: list[SourceWatcher] = []
        self._sessions: dict[str, TailSession] = {}
        self._forwarder: asyncio.Task | None = None

    @property
    def metrics(self) -> DeliveryMetrics:
        return self._metrics

    @property
    def coordinator(self) -> BatchDeliveryCoordinator:
        return self._coordinator

    @property
    def sessions(self) -> dict[str, TailSession]:
        return dict(self._sessions)

    async def start(self):
        """Attach every source. Raises SourceAccessError if none could be established."""
        self._forwarder = asyncio.get_running_loop().create_task(self._forward(), name="forwarder")

        established = 0
        for spec in self._config.sources:
            parser = get_parser(spec.format)
            if spec.is_stdin:
                self._attach_stdin(parser)
                established += 1
                continue
            try:
                await self._watch(spec, parser)
            except SourceAccessError as e:
                logger.error("%s", e)
                continue
            established += 1

        if not established:
            raise SourceAccessError("No source could be watched")

        await asyncio.gather(*(w.ready.wait() for w in self._watchers))
        logger.info("Pipeline started: %d source spec(s), %d file(s) tailed",
                    established, len(self._sessions))

    async def _watch(self, spec: SourceSpec, parser: LineParser):
        watcher = SourceWatcher(
            spec.path,
            functools.partial(self._on_discovered, parser=parser),
            settle_interval=self._config.write_settle_ms / 1000,
            use_polling=self._config.use_polling_observer,
        )
        await watcher.start()
        self._watchers.append(watcher)

    def _attach_stdin(self, parser: LineParser):
        stream = self._stdin if self._stdin is not None else sys.stdin.buffer
        reader = StdinReader(stream)
        self._mux.attach(STDIN_TAG, apply_parser(iter_lines(reader.chunks()), parser))
        logger.info("Reading from standard input")

    def _on_discovered(self, path: str, parser: LineParser):
        previous = self._sessions.pop(path, None)
        if previous is not None:
            previous.close()

        try:
            session = open_session(path, poll_interval=self._config.poll_interval)
        except StreamError as e:
            logger.error("%s", e)
            return

        self._sessions[path] = session
        logger.info("Tailing %s from offset %d", path, session.offset)
        task = self._mux.attach(path, apply_parser(iter_lines(session.chunks()), parser))
        task.add_done_callback(functools.partial(self._session_done, path, session))

    def _session_done(self, path: str, session: TailSession, task: asyncio.Task):
        if self._sessions.get(path) is session:
            del self._sessions[path]

    async def _forward(self):
        async for event in self._mux:
            self._coordinator.submit(event)

    async def stop(self):
        """Stop discovery, end every source, and deliver whatever is still queued."""
        for watcher in self._watchers:
            await watcher.stop()
        self._watchers.clear()

        for session in list(self._sessions.values()):
            session.close()

        timeout = self._config.shutdown_timeout
        if not await self._mux.wait_sources(timeout=timeout):
            logger.warning("Sources still open after %.1fs, detaching them", timeout)
            await self._mux.aclose()

        if self._forwarder is not None:
            self._forwarder.cancel()
            await asyncio.gather(self._forwarder, return_exceptions=True)
            self._forwarder = None

        for event in self._mux.drain_nowait():
            self._coordinator.submit(event)
        await self._coordinator.drain()
        logger.info("Pipeline stopped")
