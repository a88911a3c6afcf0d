"""Batch delivery coordinator: single-flight debounced batching with bounded retry."""

import asyncio
import logging
import random
import time
from typing import Awaitable, Callable

from log_tailer.errors import DeliveryExhaustedError, TransientSinkError
from log_tailer.metrics import DeliveryMetrics
from log_tailer.models import DeliveryAttempt, LineEvent, RecordTemplate
from log_tailer.sink import Sink

logger = logging.getLogger(__name__)


class BatchDeliveryCoordinator:
    """Turns a burst of line events into ordered, retried batch inserts.

    Every submit() requests a turn. If no turn task exists one is scheduled to
    run as soon as the current synchronous work unwinds; otherwise the request
    is absorbed. The turn snapshots and clears the queue, delivers that batch,
    and loops while anything arrived during delivery, so events queued during
    a flush all land in exactly one follow-up flush.

    flush() itself runs under a lock, so at most one delivery is ever in
    flight even when flush() is also called directly (e.g. at shutdown).

    Retry policy: up to ``max_retries`` insert attempts per batch with a fixed
    ``backoff`` (seconds) between them. With ``exponential_backoff`` the delay
    doubles per retry, capped at ``max_backoff``, with 0.8-1.2 jitter. When the
    budget is spent, or the sink raises anything other than TransientSinkError,
    the batch is dropped and DeliveryExhaustedError is raised from flush();
    the turn task logs it, reports it to ``on_exhausted`` and carries on with
    later batches.
    """

    def __init__(
        self,
        sink: Sink,
        table: str,
        template: RecordTemplate,
        backoff: float = 1.0,
        max_retries: int = 10,
        exponential_backoff: bool = False,
        max_backoff: float = 30.0,
        on_exhausted: Callable[[DeliveryExhaustedError], None] | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        metrics: DeliveryMetrics | None = None,
    ):
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        self._sink = sink
        self._table = table
        self._template = template
        self._backoff = backoff
        self._max_retries = max_retries
        self._exponential = exponential_backoff
        self._max_backoff = max_backoff
        self._on_exhausted = on_exhausted
        self._sleep = sleep
        self._metrics = metrics or DeliveryMetrics()

        self._pending: list[LineEvent] = []
        self._lock = asyncio.Lock()
        self._turn: asyncio.Task | None = None

    @property
    def metrics(self) -> DeliveryMetrics:
        return self._metrics

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def flushing(self) -> bool:
        return self._lock.locked()

    def submit(self, event: LineEvent):
        """Queue an event for delivery and request a turn."""
        self._pending.append(event)
        self._request_turn()

    def _request_turn(self):
        if self._turn is not None and not self._turn.done():
            return
        self._turn = asyncio.get_running_loop().create_task(self._run_turn(), name="delivery-turn")
        self._turn.add_done_callback(self._turn_done)

    async def _run_turn(self):
        while self._pending:
            try:
                await self.flush()
            except DeliveryExhaustedError as e:
                self._report_exhausted(e)
            except Exception:
                logger.exception("Delivery turn failed, continuing with the next batch")

    @staticmethod
    def _turn_done(task: asyncio.Task):
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Delivery turn crashed", exc_info=exc)

    def _report_exhausted(self, exc: DeliveryExhaustedError):
        self._metrics.record_dropped(exc.batch_size)
        logger.critical("DATA LOSS: %s", exc)
        if self._on_exhausted is not None:
            self._on_exhausted(exc)

    async def flush(self) -> int:
        """Snapshot-and-clear the queue and deliver it. Returns the batch size."""
        async with self._lock:
            events, self._pending = self._pending, []
            if not events:
                return 0
            batch = [self._template.build(e) for e in events]
            await self._deliver(DeliveryAttempt(batch))
            return len(batch)

    async def _deliver(self, attempt: DeliveryAttempt):
        size = len(attempt.batch)
        t0 = time.monotonic()
        while True:
            try:
                await self._sink.insert(self._table, attempt.batch)
            except TransientSinkError as e:
                attempts = attempt.retries_used + 1
                if attempts >= self._max_retries:
                    raise DeliveryExhaustedError(self._table, size, attempts, e) from e
                delay = self._backoff_delay(attempt.retries_used)
                logger.warning(
                    "Insert of %d record(s) into %s failed (attempt %d/%d): %s; retrying in %.2fs",
                    size, self._table, attempts, self._max_retries, e, delay,
                )
                self._metrics.record_retry()
                await self._sleep(delay)
                attempt.retries_used += 1
                continue
            except Exception as e:
                # anything other than a transient failure is not retried
                raise DeliveryExhaustedError(self._table, size, attempt.retries_used + 1, e) from e

            elapsed_ms = (time.monotonic() - t0) * 1000
            self._metrics.record_batch(size, elapsed_ms)
            logger.info(
                "Delivered %d record(s) to %s in %.0fms (retries=%d)",
                size, self._table, elapsed_ms, attempt.retries_used,
            )
            return

    def _backoff_delay(self, retries_used: int) -> float:
        if not self._exponential:
            return self._backoff
        base = min(self._backoff * (2 ** retries_used), self._max_backoff)
        return base * random.uniform(0.8, 1.2)

    async def drain(self):
        """Wait until nothing is queued and no delivery is in flight."""
        while self._turn is not None and not self._turn.done():
            await asyncio.wait({self._turn})
        if self._pending:
            await self._run_turn()
