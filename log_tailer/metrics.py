"""Delivery metrics: counters and send latencies for batch delivery."""

import time
from collections import deque

# Latency samples kept for the p95; the averages cover every batch.
SAMPLE_WINDOW = 1000


class DeliveryMetrics:
    """Collects and reports metrics about batch delivery to the sink.

    Only touched from the event loop thread, so no locking is needed.
    """

    def __init__(self, sample_window: int = SAMPLE_WINDOW) -> None:
        self._batches_sent: int = 0
        self._records_sent: int = 0
        self._retries: int = 0
        self._batches_dropped: int = 0
        self._records_dropped: int = 0
        self._send_time_total: float = 0.0
        self._send_times: deque[float] = deque(maxlen=sample_window)
        self._start_time = time.monotonic()

    def record_batch(self, batch_size: int, send_time_ms: float) -> None:
        """Record a successfully delivered batch.

        Args:
            batch_size: Number of records in the batch.
            send_time_ms: Time from first attempt to success, retries included.
        """
        self._batches_sent += 1
        self._records_sent += batch_size
        self._send_time_total += send_time_ms
        self._send_times.append(send_time_ms)

    def record_retry(self) -> None:
        self._retries += 1

    def record_dropped(self, batch_size: int) -> None:
        self._batches_dropped += 1
        self._records_dropped += batch_size

    @property
    def records_sent(self) -> int:
        return self._records_sent

    @property
    def records_dropped(self) -> int:
        return self._records_dropped

    @property
    def retained_samples(self) -> int:
        return len(self._send_times)

    def snapshot(self) -> dict:
        """Return a point-in-time snapshot of all collected metrics.

        ``p95_send_time_ms`` covers the most recent ``sample_window`` batches.
        """
        batches = self._batches_sent
        return {
            "batches_sent": batches,
            "records_sent": self._records_sent,
            "retries": self._retries,
            "batches_dropped": self._batches_dropped,
            "records_dropped": self._records_dropped,
            "avg_batch_size": self._records_sent / batches if batches else 0.0,
            "avg_send_time_ms": self._send_time_total / batches if batches else 0.0,
            "p95_send_time_ms": self._percentile(list(self._send_times), 95),
            "uptime_seconds": time.monotonic() - self._start_time,
        }

    @staticmethod
    def _percentile(data: list, pct: float) -> float:
        """Interpolated percentile of data, or 0.0 if empty."""
        if not data:
            return 0.0

        sorted_data = sorted(data)
        n = len(sorted_data)
        if n == 1:
            return float(sorted_data[0])

        idx = (pct / 100) * (n - 1)
        lower = int(idx)
        upper = lower + 1
        if upper >= n:
            return float(sorted_data[-1])
        fraction = idx - lower
        return float(sorted_data[lower] + fraction * (sorted_data[upper] - sorted_data[lower]))
