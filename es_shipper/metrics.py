"""Delivery statistics — thread-safe counters for bulk flushes."""

import threading
import time


class DeliveryStats:
    """Aggregates the outcome of every bulk flush made by the adapter."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._flushes: int = 0
        self._successful: int = 0
        self._failed: int = 0
        self._transport_errors: int = 0
        self._total_bytes: int = 0
        self._send_times: list[float] = []
        self._flush_triggers: dict = {"size": 0, "timer": 0, "final": 0}
        self._start_time = time.monotonic()

    def record_flush(
        self,
        successful: int,
        failed: int,
        bytes_sent: int,
        send_time_ms: float,
        trigger: str = "size",
    ) -> None:
        """Record the result of one completed bulk request.

        Args:
            successful: Documents the cluster accepted.
            failed: Documents the cluster rejected (drops).
            bytes_sent: Estimated serialized payload size.
            send_time_ms: Wall time of the request, in milliseconds.
            trigger: What caused the flush: "size", "timer" or "final".
        """
        with self._lock:
            self._flushes += 1
            self._successful += successful
            self._failed += failed
            self._total_bytes += bytes_sent
            self._send_times.append(send_time_ms)
            self._flush_triggers[trigger] = self._flush_triggers.get(trigger, 0) + 1

    def record_transport_error(self, documents: int) -> None:
        """Count a flush that never reached the cluster; its documents are failed."""
        with self._lock:
            self._transport_errors += 1
            self._failed += documents

    def snapshot(self) -> dict:
        """Return a point-in-time copy of all counters."""
        with self._lock:
            send_times = list(self._send_times)
            avg_send = sum(send_times) / len(send_times) if send_times else 0.0

            return {
                "total": self._successful + self._failed,
                "successful": self._successful,
                "failed": self._failed,
                "flushes": self._flushes,
                "transport_errors": self._transport_errors,
                "total_bytes": self._total_bytes,
                "avg_send_time_ms": avg_send,
                "p95_send_time_ms": self._percentile(send_times, 95),
                "flush_triggers": dict(self._flush_triggers),
                "uptime_seconds": time.monotonic() - self._start_time,
            }

    @staticmethod
    def _percentile(data: list, pct: float) -> float:
        """Interpolated percentile of *data*, or 0.0 when empty."""
        if not data:
            return 0.0

        sorted_data = sorted(data)
        n = len(sorted_data)

        if n == 1:
            return float(sorted_data[0])

        idx = (pct / 100) * (n - 1)
        lower = int(idx)
        upper = lower + 1
        fraction = idx - lower

        if upper >= n:
            return float(sorted_data[-1])

        return float(sorted_data[lower] + fraction * (sorted_data[upper] - sorted_data[lower]))
