# ==============================================================================
# Delivery Metrics with Performance Instrumentation
# ==============================================================================
"""
Instrumentation for EventQueue batch delivery.

Every flush hands one batch to the collector. This module wraps those
deliveries with time.monotonic() timing and provides:

- Per-batch log line with send timing (INFO on success, WARNING on failure)
- Periodic throughput summary (configurable interval, default 30s)
- Cumulative stats tracking (delivered, failed, dropped)
- Final summary on shutdown

Usage:
    metrics = DeliveryMetrics()
    t0 = time.monotonic()
    ok = collector.deliver(batch, session)
    metrics.record_delivery(len(batch), (time.monotonic() - t0) * 1000, ok)
    ...
    metrics.log_final_summary()
"""

import logging
import time
from collections.abc import Callable

logger = logging.getLogger(__name__)


class DeliveryMetrics:
    """
    Delivery instrumentation for the EventQueue.

    This is a composition object: the queue owns one and reports each
    delivery attempt to it. It does NOT handle error recovery (re-queue);
    that remains in the queue.
    """

    def __init__(
        self,
        summary_interval_seconds: float = 30.0,
        on_summary: Callable[[], None] | None = None,
        log: logging.Logger | None = None,
    ):
        """
        Initialize the delivery metrics.

        Args:
            summary_interval_seconds: How often to log throughput summaries
            on_summary: Optional callback invoked during periodic summaries
            log: Optional logger override. Defaults to this module's logger.
        """
        self._summary_interval = summary_interval_seconds
        self._on_summary = on_summary
        self._log = log or logger

        # Cumulative stats (lifetime of this DeliveryMetrics instance)
        self._total_events = 0
        self._total_batches = 0
        self._failed_batches = 0
        self._failed_events = 0
        self._dropped_events = 0
        self._cum_send_ms = 0.0
        self._start_time = time.monotonic()

        # Period stats (reset each summary interval)
        self._period_events = 0
        self._period_batches = 0
        self._period_failed = 0
        self._period_send_ms = 0.0
        self._last_summary_time = time.monotonic()

    @property
    def total_events(self) -> int:
        return self._total_events

    @property
    def total_batches(self) -> int:
        return self._total_batches

    @property
    def failed_batches(self) -> int:
        return self._failed_batches

    @property
    def dropped_events(self) -> int:
        return self._dropped_events

    def record_delivery(self, batch_size: int, send_ms: float, success: bool) -> None:
        """
        Record one delivery attempt.

        Logs per-batch timing and triggers the periodic summary when the
        configured interval has elapsed.

        Args:
            batch_size: Number of events in the batch
            send_ms: Time spent in the collector call in milliseconds
            success: Whether the collector accepted the batch
        """
        if success:
            self._log.info(
                "Batch: %s events delivered | send=%.*fms",
                f"{batch_size:,}",
                _precision(send_ms),
                send_ms,
            )
            self._total_events += batch_size
            self._total_batches += 1
            self._cum_send_ms += send_ms
            self._period_events += batch_size
            self._period_batches += 1
            self._period_send_ms += send_ms
        else:
            self._log.warning(
                "Batch: %s events failed, re-queued | send=%.*fms",
                f"{batch_size:,}",
                _precision(send_ms),
                send_ms,
            )
            self._failed_batches += 1
            self._failed_events += batch_size
            self._period_failed += 1

        now = time.monotonic()
        if now - self._last_summary_time >= self._summary_interval:
            self._log_summary(now)

    def record_dropped(self, count: int) -> None:
        """Record events dropped because the pending queue overflowed."""
        self._dropped_events += count
        self._log.warning("Queue overflow: dropped %s oldest pending events", f"{count:,}")

    def _log_summary(self, now: float) -> None:
        """Log periodic throughput summary and reset period counters."""
        elapsed = now - self._last_summary_time
        if elapsed <= 0 or (self._period_batches == 0 and self._period_failed == 0):
            return

        events_per_sec = self._period_events / elapsed
        avg_send_ms = (
            self._period_send_ms / self._period_batches if self._period_batches else 0.0
        )

        self._log.info(
            "Throughput (%.1fs): %s events/sec | batches=%d failed=%d | avg_send=%.*fms",
            elapsed,
            f"{events_per_sec:,.1f}",
            self._period_batches,
            self._period_failed,
            _precision(avg_send_ms),
            avg_send_ms,
        )

        if self._on_summary:
            try:
                self._on_summary()
            except Exception as e:
                self._log.debug("on_summary callback error: %s", e)

        # Reset period counters
        self._period_events = 0
        self._period_batches = 0
        self._period_failed = 0
        self._period_send_ms = 0.0
        self._last_summary_time = now

    def log_final_summary(self) -> None:
        """
        Log final summary on shutdown.

        Called from EventQueue.shutdown().
        """
        total_elapsed = time.monotonic() - self._start_time
        if self._total_batches == 0 and self._failed_batches == 0:
            self._log.info("Final: no batches delivered (%.1fs elapsed)", total_elapsed)
            return

        overall_eps = self._total_events / total_elapsed if total_elapsed > 0 else 0
        avg_send_ms = self._cum_send_ms / self._total_batches if self._total_batches else 0.0

        self._log.info(
            "Final: %s events in %d batches over %.1fs (%s events/sec) | "
            "failed=%d dropped=%s | avg_send=%.*fms",
            f"{self._total_events:,}",
            self._total_batches,
            total_elapsed,
            f"{overall_eps:,.1f}",
            self._failed_batches,
            f"{self._dropped_events:,}",
            _precision(avg_send_ms),
            avg_send_ms,
        )


def _precision(ms: float) -> int:
    """Return decimal precision for millisecond values.

    >= 10ms  → 0 decimals (e.g., 85ms)
    >= 1ms   → 1 decimal  (e.g., 3.2ms)
    < 1ms    → 2 decimals (e.g., 0.45ms)
    """
    if ms >= 10:
        return 0
    elif ms >= 1:
        return 1
    else:
        return 2
