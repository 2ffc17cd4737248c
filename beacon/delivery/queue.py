# ==============================================================================
# Event Queue
# ==============================================================================
"""
Ordered in-memory buffer of pending events with batched delivery.

Flush triggers:
- pending length reaches ``batch_size``
- the background worker's ``flush_interval`` timer
- connectivity restored (``set_online(True)``)
- ``shutdown()``, which forces a final synchronous flush

A flush swaps the pending list out under the lock, then delivers the batch
and the current session snapshot to the collector outside the lock, so
``enqueue()`` never waits on the network. Only one flush is in flight at a
time; a flush requested while another is outstanding is coalesced (skipped).
When delivery fails, times out or raises, the batch is prepended back onto
the pending list ahead of anything enqueued meanwhile.

Delivery is at-least-once: a batch the collector received but reported as
failed (or that timed out after the remote accepted it) is sent again.
"""

import logging
import threading
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError

from beacon.base import Collector
from beacon.core.models import Event, Session
from beacon.delivery.batch_metrics import DeliveryMetrics

logger = logging.getLogger(__name__)


class EventQueue:
    """
    Buffer events and flush them to a collector in batches.

    The queue is safe to call from many threads. While the background worker
    is running, size-triggered flushes are handed to the worker so that
    ``enqueue()`` stays fire-and-forget; before ``start()`` (and in tests)
    they run inline.
    """

    def __init__(
        self,
        collector: Collector,
        session_provider: Callable[[], Session],
        batch_size: int = 10,
        flush_interval: float = 30.0,
        send_timeout: float = 5.0,
        max_queue_size: int | None = None,
        metrics: DeliveryMetrics | None = None,
    ):
        """
        Initialize the queue.

        Args:
            collector: Delivery sink
            session_provider: Returns the session snapshot sent with each batch
            batch_size: Pending length that triggers an immediate flush
            flush_interval: Seconds between timer-driven flushes
            send_timeout: Seconds to wait for one delivery before re-queueing
            max_queue_size: Optional bound on pending events (oldest dropped)
            metrics: Delivery instrumentation. Created if not supplied.
        """
        if batch_size < 1:
            raise ValueError(f"batch_size must be at least 1, got {batch_size}")

        self._collector = collector
        self._session_provider = session_provider
        self._batch_size = batch_size
        self._flush_interval = flush_interval
        self._send_timeout = send_timeout
        self._max_queue_size = max_queue_size
        self._metrics = metrics or DeliveryMetrics()

        self._pending: list[Event] = []
        self._lock = threading.Lock()
        self._flush_lock = threading.Lock()
        self._online = True

        self._wake = threading.Event()
        self._stop = threading.Event()
        self._worker: threading.Thread | None = None
        self._executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="beacon-send")

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def batch_size(self) -> int:
        return self._batch_size

    @property
    def is_online(self) -> bool:
        return self._online

    @property
    def is_running(self) -> bool:
        return self._worker is not None and self._worker.is_alive()

    @property
    def metrics(self) -> DeliveryMetrics:
        return self._metrics

    def pending(self) -> list[Event]:
        """Copy of the pending events in delivery order."""
        with self._lock:
            return list(self._pending)

    def __len__(self) -> int:
        with self._lock:
            return len(self._pending)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def enqueue(self, event: Event) -> None:
        """Append an event; trigger a flush once ``batch_size`` is reached."""
        with self._lock:
            self._pending.append(event)
            self._enforce_bound()
            should_flush = len(self._pending) >= self._batch_size

        if should_flush:
            self._request_flush()

    def flush(self, force: bool = False) -> bool:
        """
        Deliver all pending events as one batch.

        Args:
            force: Flush even while offline, waiting for an in-flight flush
                   to finish instead of skipping

        Returns:
            True if a batch was delivered, False if nothing was sent
        """
        if force:
            acquired = self._flush_lock.acquire(timeout=self._send_timeout + 1.0)
        else:
            acquired = self._flush_lock.acquire(blocking=False)
        if not acquired:
            logger.debug("Flush already in progress, skipping")
            return False

        try:
            with self._lock:
                if not self._pending:
                    return False
                if not self._online and not force:
                    logger.debug("Offline, deferring flush of %d events", len(self._pending))
                    return False
                batch = self._pending
                self._pending = []

            success = self._deliver(batch)
            if not success:
                with self._lock:
                    self._pending[:0] = batch
                    self._enforce_bound()
            return success
        finally:
            self._flush_lock.release()

    def set_online(self, online: bool) -> None:
        """Record a connectivity change; flushing resumes when back online."""
        was_online = self._online
        self._online = online
        if online and not was_online:
            logger.info("Connectivity restored, resuming delivery")
            self._request_flush()
        elif not online and was_online:
            logger.info("Connectivity lost, holding events until back online")

    def start(self) -> None:
        """Start the background flush worker."""
        if self.is_running:
            return
        self._stop.clear()
        self._worker = threading.Thread(target=self._run, name="beacon-flush", daemon=True)
        self._worker.start()
        logger.debug(
            "Flush worker started (batch_size=%d, interval=%.1fs)",
            self._batch_size,
            self._flush_interval,
        )

    def shutdown(self) -> None:
        """
        Stop the worker and force a final synchronous flush.

        Safe to call more than once.
        """
        self._stop.set()
        self._wake.set()
        if self._worker is not None:
            self._worker.join(timeout=self._send_timeout + 1.0)
            self._worker = None

        self.flush(force=True)
        remaining = len(self)
        if remaining:
            logger.warning("Shutdown with %d undelivered events", remaining)
        self._metrics.log_final_summary()
        self._executor.shutdown(wait=False)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _run(self) -> None:
        while not self._stop.is_set():
            self._wake.wait(timeout=self._flush_interval)
            self._wake.clear()
            if self._stop.is_set():
                break
            self.flush()

    def _request_flush(self) -> None:
        if self.is_running:
            self._wake.set()
        else:
            self.flush()

    def _deliver(self, batch: list[Event]) -> bool:
        """Send one batch with a timeout; never raises."""
        session = self._session_provider()
        t0 = time.monotonic()
        try:
            future = self._executor.submit(
                self._collector.deliver, batch, session, self._send_timeout
            )
            success = bool(future.result(timeout=self._send_timeout))
        except FutureTimeoutError:
            logger.error(
                "Delivery of %d events to %s timed out after %.1fs",
                len(batch),
                self._collector.name,
                self._send_timeout,
            )
            success = False
        except Exception as e:
            logger.error(
                "Failed to send %d analytics events to %s: %s",
                len(batch),
                self._collector.name,
                e,
            )
            success = False

        self._metrics.record_delivery(len(batch), (time.monotonic() - t0) * 1000, success)
        return success

    def _enforce_bound(self) -> None:
        """Drop the oldest events beyond max_queue_size. Caller holds the lock."""
        if self._max_queue_size is None:
            return
        excess = len(self._pending) - self._max_queue_size
        if excess > 0:
            del self._pending[:excess]
            self._metrics.record_dropped(excess)
