# ==============================================================================
# Tests for DeliveryMetrics — batch_metrics.py
# ==============================================================================
"""
Tests for the DeliveryMetrics class: per-batch accounting, periodic
throughput summaries and the final summary logged at shutdown.
"""

import logging
import time
from unittest.mock import MagicMock

from beacon.delivery.batch_metrics import DeliveryMetrics, _precision

# ==============================================================================
# _precision helper
# ==============================================================================


class TestPrecision:
    """Tests for the _precision helper function."""

    def test_large_values_zero_decimals(self):
        assert _precision(10.0) == 0
        assert _precision(85.3) == 0

    def test_medium_values_one_decimal(self):
        assert _precision(1.0) == 1
        assert _precision(3.2) == 1

    def test_small_values_two_decimals(self):
        assert _precision(0.5) == 2
        assert _precision(0.01) == 2


# ==============================================================================
# record_delivery — counters
# ==============================================================================


class TestRecordDelivery:
    """Tests for the record_delivery method."""

    def test_success_updates_counters(self):
        """A successful delivery increments cumulative and period counters."""
        dm = DeliveryMetrics()
        dm.record_delivery(batch_size=25, send_ms=4.0, success=True)

        assert dm.total_events == 25
        assert dm.total_batches == 1
        assert dm.failed_batches == 0
        assert dm._period_events == 25
        assert dm._period_send_ms == 4.0

    def test_failure_updates_failure_counters(self):
        """A failed delivery leaves delivered totals untouched."""
        dm = DeliveryMetrics()
        dm.record_delivery(batch_size=10, send_ms=2.0, success=False)

        assert dm.total_events == 0
        assert dm.total_batches == 0
        assert dm.failed_batches == 1
        assert dm._failed_events == 10
        assert dm._period_failed == 1

    def test_success_logs_info(self, caplog):
        dm = DeliveryMetrics()
        with caplog.at_level(logging.INFO):
            dm.record_delivery(batch_size=1500, send_ms=12.0, success=True)
        assert any("1,500 events delivered" in r.message for r in caplog.records)

    def test_failure_logs_warning(self, caplog):
        dm = DeliveryMetrics()
        with caplog.at_level(logging.WARNING):
            dm.record_delivery(batch_size=3, send_ms=0.5, success=False)
        warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
        assert any("re-queued" in r.message for r in warnings)

    def test_record_dropped(self, caplog):
        dm = DeliveryMetrics()
        with caplog.at_level(logging.WARNING):
            dm.record_dropped(4)
            dm.record_dropped(1)
        assert dm.dropped_events == 5
        assert "dropped 4 oldest" in caplog.text


# ==============================================================================
# _log_summary — periodic throughput
# ==============================================================================


class TestPeriodicSummary:
    """Tests for throughput summaries triggered by elapsed time."""

    def test_summary_logged_after_interval(self, caplog):
        dm = DeliveryMetrics(summary_interval_seconds=0.01)
        dm.record_delivery(batch_size=5, send_ms=1.0, success=True)
        time.sleep(0.02)

        with caplog.at_level(logging.INFO):
            dm.record_delivery(batch_size=5, send_ms=1.0, success=True)

        assert any("Throughput" in r.message for r in caplog.records)

    def test_summary_resets_period_counters(self):
        dm = DeliveryMetrics(summary_interval_seconds=0.01)
        dm.record_delivery(batch_size=5, send_ms=1.0, success=True)
        time.sleep(0.02)
        dm.record_delivery(batch_size=7, send_ms=1.0, success=True)

        assert dm._period_events == 0
        assert dm._period_batches == 0
        # Cumulative counters persist
        assert dm.total_events == 12
        assert dm.total_batches == 2

    def test_on_summary_callback_fires(self):
        callback = MagicMock()
        dm = DeliveryMetrics(summary_interval_seconds=0.01, on_summary=callback)
        dm.record_delivery(batch_size=1, send_ms=1.0, success=True)
        time.sleep(0.02)
        dm.record_delivery(batch_size=1, send_ms=1.0, success=True)

        callback.assert_called()

    def test_callback_error_is_swallowed(self):
        callback = MagicMock(side_effect=RuntimeError("boom"))
        dm = DeliveryMetrics(summary_interval_seconds=0.01, on_summary=callback)
        dm.record_delivery(batch_size=1, send_ms=1.0, success=True)
        time.sleep(0.02)
        dm.record_delivery(batch_size=1, send_ms=1.0, success=True)

        callback.assert_called()

    def test_no_summary_before_interval(self, caplog):
        dm = DeliveryMetrics(summary_interval_seconds=60)
        with caplog.at_level(logging.INFO):
            dm.record_delivery(batch_size=1, send_ms=1.0, success=True)
        assert not any("Throughput" in r.message for r in caplog.records)


# ==============================================================================
# log_final_summary
# ==============================================================================


class TestFinalSummary:
    """Tests for the summary logged at shutdown."""

    def test_no_batches(self, caplog):
        dm = DeliveryMetrics()
        with caplog.at_level(logging.INFO):
            dm.log_final_summary()
        assert any("no batches delivered" in r.message for r in caplog.records)

    def test_final_totals(self, caplog):
        dm = DeliveryMetrics()
        dm.record_delivery(batch_size=10, send_ms=2.0, success=True)
        dm.record_delivery(batch_size=5, send_ms=2.0, success=False)
        dm.record_dropped(2)

        with caplog.at_level(logging.INFO):
            dm.log_final_summary()

        final = [r.message for r in caplog.records if r.message.startswith("Final:")]
        assert len(final) == 1
        assert "10 events in 1 batches" in final[0]
        assert "failed=1" in final[0]
        assert "dropped=2" in final[0]

    def test_custom_logger(self):
        log = MagicMock()
        dm = DeliveryMetrics(log=log)
        dm.log_final_summary()
        log.info.assert_called_once()
