# ==============================================================================
# Delivery Pipeline
# ==============================================================================
"""
Batched, retrying delivery of tracked events to a collector.

- EventQueue: pending buffer with size/timer/shutdown-triggered flushes
- DeliveryMetrics: timing and throughput instrumentation for flushes
"""

from beacon.delivery.batch_metrics import DeliveryMetrics
from beacon.delivery.queue import EventQueue

__all__ = [
    "DeliveryMetrics",
    "EventQueue",
]
