# ==============================================================================
# Collector Infrastructure
# ==============================================================================
"""
Collector implementations.

Available implementations:
- HttpCollector: JSON POST to the remote collector endpoint
- JsonlFileCollector: append-only local event log
- MemoryCollector: in-process sink
"""

from beacon.infrastructure.collectors.file import JsonlFileCollector, read_event_log
from beacon.infrastructure.collectors.http import HttpCollector
from beacon.infrastructure.collectors.memory import MemoryCollector

__all__ = [
    "HttpCollector",
    "JsonlFileCollector",
    "MemoryCollector",
    "read_event_log",
]
