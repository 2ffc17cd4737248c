# ==============================================================================
# Base Abstract Classes
# ==============================================================================
"""
Abstract base classes defining the ports Beacon talks to.

- Cache: key-value blob store for consent flags and cached assignments
- Collector: remote (or local) sink that receives event batches
"""

from beacon.base.cache import Cache
from beacon.base.collector import Collector

__all__ = [
    "Cache",
    "Collector",
]
