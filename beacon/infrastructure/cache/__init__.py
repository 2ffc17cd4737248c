# ==============================================================================
# Cache Infrastructure
# ==============================================================================
"""
Cache implementations for the ports-and-adapters architecture.

Available implementations:
- ValkeyCache: Valkey/Redis-based cache with JSON serialization
- MemoryCache: process-local cache for tests and single-process hosts
"""

from beacon.infrastructure.cache.memory import MemoryCache
from beacon.infrastructure.cache.valkey import ValkeyCache, check_valkey_connection

__all__ = [
    "MemoryCache",
    "ValkeyCache",
    "check_valkey_connection",
]
