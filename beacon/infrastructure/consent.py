# ==============================================================================
# Consent Store
# ==============================================================================
"""
Tracking consent flag stored in the key-value cache.

The flag is loaded once, when the store is created, and held in memory so
that checking it on every tracking call costs no I/O. grant() and deny()
update the in-memory flag first, then persist it. refresh() re-reads the
stored flag, for hosts where consent can change in another process.

When no flag has been stored, or the cache cannot be read, the configured
default applies.
"""

import logging

from beacon.base import Cache
from beacon.utils.config import ConsentSettings, get_settings

logger = logging.getLogger(__name__)


class ConsentStore:
    """Reads and writes the visitor's tracking consent."""

    def __init__(
        self,
        cache: Cache | None = None,
        key: str | None = None,
        default_granted: bool | None = None,
        settings: ConsentSettings | None = None,
    ):
        settings = settings or get_settings().consent
        self._cache = cache
        self._key = key or settings.cache_key
        self._default = settings.default_granted if default_granted is None else default_granted
        self._granted = self._default
        self.refresh()

    def is_granted(self) -> bool:
        """Return True when tracking is allowed."""
        return self._granted

    def refresh(self) -> bool:
        """
        Reload the flag from the cache.

        Returns:
            The flag now in effect
        """
        if self._cache is None:
            return self._granted
        try:
            data = self._cache.get(self._key)
        except Exception as e:
            logger.warning("Consent lookup failed, keeping %s: %s", self._granted, e)
            return self._granted
        if data is not None:
            self._granted = bool(data.get("granted", self._default))
        return self._granted

    def grant(self) -> None:
        self._store(True)

    def deny(self) -> None:
        self._store(False)

    def _store(self, granted: bool) -> None:
        self._granted = granted
        logger.info("Tracking consent %s", "granted" if granted else "denied")
        if self._cache is None:
            return
        try:
            self._cache.set(self._key, {"granted": granted})
        except Exception as e:
            logger.warning("Failed to persist consent flag: %s", e)
