# ==============================================================================
# Valkey Cache Implementation
# ==============================================================================
"""
Valkey/Redis implementation of the Cache interface.

Values are JSON strings. A value that no longer decodes is reported as
missing rather than raised, so one corrupt key cannot break assignment
lookups for every other key.

First-write-wins persistence relies on SET NX: when two processes assign the
same identity at the same time, exactly one write lands and the other reads
it back.
"""

import json
import logging

import redis
from redis.backoff import ExponentialBackoff
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError
from redis.retry import Retry

from beacon.base import Cache
from beacon.utils.config import get_settings

logger = logging.getLogger(__name__)

# Attempts redis-py makes on connection and timeout errors
VALKEY_RETRIES = 2

# Seconds; kept short because consent and assignment reads sit on request paths
VALKEY_SOCKET_TIMEOUT = 0.5


def _connect(url: str, socket_timeout: float, retries: int) -> redis.Redis:
    return redis.from_url(
        url,
        decode_responses=True,
        socket_timeout=socket_timeout,
        socket_connect_timeout=socket_timeout,
        retry=Retry(ExponentialBackoff(cap=1, base=0.05), retries=retries),
        retry_on_error=[RedisTimeoutError, RedisConnectionError],
    )


def _decode(key: str, raw: str | None) -> dict | None:
    if raw is None:
        return None
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Discarding undecodable value at %s", key)
        return None
    return value if isinstance(value, dict) else None


class ValkeyCache(Cache):
    """Cache backed by a Valkey (or Redis) server."""

    def __init__(
        self,
        url: str | None = None,
        socket_timeout: float = VALKEY_SOCKET_TIMEOUT,
        retries: int = VALKEY_RETRIES,
    ):
        """
        Connect lazily to Valkey.

        Args:
            url: Connection URL. Taken from settings if None.
            socket_timeout: Connect and read timeout in seconds
            retries: Retries on connection and timeout errors
        """
        self._url = url or get_settings().valkey.url
        self._client = _connect(self._url, socket_timeout, retries)

    @property
    def client(self) -> redis.Redis:
        return self._client

    def get(self, key: str) -> dict | None:
        return _decode(key, self._client.get(key))

    def set(self, key: str, value: dict, ttl_seconds: int | None = None) -> None:
        self._client.set(key, json.dumps(value), ex=ttl_seconds)

    def set_if_absent(self, key: str, value: dict, ttl_seconds: int | None = None) -> bool:
        return bool(self._client.set(key, json.dumps(value), ex=ttl_seconds, nx=True))

    def delete(self, key: str) -> bool:
        return self._client.delete(key) > 0

    def get_many(self, keys: list[str]) -> dict[str, dict]:
        if not keys:
            return {}
        decoded = (
            (key, _decode(key, raw)) for key, raw in zip(keys, self._client.mget(keys))
        )
        return {key: value for key, value in decoded if value is not None}

    def delete_pattern(self, pattern: str) -> int:
        deleted = 0
        batch: list[str] = []
        for key in self._client.scan_iter(match=pattern, count=500):
            batch.append(key)
            if len(batch) >= 500:
                deleted += self._client.delete(*batch)
                batch.clear()
        if batch:
            deleted += self._client.delete(*batch)
        return deleted

    def ping(self) -> bool:
        """True when the server answers PING."""
        try:
            return bool(self._client.ping())
        except (RedisConnectionError, RedisTimeoutError):
            return False

    def close(self) -> None:
        self._client.close()


def check_valkey_connection(url: str | None = None) -> bool:
    """Ping Valkey once, without retries."""
    client = _connect(url or get_settings().valkey.url, VALKEY_SOCKET_TIMEOUT, retries=0)
    try:
        client.ping()
        return True
    except (RedisConnectionError, RedisTimeoutError):
        return False
    finally:
        client.close()
