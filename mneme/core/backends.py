"""
Shared-tier (L2) cache backends.

RedisCacheBackend is the deployment backend: every worker process sees the
same entries and inverted index. MemoryCacheBackend keeps the same
semantics inside one process, for single-worker setups and tests.
"""

import fnmatch
import logging
import threading
import time
from typing import Callable, Iterable, Iterator, Optional

import redis

from mneme.protocols import CacheBackendError

logger = logging.getLogger(__name__)

DELETE_BATCH_SIZE = 500


class RedisCacheBackend:
    """CacheBackend over a redis-py client (decode_responses=True)."""

    def __init__(
        self,
        url: str = "redis://localhost:6379/0",
        client: Optional[redis.Redis] = None,
        scan_count: int = 200,
    ):
        self._client = client if client is not None else redis.Redis.from_url(url, decode_responses=True)
        self._scan_count = scan_count

    def get_many(self, keys: list[str]) -> list[Optional[str]]:
        if not keys:
            return []
        try:
            return list(self._client.mget(keys))
        except redis.RedisError as exc:
            raise CacheBackendError(f"mget failed: {exc}") from exc

    def put_entry(self, key: str, value: str, set_keys: list[str], ttl_seconds: int) -> None:
        try:
            pipe = self._client.pipeline(transaction=True)
            pipe.set(key, value, ex=ttl_seconds)
            for set_key in set_keys:
                pipe.sadd(set_key, key)
                pipe.expire(set_key, ttl_seconds)
            pipe.execute()
        except redis.RedisError as exc:
            raise CacheBackendError(f"entry write failed: {exc}") from exc

    def union(self, set_keys: list[str]) -> set[str]:
        if not set_keys:
            return set()
        try:
            return set(self._client.sunion(set_keys))
        except redis.RedisError as exc:
            raise CacheBackendError(f"sunion failed: {exc}") from exc

    def remove_members(self, set_key: str, members: Iterable[str]) -> None:
        members = list(members)
        if not members:
            return
        try:
            self._client.srem(set_key, *members)
        except redis.RedisError as exc:
            raise CacheBackendError(f"srem failed: {exc}") from exc

    def delete(self, keys: list[str]) -> None:
        try:
            for i in range(0, len(keys), DELETE_BATCH_SIZE):
                self._client.delete(*keys[i:i + DELETE_BATCH_SIZE])
        except redis.RedisError as exc:
            raise CacheBackendError(f"delete failed: {exc}") from exc

    def scan(self, pattern: str) -> Iterator[str]:
        # SCAN, never KEYS: the store is shared and may be large
        try:
            yield from self._client.scan_iter(match=pattern, count=self._scan_count)
        except redis.RedisError as exc:
            raise CacheBackendError(f"scan failed: {exc}") from exc

    def close(self) -> None:
        try:
            self._client.close()
        except redis.RedisError:
            logger.debug("Error closing redis client", exc_info=True)


class MemoryCacheBackend:
    """
    In-process CacheBackend with per-key TTLs.

    Expired keys are dropped on access. Thread-safe; put_entry is atomic
    under the same lock as reads.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._values: dict[str, tuple[str, float]] = {}
        self._sets: dict[str, tuple[set[str], float]] = {}
        self._lock = threading.Lock()

    def _live_value(self, key: str, now: float) -> Optional[str]:
        item = self._values.get(key)
        if item is None:
            return None
        value, expires_at = item
        if expires_at <= now:
            del self._values[key]
            return None
        return value

    def _live_set(self, key: str, now: float) -> Optional[set[str]]:
        item = self._sets.get(key)
        if item is None:
            return None
        members, expires_at = item
        if expires_at <= now:
            del self._sets[key]
            return None
        return members

    def get_many(self, keys: list[str]) -> list[Optional[str]]:
        with self._lock:
            now = self._clock()
            return [self._live_value(k, now) for k in keys]

    def put_entry(self, key: str, value: str, set_keys: list[str], ttl_seconds: int) -> None:
        with self._lock:
            now = self._clock()
            expires_at = now + ttl_seconds
            self._values[key] = (value, expires_at)
            for set_key in set_keys:
                members = self._live_set(set_key, now) or set()
                members.add(key)
                self._sets[set_key] = (members, expires_at)

    def union(self, set_keys: list[str]) -> set[str]:
        result: set[str] = set()
        with self._lock:
            now = self._clock()
            for set_key in set_keys:
                members = self._live_set(set_key, now)
                if members:
                    result |= members
        return result

    def members(self, set_key: str) -> set[str]:
        """Snapshot of one set's live members. Test and debugging helper, not part of CacheBackend."""
        with self._lock:
            return set(self._live_set(set_key, self._clock()) or ())

    def remove_members(self, set_key: str, members: Iterable[str]) -> None:
        with self._lock:
            current = self._live_set(set_key, self._clock())
            if current is None:
                return
            current.difference_update(members)
            if not current:
                del self._sets[set_key]

    def delete(self, keys: list[str]) -> None:
        with self._lock:
            for key in keys:
                self._values.pop(key, None)
                self._sets.pop(key, None)

    def scan(self, pattern: str) -> Iterator[str]:
        with self._lock:
            now = self._clock()
            keys = [k for k in list(self._values) if self._live_value(k, now) is not None]
            keys += [k for k in list(self._sets) if self._live_set(k, now) is not None]
        for key in keys:
            if fnmatch.fnmatchcase(key, pattern):
                yield key

    def close(self) -> None:
        with self._lock:
            self._values.clear()
            self._sets.clear()


def create_backend(name: str, redis_url: str = ""):
    """Factory for L2 backends by configured name."""
    if name == "redis":
        return RedisCacheBackend(url=redis_url or "redis://localhost:6379/0")
    elif name == "memory":
        return MemoryCacheBackend()
    else:
        raise ValueError(f"Unknown cache backend: {name}. Use 'memory' or 'redis'.")
