"""
Key-value access for usage counters.

Every operation returns a StoreResult instead of raising, so each caller
decides explicitly what a failed read or write means for it.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Sequence

import redis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoreResult:
    """Outcome of a single store operation."""
    value: Any = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def value_or(self, default: Any) -> Any:
        """Return the value, or ``default`` on error or a missing key."""
        if self.error is not None or self.value is None:
            return default
        return self.value


class UsageStore:
    """Redis-backed counters, lists and records under a common key prefix.

    Counters are independent keys; nothing here coordinates concurrent
    writers beyond the atomicity of individual Redis commands and pipelines.
    """

    def __init__(self, client: redis.Redis, key_prefix: str = "novylist:"):
        """Initialize the store.

        Args:
            client: Redis client created with ``decode_responses=True``
            key_prefix: Namespace prepended to every key
        """
        self.client = client
        self.key_prefix = key_prefix

    def key(self, key: str) -> str:
        return f"{self.key_prefix}{key}"

    def _run(self, operation: str, key: str, fn: Callable[[], Any]) -> StoreResult:
        try:
            return StoreResult(value=fn())
        except RedisError as e:
            logger.warning("Store %s failed for key %s: %s", operation, key, e)
            return StoreResult(error=e)

    def get(self, key: str) -> StoreResult:
        return self._run("get", key, lambda: self.client.get(self.key(key)))

    def get_many(self, keys: Sequence[str]) -> StoreResult:
        """Fetch several keys at once; missing keys come back as None."""
        if not keys:
            return StoreResult(value=[])
        return self._run("mget", keys[0], lambda: self.client.mget([self.key(k) for k in keys]))

    def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> StoreResult:
        return self._run("set", key, lambda: self.client.set(self.key(key), value, ex=ttl_seconds))

    def incr_by(self, key: str, amount: int, ttl_seconds: Optional[int] = None) -> StoreResult:
        """Increment an integer counter, refreshing its TTL when one is given."""
        def _incr():
            with self.client.pipeline() as pipe:
                pipe.incrby(self.key(key), amount)
                if ttl_seconds is not None:
                    pipe.expire(self.key(key), ttl_seconds)
                return int(pipe.execute()[0])

        return self._run("incrby", key, _incr)

    def incr_by_float(self, key: str, amount: float, ttl_seconds: Optional[int] = None) -> StoreResult:
        """Increment a float counter, refreshing its TTL when one is given."""
        def _incr():
            with self.client.pipeline() as pipe:
                pipe.incrbyfloat(self.key(key), amount)
                if ttl_seconds is not None:
                    pipe.expire(self.key(key), ttl_seconds)
                return float(pipe.execute()[0])

        return self._run("incrbyfloat", key, _incr)

    def delete(self, *keys: str) -> StoreResult:
        if not keys:
            return StoreResult(value=0)
        return self._run("delete", keys[0], lambda: self.client.delete(*[self.key(k) for k in keys]))

    def keys_with_prefix(self, prefix: str) -> StoreResult:
        """List keys starting with ``prefix``, returned without the store prefix.

        Iterates with SCAN.
        """
        def _scan():
            full_prefix = self.key(prefix)
            pattern = _glob_escape(full_prefix) + "*"
            return sorted(k[len(self.key_prefix):] for k in self.client.scan_iter(match=pattern))

        return self._run("scan", prefix, _scan)

    def read_point_counter(self, key: str) -> StoreResult:
        """Read a point counter and its remaining window.

        Returns:
            StoreResult whose value is ``(points_consumed, ms_before_reset)``;
            ``(0, 0)`` when no window is open.
        """
        def _read():
            with self.client.pipeline() as pipe:
                pipe.get(self.key(key))
                pipe.pttl(self.key(key))
                raw, pttl = pipe.execute()
            if raw is None:
                return 0, 0
            return int(raw), max(0, int(pttl))

        return self._run("read_point_counter", key, _read)

    def consume_point(self, key: str, window_seconds: int, points: int = 1) -> StoreResult:
        """Consume points in a fixed window that opens on first consumption.

        The window key is created with its expiry only if absent, then
        incremented; INCR keeps the existing TTL, so the window does not
        slide with later requests.

        Returns:
            StoreResult whose value is ``(points_consumed, ms_before_reset)``
        """
        def _consume():
            with self.client.pipeline() as pipe:
                pipe.set(self.key(key), 0, ex=window_seconds, nx=True)
                pipe.incrby(self.key(key), points)
                pipe.pttl(self.key(key))
                _, consumed, pttl = pipe.execute()
            return int(consumed), max(0, int(pttl))

        return self._run("consume_point", key, _consume)

    def push_capped(self, key: str, value: str, cap: int, ttl_seconds: int) -> StoreResult:
        """Prepend to a list, keep only the newest ``cap`` entries and refresh its TTL."""
        def _push():
            with self.client.pipeline() as pipe:
                pipe.lpush(self.key(key), value)
                pipe.ltrim(self.key(key), 0, cap - 1)
                pipe.expire(self.key(key), ttl_seconds)
                return int(pipe.execute()[0])

        return self._run("push_capped", key, _push)

    def lrange(self, key: str, start: int, end: int) -> StoreResult:
        return self._run("lrange", key, lambda: self.client.lrange(self.key(key), start, end))


def _glob_escape(text: str) -> str:
    """Escape Redis glob metacharacters so ``text`` matches literally."""
    return "".join("\\" + c if c in "*?[]\\" else c for c in text)


def parse_int(raw: Optional[str]) -> int:
    """Counters come back as strings; absent or garbled values count as zero."""
    try:
        return int(float(raw)) if raw is not None else 0
    except (TypeError, ValueError):
        return 0


def parse_float(raw: Optional[str]) -> float:
    try:
        return float(raw) if raw is not None else 0.0
    except (TypeError, ValueError):
        return 0.0


def values_or_empty(result: StoreResult, size: int) -> List[Optional[str]]:
    """Unpack a get_many result, treating a failed read as all keys missing."""
    if not result.ok or result.value is None:
        return [None] * size
    return list(result.value)
