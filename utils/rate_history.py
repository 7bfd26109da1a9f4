"""
Per-origin submission history used by the spam rate check.

Two stores share one contract, ``record_if_below(origin, now, window, limit)``:
prune entries at or before ``now - window``, and if fewer than ``limit``
remain, append ``now`` and return True; otherwise leave the history alone
and return False. The whole sequence is atomic per origin.

- InMemoryRateHistory: process-local, one lock per origin, periodic sweep
  evicts origins idle for twice the window.
- RedisRateHistory: one sorted set per origin, pruned/counted/appended by a
  Lua script, key expiry of twice the window. Redis errors fall back to
  a process-local store so intake keeps working.
"""

import asyncio
import logging
import os
import threading
import uuid
from typing import Dict, List, Optional

import redis

from utils.limiter import get_redis_client

logger = logging.getLogger("backend.rate_history")

RATE_HISTORY_SWEEP_SECONDS = float(os.getenv("RATE_HISTORY_SWEEP_SECONDS", "60"))
REDIS_KEY_PREFIX = os.getenv("RATE_HISTORY_REDIS_PREFIX", "form_intake:rate:")


class RateHistory:
    """Interface for the per-origin timestamp store"""

    def record_if_below(self, origin: str, now: float, window: float, limit: int) -> bool:
        raise NotImplementedError

    def timestamps(self, origin: str) -> List[float]:
        raise NotImplementedError


class _OriginBucket:
    __slots__ = ("lock", "timestamps", "retired")

    def __init__(self):
        self.lock = threading.Lock()
        self.timestamps: List[float] = []
        self.retired = False


class InMemoryRateHistory(RateHistory):
    def __init__(self):
        self._buckets: Dict[str, _OriginBucket] = {}
        self._registry_lock = threading.Lock()

    def _bucket_for(self, origin: str) -> _OriginBucket:
        with self._registry_lock:
            bucket = self._buckets.get(origin)
            if bucket is None:
                bucket = _OriginBucket()
                self._buckets[origin] = bucket
            return bucket

    def record_if_below(self, origin: str, now: float, window: float, limit: int) -> bool:
        while True:
            bucket = self._bucket_for(origin)
            with bucket.lock:
                # A sweep retired this bucket between lookup and lock; take the fresh one
                if bucket.retired:
                    continue
                cutoff = now - window
                recent = [ts for ts in bucket.timestamps if ts > cutoff]
                if len(recent) >= limit:
                    bucket.timestamps = recent
                    return False
                recent.append(now)
                bucket.timestamps = recent
                return True

    def timestamps(self, origin: str) -> List[float]:
        with self._registry_lock:
            bucket = self._buckets.get(origin)
        if bucket is None:
            return []
        with bucket.lock:
            return list(bucket.timestamps)

    def __len__(self) -> int:
        return len(self._buckets)

    def sweep(self, now: float, idle_after: float) -> int:
        """Drop origins whose latest entry is older than ``idle_after`` seconds.

        Returns the number of evicted origins.
        """
        with self._registry_lock:
            candidates = list(self._buckets.items())
        evicted = 0
        for origin, bucket in candidates:
            with bucket.lock:
                if bucket.timestamps and max(bucket.timestamps) > now - idle_after:
                    continue
                bucket.retired = True
            with self._registry_lock:
                if self._buckets.get(origin) is bucket:
                    del self._buckets[origin]
            evicted += 1
        return evicted


# Prune, count and conditionally append in one round trip
_RECORD_IF_BELOW_LUA = """
local key = KEYS[1]
local now = tonumber(ARGV[1])
local window = tonumber(ARGV[2])
local limit = tonumber(ARGV[3])
redis.call('ZREMRANGEBYSCORE', key, '-inf', now - window)
if redis.call('ZCARD', key) >= limit then
  return 0
end
redis.call('ZADD', key, now, ARGV[4])
redis.call('PEXPIRE', key, math.ceil(window * 2 * 1000))
return 1
"""


class RedisRateHistory(RateHistory):
    """Sorted-set store; falls back to process memory while Redis errors."""

    def __init__(self, client: "redis.Redis", prefix: str = REDIS_KEY_PREFIX):
        self.client = client
        self.prefix = prefix
        self._script = client.register_script(_RECORD_IF_BELOW_LUA)
        self._fallback = InMemoryRateHistory()

    def _key(self, origin: str) -> str:
        return f"{self.prefix}{origin}"

    def record_if_below(self, origin: str, now: float, window: float, limit: int) -> bool:
        member = f"{now:.6f}:{uuid.uuid4().hex}"
        try:
            result = self._script(keys=[self._key(origin)], args=[now, window, limit, member])
        except redis.RedisError:
            logger.exception("Redis rate history unavailable, using process memory origin=%s", origin)
            return self._fallback.record_if_below(origin, now, window, limit)
        return int(result) == 1

    def timestamps(self, origin: str) -> List[float]:
        try:
            rows = self.client.zrange(self._key(origin), 0, -1, withscores=True)
        except redis.RedisError:
            logger.exception("Redis rate history read failed origin=%s", origin)
            return self._fallback.timestamps(origin)
        return [float(score) for _, score in rows]


def build_rate_history() -> RateHistory:
    """Shared store when Redis is configured and reachable, else process-local."""
    client = get_redis_client()
    if client is not None:
        logger.info("Rate history backed by Redis")
        return RedisRateHistory(client)
    logger.info("Rate history kept in process memory")
    return InMemoryRateHistory()


async def run_sweeper(history: InMemoryRateHistory, window: float, clock,
                      interval: Optional[float] = None) -> None:
    """Evict idle origins every ``interval`` seconds until cancelled."""
    interval = RATE_HISTORY_SWEEP_SECONDS if interval is None else interval
    while True:
        await asyncio.sleep(interval)
        try:
            evicted = history.sweep(clock(), idle_after=2 * window)
            if evicted:
                logger.debug("rate history sweep evicted=%s remaining=%s", evicted, len(history))
        except Exception:
            logger.exception("rate history sweep failed")
