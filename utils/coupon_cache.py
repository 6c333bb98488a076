"""
Read-through cache for coupon snapshots.

The cache is ONLY an accelerator for the validation path. The database stays
authoritative; redemptions never decide on cached data.

Keys: ``coupon:{CODE}`` (TTL ``COUPON_CACHE_TTL`` seconds, default 5 min).
"""

from __future__ import annotations

import json
import logging
import os
import threading
from typing import Optional

import redis

from utils.clock import SystemClock
from utils.coupon_snapshot import CouponSnapshot

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = int(os.getenv("COUPON_CACHE_TTL", "300"))


def cache_key(code: str) -> str:
    return f"coupon:{code.strip().upper()}"


class CouponCache:
    """Interface: get / set / invalidate by coupon code."""

    def get(self, code: str) -> Optional[CouponSnapshot]:
        raise NotImplementedError

    def set(self, code: str, snapshot: CouponSnapshot, ttl: Optional[int] = None) -> None:
        raise NotImplementedError

    def invalidate(self, code: str) -> None:
        raise NotImplementedError


class NullCouponCache(CouponCache):
    def get(self, code: str) -> Optional[CouponSnapshot]:
        return None

    def set(self, code: str, snapshot: CouponSnapshot, ttl: Optional[int] = None) -> None:
        return None

    def invalidate(self, code: str) -> None:
        return None


class MemoryCouponCache(CouponCache):
    """Process-local cache, expiry driven by the injected clock."""

    def __init__(self, clock=None, default_ttl: int = DEFAULT_TTL_SECONDS) -> None:
        self.clock = clock or SystemClock()
        self.default_ttl = default_ttl
        self._entries: dict[str, tuple[float, CouponSnapshot]] = {}
        self._lock = threading.Lock()

    def _now(self) -> float:
        return self.clock.now().timestamp()

    def get(self, code: str) -> Optional[CouponSnapshot]:
        key = cache_key(code)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, snapshot = entry
            if self._now() >= expires_at:
                del self._entries[key]
                return None
            return snapshot

    def set(self, code: str, snapshot: CouponSnapshot, ttl: Optional[int] = None) -> None:
        lifetime = self.default_ttl if ttl is None else ttl
        with self._lock:
            self._entries[cache_key(code)] = (self._now() + lifetime, snapshot)

    def invalidate(self, code: str) -> None:
        with self._lock:
            self._entries.pop(cache_key(code), None)

    def __len__(self) -> int:
        return len(self._entries)


class RedisCouponCache(CouponCache):
    """Shared cache for multi-process deployments."""

    def __init__(self, client: redis.Redis, default_ttl: int = DEFAULT_TTL_SECONDS) -> None:
        self.client = client
        self.default_ttl = default_ttl

    @classmethod
    def from_url(cls, url: str, default_ttl: int = DEFAULT_TTL_SECONDS) -> "RedisCouponCache":
        client = redis.from_url(
            url,
            decode_responses=True,
            socket_connect_timeout=2,
            socket_timeout=2,
        )
        return cls(client, default_ttl=default_ttl)

    def get(self, code: str) -> Optional[CouponSnapshot]:
        key = cache_key(code)
        try:
            cached = self.client.get(key)
        except redis.RedisError as exc:
            logger.warning("Cache read error for %s: %s", key, exc)
            return None
        if not cached:
            return None
        return CouponSnapshot.from_dict(json.loads(cached))

    def set(self, code: str, snapshot: CouponSnapshot, ttl: Optional[int] = None) -> None:
        key = cache_key(code)
        try:
            self.client.setex(key, ttl or self.default_ttl, json.dumps(snapshot.to_dict()))
        except redis.RedisError as exc:
            logger.warning("Cache write error for %s: %s", key, exc)

    def invalidate(self, code: str) -> None:
        # errors propagate, callers log them
        self.client.delete(cache_key(code))


def build_coupon_cache() -> CouponCache:
    redis_url = os.getenv("REDIS_URL")
    if redis_url:
        logger.info("Using Redis coupon cache")
        return RedisCouponCache.from_url(redis_url)
    return MemoryCouponCache()
