"""TTL cache for aggregation results, backed by Redis when available."""
import json
import threading
import time
from collections import OrderedDict
from typing import Any, Dict, Optional, Tuple

import redis

from digitaltide.core.errors import ConfigurationError
from digitaltide.core.logging import get_logger
from digitaltide.core.settings import get_settings
from digitaltide.core.utils import sha1_hex

logger = get_logger(__name__)

KEY_PREFIX = "digitaltide:aggregation:"


def make_cache_key(options: Dict[str, Any]) -> str:
    """Stable key for an option set; list values are order-insensitive."""
    canonical = {}
    for name, value in options.items():
        if isinstance(value, (list, tuple, set)):
            value = sorted(str(v) for v in value)
        canonical[name] = value
    return KEY_PREFIX + sha1_hex(json.dumps(canonical, sort_keys=True, default=str))


class AggregationCache:
    """
    Cache for serialized aggregation payloads.

    With a reachable ``redis_url`` entries are stored with ``SETEX``;
    otherwise an in-process LRU map with per-entry expiry is used.
    """

    def __init__(self, redis_url: Optional[str] = None, ttl_seconds: Optional[int] = None,
                 max_entries: Optional[int] = None):
        settings = get_settings()
        self.ttl_seconds = settings.cache_ttl_seconds if ttl_seconds is None else ttl_seconds
        self.max_entries = settings.cache_max_entries if max_entries is None else max_entries
        redis_url = redis_url or settings.redis_url

        self.redis = None
        if redis_url:
            try:
                self.redis = redis.from_url(redis_url, decode_responses=True)
                self.redis.ping()
                logger.info("Connected to Redis for aggregation cache")
            except (redis.RedisError, ValueError) as e:
                logger.warning(f"Redis not available, using in-memory cache: {e}")
                self.redis = None

        self._memory_cache: "OrderedDict[str, Tuple[float, str]]" = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    @property
    def backend(self) -> str:
        return "redis" if self.redis else "memory"

    def set_ttl(self, ttl_seconds: int) -> None:
        if ttl_seconds < 0:
            raise ConfigurationError("ttl_seconds must be >= 0")
        self.ttl_seconds = ttl_seconds

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        if self.ttl_seconds <= 0:
            return None

        raw = None
        if self.redis:
            try:
                raw = self.redis.get(key)
            except redis.RedisError as e:
                logger.warning(f"Redis get failed for {key}: {e}")
        else:
            with self._lock:
                entry = self._memory_cache.get(key)
                if entry is not None:
                    expires_at, raw = entry
                    if expires_at <= time.monotonic():
                        del self._memory_cache[key]
                        raw = None
                    else:
                        self._memory_cache.move_to_end(key)

        if raw is None:
            self.misses += 1
            return None
        self.hits += 1
        return json.loads(raw)

    def set(self, key: str, payload: Dict[str, Any]) -> None:
        if self.ttl_seconds <= 0:
            return
        raw = json.dumps(payload, default=str)
        if self.redis:
            try:
                self.redis.setex(key, self.ttl_seconds, raw)
            except redis.RedisError as e:
                logger.warning(f"Redis set failed for {key}: {e}")
            return

        with self._lock:
            self._memory_cache[key] = (time.monotonic() + self.ttl_seconds, raw)
            self._memory_cache.move_to_end(key)
            while len(self._memory_cache) > self.max_entries:
                self._memory_cache.popitem(last=False)

    def clear(self) -> None:
        if self.redis:
            try:
                for key in self.redis.scan_iter(match=f"{KEY_PREFIX}*"):
                    self.redis.delete(key)
            except redis.RedisError as e:
                logger.warning(f"Redis clear failed: {e}")
        with self._lock:
            self._memory_cache.clear()

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            size = len(self._memory_cache)
        return {
            'backend': self.backend,
            'ttl_seconds': self.ttl_seconds,
            'size': size,
            'hits': self.hits,
            'misses': self.misses,
        }
