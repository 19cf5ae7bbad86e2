#!/usr/bin/env python3
"""
Bounded TTL cache for prediction responses.

Keys are (session_id, current_page, hour_bucket); the hour bucket is the
request instant truncated to the hour.
"""

import threading
import time
from collections import OrderedDict
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Tuple

from prometheus_client import Counter

from inference.schemas import PredictionResponse

PREDICTION_CACHE_HITS = Counter(
    'prediction_cache_hits_total',
    'Prediction cache hits'
)
PREDICTION_CACHE_MISSES = Counter(
    'prediction_cache_misses_total',
    'Prediction cache misses'
)

CacheKey = Tuple[str, str, str]


def hour_bucket(moment: datetime) -> str:
    return moment.replace(minute=0, second=0, microsecond=0).isoformat()


def cache_key(session_id: str, current_page: str, moment: datetime) -> CacheKey:
    return (session_id, current_page, hour_bucket(moment))


class PredictionCache:
    """Lock-protected bounded map with TTL expiry and oldest-first eviction."""

    def __init__(self, ttl_seconds: float, max_entries: int = 10000,
                 clock: Optional[Callable[[], float]] = None):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self.clock = clock or time.monotonic
        self._entries: "OrderedDict[CacheKey, Tuple[PredictionResponse, float]]" = OrderedDict()
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    def get(self, key: CacheKey) -> Optional[PredictionResponse]:
        now = self.clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None:
                response, expires_at = entry
                if now < expires_at:
                    self._hits += 1
                    PREDICTION_CACHE_HITS.inc()
                    return response
                del self._entries[key]

            self._misses += 1
            PREDICTION_CACHE_MISSES.inc()
            return None

    def put(self, key: CacheKey, response: PredictionResponse) -> None:
        expires_at = self.clock() + self.ttl_seconds
        with self._lock:
            # Re-inserting moves the key to the newest position
            self._entries.pop(key, None)
            self._entries[key] = (response, expires_at)
            self._evict(expires_at - self.ttl_seconds)

    def _evict(self, now: float) -> None:
        # Entries are in expiry order, so only the oldest end needs checking
        while self._entries:
            _, expires_at = next(iter(self._entries.values()))
            if expires_at > now and len(self._entries) <= self.max_entries:
                break
            self._entries.popitem(last=False)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def stats(self) -> Dict[str, Any]:
        """Get cache performance statistics."""
        with self._lock:
            total_requests = self._hits + self._misses
            return {
                "cache_hits": self._hits,
                "cache_misses": self._misses,
                "hit_rate": self._hits / total_requests if total_requests > 0 else 0.0,
                "cache_size": len(self._entries),
            }
