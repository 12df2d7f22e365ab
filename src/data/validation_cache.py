"""Validation Response Cache
===========================

TTL cache for external validation decisions. Keys are a coarse market
fingerprint so near-identical conditions reuse one answer:
- price bucket:        floor(price / 100) * 100
- RSI bucket:          floor(rsi / 5)
- volume ratio bucket: floor(volume_ratio / 0.5)

Expired entries are evicted lazily: on read of the same key, and in bulk
whenever a new answer is stored, so keys that are never read again
(a moving price bucket) do not accumulate.

Author: SURIOTA Team
"""
import math
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

from src.data.models import IndicatorSnapshot
from src.utils.logger import get_logger

log = get_logger("cache")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def market_fingerprint(instrument: str, price: float, indicators: IndicatorSnapshot) -> str:
    """Coarse cache key for a market state"""
    price_bucket = math.floor(price / 100) * 100
    rsi_bucket = math.floor(indicators.rsi / 5)
    volume_bucket = math.floor(indicators.volume_ratio / 0.5)
    return f"{instrument}:{price_bucket}:{rsi_bucket}:{volume_bucket}"


class ValidationCache:
    """Fingerprint keyed TTL cache"""

    def __init__(
        self,
        ttl_minutes: float = 15.0,
        clock: Callable[[], datetime] = _utcnow
    ):
        self.ttl = timedelta(minutes=ttl_minutes)
        self._clock = clock
        self._cache: Dict[str, Any] = {}
        self._cache_expiry: Dict[str, datetime] = {}
        self.hits = 0
        self.misses = 0

    def get(self, key: str) -> Optional[Any]:
        """Cached value, or None when missing or expired"""
        now = self._clock()
        if key in self._cache:
            if self._cache_expiry[key] > now:
                self.hits += 1
                log.debug(f"Validation cache hit: {key}")
                return self._cache[key]
            del self._cache[key]
            del self._cache_expiry[key]

        self.misses += 1
        return None

    def put(self, key: str, value: Any):
        """Store a value and drop every entry that has already expired"""
        self.purge_expired()
        self._cache[key] = value
        self._cache_expiry[key] = self._clock() + self.ttl

    def purge_expired(self) -> int:
        """Drop every expired entry, returning how many were removed"""
        now = self._clock()
        expired = [key for key, expiry in self._cache_expiry.items() if expiry <= now]
        for key in expired:
            del self._cache[key]
            del self._cache_expiry[key]
        return len(expired)

    def clear(self):
        self._cache.clear()
        self._cache_expiry.clear()

    def __len__(self) -> int:
        return len(self._cache)

    def get_stats(self) -> Dict:
        total = self.hits + self.misses
        return {
            "entries": len(self._cache),
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": self.hits / total if total > 0 else 0.0,
            "ttl_minutes": self.ttl.total_seconds() / 60,
        }
