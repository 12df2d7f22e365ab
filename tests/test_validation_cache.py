"""Validation Cache & History Store Unit Tests
============================================

Tests for ValidationCache, market_fingerprint and JsonHistoryStore.

Author: SURIOTA Team
"""
import json
import pytest
from datetime import datetime, timedelta, timezone

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.data.history_store import HistoryPersistenceError, JsonHistoryStore
from src.data.models import IndicatorSnapshot
from src.data.validation_cache import ValidationCache, market_fingerprint


def make_indicators(rsi: float = 62.0, volume_ratio: float = 1.3) -> IndicatorSnapshot:
    return IndicatorSnapshot(
        rsi=rsi,
        adx=28.0,
        volume_ratio=volume_ratio,
        momentum_1h=0.005,
        momentum_4h=0.01,
        recent_high=52000.0,
        recent_low=48000.0,
        long_ema=45000.0,
    )


class FakeClock:
    def __init__(self):
        self.now = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, minutes: float):
        self.now += timedelta(minutes=minutes)


class TestFingerprint:
    """Tests for market_fingerprint"""

    def test_buckets(self):
        """Price per 100, RSI per 5, volume ratio per 0.5"""
        key = market_fingerprint("BTC/USD", 50123.45, make_indicators(rsi=62.0, volume_ratio=1.3))
        assert key == "BTC/USD:50100:12:2"

    def test_same_bucket_same_key(self):
        """Small moves inside a bucket share a key"""
        a = market_fingerprint("BTC/USD", 50101, make_indicators(rsi=60.1, volume_ratio=1.0))
        b = market_fingerprint("BTC/USD", 50199, make_indicators(rsi=64.9, volume_ratio=1.49))
        assert a == b

    def test_bucket_edges(self):
        """Crossing a bucket edge changes the key"""
        base = market_fingerprint("BTC/USD", 50100, make_indicators())
        assert market_fingerprint("BTC/USD", 50200, make_indicators()) != base
        assert market_fingerprint("BTC/USD", 50100, make_indicators(rsi=65.0)) != base
        assert market_fingerprint("BTC/USD", 50100, make_indicators(volume_ratio=1.5)) != base
        assert market_fingerprint("ETH/USD", 50100, make_indicators()) != base


class TestValidationCache:
    """Tests for ValidationCache"""

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def cache(self, clock):
        return ValidationCache(ttl_minutes=15, clock=clock)

    def test_hit_within_ttl(self, cache, clock):
        """Value served until the TTL runs out"""
        cache.put("k", "ENTER")
        clock.advance(14)
        assert cache.get("k") == "ENTER"
        assert cache.hits == 1

    def test_expired_entry_evicted_on_read(self, cache, clock):
        """Expired entries disappear when read"""
        cache.put("k", "ENTER")
        clock.advance(15)
        assert cache.get("k") is None
        assert len(cache) == 0
        assert cache.misses == 1

    def test_missing_key(self, cache):
        assert cache.get("nope") is None
        assert cache.get_stats()["misses"] == 1

    def test_put_refreshes_expiry(self, cache, clock):
        """Re-putting a key restarts its TTL"""
        cache.put("k", 1)
        clock.advance(10)
        cache.put("k", 2)
        clock.advance(10)
        assert cache.get("k") == 2

    def test_purge_expired(self, cache, clock):
        """purge_expired removes only stale entries"""
        cache.put("old", 1)
        clock.advance(10)
        cache.put("new", 2)
        clock.advance(6)
        assert cache.purge_expired() == 1
        assert len(cache) == 1
        assert cache.get("new") == 2

    def test_put_drops_stale_keys(self, cache, clock):
        """Keys never read again do not pile up as the price moves"""
        indicators = make_indicators()
        for i in range(1000):
            cache.put(market_fingerprint("BTC/USD", 50000 + i * 100, indicators), "ENTER")
            clock.advance(1)

        assert len(cache) <= 16
        assert len(cache._cache_expiry) == len(cache)

    def test_stats(self, cache):
        """Hit rate over all lookups"""
        cache.put("a", 1)
        cache.get("a")
        cache.get("b")
        stats = cache.get_stats()
        assert stats["entries"] == 1
        assert stats["hit_rate"] == pytest.approx(0.5)
        assert stats["ttl_minutes"] == pytest.approx(15)

    def test_clear(self, cache):
        cache.put("a", 1)
        cache.clear()
        assert len(cache) == 0


class TestJsonHistoryStore:
    """Tests for JsonHistoryStore"""

    def test_missing_file_is_empty(self, tmp_path):
        assert JsonHistoryStore(tmp_path).load() == []

    def test_save_and_load(self, tmp_path):
        """Records round-trip through the file"""
        store = JsonHistoryStore(tmp_path / "nested")
        store.save([{"instrument": "BTC/USD", "profit": 12.5}])

        assert store.load() == [{"instrument": "BTC/USD", "profit": 12.5}]
        assert not store.path.with_suffix(".json.tmp").exists()

    def test_corrupt_file_raises(self, tmp_path):
        """Unparseable JSON is a persistence error and is set aside"""
        (tmp_path / "positions.json").write_text("{broken")
        with pytest.raises(HistoryPersistenceError):
            JsonHistoryStore(tmp_path).load()

        assert not (tmp_path / "positions.json").exists()
        aside = list(tmp_path.glob("positions.json.corrupt-*"))
        assert len(aside) == 1
        assert aside[0].read_text() == "{broken"

    def test_wrong_layout_raises(self, tmp_path):
        """Top-level list is not a valid layout"""
        (tmp_path / "positions.json").write_text(json.dumps([1, 2, 3]))
        with pytest.raises(HistoryPersistenceError):
            JsonHistoryStore(tmp_path).load()
        assert len(list(tmp_path.glob("positions.json.corrupt-*"))) == 1

    def test_quarantine_copy_keeps_original(self, tmp_path):
        """Copy mode leaves the live file in place"""
        store = JsonHistoryStore(tmp_path)
        store.save([{"instrument": "BTC/USD"}])

        target = store.quarantine(keep_original=True)

        assert store.path.exists()
        assert target.name.startswith("positions.json.corrupt-")
        assert json.loads(target.read_text())["closed"] == [{"instrument": "BTC/USD"}]

    def test_quarantine_missing_file_raises(self, tmp_path):
        with pytest.raises(HistoryPersistenceError):
            JsonHistoryStore(tmp_path).quarantine()

    def test_unserializable_raises(self, tmp_path):
        """Non-JSON values are a persistence error"""
        with pytest.raises(HistoryPersistenceError):
            JsonHistoryStore(tmp_path).save([{"bad": object()}])
