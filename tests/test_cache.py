from __future__ import annotations

import threading
from datetime import date
from types import SimpleNamespace

import pytest

from freight_rating.cache import CacheRegistry, EnterpriseCache, Lane
from freight_rating.errors import InvalidArgument, NotFound


def test_generate_key_uses_month_bucket_and_null_service():
    key = EnterpriseCache.generate_key("X", None, "M5V", "V6B", date(2024, 3, 15))
    assert key == "X|null|M5V|V6B|2024-03"
    assert EnterpriseCache.generate_key("X", "EXP", "M5V", "V6B", "2024-03-31") == "X|EXP|M5V|V6B|2024-03"


def test_generate_key_appends_sorted_extra():
    a = EnterpriseCache.generate_key("X", None, "A", "B", "2024-01-01", {"b": 1, "a": 2})
    b = EnterpriseCache.generate_key("X", None, "A", "B", "2024-01-01", {"a": 2, "b": 1})
    assert a == b
    assert a.endswith('|{"a": 2, "b": 1}')


def test_entries_expire_after_ttl(clock):
    cache = EnterpriseCache("zone", max_size=10, ttl_minutes=1, clock=clock)
    cache.set("k", "v")

    clock.advance(59)
    assert cache.get("k") == "v"
    clock.advance(2)
    assert cache.get("k") is None
    assert len(cache) == 0


def test_least_recently_used_is_evicted(clock):
    cache = EnterpriseCache("rate", max_size=2, ttl_minutes=60, clock=clock)
    cache.set("A", 1)
    cache.set("B", 2)
    cache.get("A")
    cache.set("C", 3)

    assert cache.get("B") is None
    assert cache.get("A") == 1
    assert cache.get("C") == 3
    assert cache.evictions == 1


def test_overwriting_a_key_does_not_evict(clock):
    cache = EnterpriseCache("rate", max_size=2, clock=clock)
    cache.set("A", 1)
    cache.set("B", 2)
    cache.set("A", 10)

    assert len(cache) == 2
    assert cache.evictions == 0
    assert cache.get("A") == 10


def test_stats_hit_rate(clock):
    cache = EnterpriseCache("zone", clock=clock)
    cache.set("k", {"zone": "Z1"})
    cache.get("k")
    cache.get("k")
    cache.get("k")
    cache.get("missing")

    stats = cache.stats()
    assert stats["hits"] == 3
    assert stats["misses"] == 1
    assert stats["hit_rate"] == "75.00%"
    assert stats["size"] == 1


def test_stats_waits_for_writers(clock):
    cache = EnterpriseCache("zone", clock=clock)
    cache.set("k", 1)
    out = {}

    with cache._lock:
        reader = threading.Thread(target=lambda: out.update(cache.stats()))
        reader.start()
        reader.join(timeout=0.2)
        assert reader.is_alive()
    reader.join(timeout=5)

    assert out["sets"] == 1
    assert out["size"] == 1


def test_empty_cache_hit_rate_is_zero():
    assert EnterpriseCache("zone").stats()["hit_rate"] == "0.00%"


def test_cleanup_removes_only_expired(clock):
    cache = EnterpriseCache("zone", ttl_minutes=1, clock=clock)
    cache.set("old", 1)
    clock.advance(45)
    cache.set("new", 2)
    clock.advance(30)

    assert cache.cleanup() == 1
    assert cache.contains("new")
    assert not cache.contains("old")


def test_memory_estimate_grows_with_entries(clock):
    cache = EnterpriseCache("zone", clock=clock)
    assert cache.estimate_memory_kb() == 0
    for i in range(200):
        cache.set(f"carrier|null|R{i}|R{i + 1}|2024-01", {"zone_code": "Z1", "source": "base_zone_set"})
    assert cache.estimate_memory_kb() > 0


def test_prewarm_skips_cached_and_failing_lanes(clock):
    cache = EnterpriseCache("zone", clock=clock)
    lanes = [
        Lane("X", "M5V", "V6B", ship_date="2024-03-01"),
        Lane("X", "M5V", "H2X", ship_date="2024-03-01"),
        Lane("X", "K1A", "V6B", ship_date="2024-03-01"),
    ]
    cache.set(EnterpriseCache.generate_key("X", None, "K1A", "V6B", "2024-03-01"), "Z2")

    def compute(lane):
        if lane.dest_region_id == "H2X":
            raise NotFound("no zone mapping for route")
        return "Z1"

    assert cache.prewarm(lanes, compute) == 1
    assert len(cache) == 2
    # prewarm leaves lookup statistics untouched
    assert (cache.hits, cache.misses) == (0, 0)


def test_invalid_max_size():
    with pytest.raises(ValueError):
        EnterpriseCache("zone", max_size=0)


# ------------- registry -------------

def _settings(**overrides):
    values = dict(
        zone_cache_max_size=10,
        zone_cache_ttl_minutes=60,
        rate_cache_max_size=10,
        rate_cache_ttl_minutes=1,
        carrier_config_cache_max_size=10,
        carrier_config_cache_ttl_minutes=60,
    )
    values.update(overrides)
    return SimpleNamespace(**values)


def test_registry_stats_include_overall(clock):
    caches = CacheRegistry.from_settings(_settings(), clock)
    caches.zone.set("a", 1)
    caches.zone.get("a")
    caches.rate.get("b")

    stats = caches.stats()
    assert set(stats) == {"zone", "rate", "carrier_config", "overall"}
    assert stats["overall"]["total_hits"] == 1
    assert stats["overall"]["total_misses"] == 1
    assert stats["overall"]["overall_hit_rate"] == "50.00%"


def test_registry_cleanup_single_domain(clock):
    caches = CacheRegistry.from_settings(_settings(), clock)
    caches.rate.set("r", 1)
    caches.zone.set("z", 1)
    clock.advance(120)

    assert caches.cleanup("rate") == {"rate": 1}
    assert caches.cleanup() == {"zone": 0, "rate": 0, "carrier_config": 0}


def test_registry_rejects_unknown_domain(clock):
    caches = CacheRegistry.from_settings(_settings(), clock)
    with pytest.raises(InvalidArgument):
        caches.cleanup("tariff")
