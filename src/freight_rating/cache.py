# src/freight_rating/cache.py
"""In-process LRU + TTL caches for zone resolutions, rates and carrier configs.

Each instance is local to the process that built it. Replicas behind a load
balancer warm up and report statistics independently.
"""
from __future__ import annotations

import json
import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Callable, Dict, Iterable, Optional, Tuple

from .errors import RatingError, InvalidArgument

logger = logging.getLogger(__name__)

__all__ = ["Lane", "EnterpriseCache", "CacheRegistry"]


@dataclass
class Lane:
    carrier_id: str
    origin_region_id: str
    dest_region_id: str
    service_id: Optional[str] = None
    ship_date: Optional[date | str] = None
    extra: Dict[str, Any] = field(default_factory=dict)


def _month_bucket(ship_date: Optional[date | datetime | str]) -> str:
    if ship_date is None:
        ship_date = date.today()
    if isinstance(ship_date, (date, datetime)):
        return ship_date.strftime("%Y-%m")
    return str(ship_date)[:7]


def _json_size(value: Any) -> int:
    if hasattr(value, "to_dict"):
        value = value.to_dict()
    return len(json.dumps(value, default=str))


class EnterpriseCache:
    """LRU cache with a per-entry TTL.

    ``clock`` returns seconds and defaults to ``time.monotonic``; tests pass a
    fake to move time forward. The lock only covers single dict operations,
    never the computation of a value, so concurrent misses on one key both
    compute and the last ``set`` wins.
    """

    def __init__(
        self,
        name: str,
        max_size: int = 10000,
        ttl_minutes: float = 60,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.name = name
        self.max_size = max_size
        self.ttl_seconds = ttl_minutes * 60
        self._clock = clock
        self._entries: "OrderedDict[str, Tuple[Any, float]]" = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0
        self.evictions = 0
        self.sets = 0

    @staticmethod
    def generate_key(
        carrier_id: str,
        service_id: Optional[str],
        origin_region_id: str,
        dest_region_id: str,
        ship_date: Optional[date | str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> str:
        key = f"{carrier_id}|{service_id or 'null'}|{origin_region_id}|{dest_region_id}|{_month_bucket(ship_date)}"
        if extra:
            key += "|" + json.dumps(extra, sort_keys=True, default=str)
        return key

    def _expired(self, stored_at: float, now: float) -> bool:
        return now - stored_at > self.ttl_seconds

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            item = self._entries.get(key)
            if item is None:
                self.misses += 1
                return None
            value, stored_at = item
            if self._expired(stored_at, self._clock()):
                del self._entries[key]
                self.misses += 1
                return None
            self._entries.move_to_end(key)
            self.hits += 1
        logger.debug("%s cache hit %s", self.name, key)
        return value

    def contains(self, key: str) -> bool:
        """Live-entry check that leaves counters and recency alone."""
        with self._lock:
            item = self._entries.get(key)
            return item is not None and not self._expired(item[1], self._clock())

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._entries.pop(key, None)
            while len(self._entries) >= self.max_size:
                evicted, _ = self._entries.popitem(last=False)
                self.evictions += 1
                logger.debug("%s cache evicted %s", self.name, evicted)
            self._entries[key] = (value, self._clock())
            self.sets += 1

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def cleanup(self) -> int:
        with self._lock:
            now = self._clock()
            stale = [k for k, (_, stored_at) in self._entries.items() if self._expired(stored_at, now)]
            for k in stale:
                del self._entries[k]
        if stale:
            logger.info("%s cache cleanup removed %d expired entries", self.name, len(stale))
        return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self.hits = self.misses = self.evictions = self.sets = 0

    def prewarm(self, lanes: Iterable[Lane], compute: Callable[[Lane], Any]) -> int:
        """Fill missing lanes with ``compute(lane)``. Failing lanes are logged and skipped."""
        warmed = 0
        for lane in lanes:
            key = self.generate_key(
                lane.carrier_id,
                lane.service_id,
                lane.origin_region_id,
                lane.dest_region_id,
                lane.ship_date,
                lane.extra,
            )
            if self.contains(key):
                continue
            try:
                value = compute(lane)
            except RatingError as exc:
                logger.warning(
                    "Failed to prewarm lane %s|%s->%s: %s",
                    lane.carrier_id, lane.origin_region_id, lane.dest_region_id, exc.message,
                )
                continue
            if value is not None:
                self.set(key, value)
                warmed += 1
        logger.info("%s cache prewarmed %d lanes", self.name, warmed)
        return warmed

    def estimate_memory_kb(self) -> int:
        with self._lock:
            items = list(self._entries.items())
        total = 0
        for key, (value, _) in items:
            total += len(key) * 2 + _json_size(value) * 2 + 32
        return round(total / 1024)

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            hits, misses, evictions, sets = self.hits, self.misses, self.evictions, self.sets
            size = len(self._entries)
        lookups = hits + misses
        hit_rate = (hits / lookups * 100) if lookups else 0.0
        return {
            "name": self.name,
            "hits": hits,
            "misses": misses,
            "evictions": evictions,
            "sets": sets,
            "hit_rate": f"{hit_rate:.2f}%",
            "size": size,
            "max_size": self.max_size,
            "memory_kb": self.estimate_memory_kb(),
        }

    def __len__(self) -> int:
        return len(self._entries)


class CacheRegistry:
    """The three cache domains the rating engine uses, built once per process."""

    DOMAINS = ("zone", "rate", "carrier_config")

    def __init__(self, zone: EnterpriseCache, rate: EnterpriseCache, carrier_config: EnterpriseCache):
        self.zone = zone
        self.rate = rate
        self.carrier_config = carrier_config

    @classmethod
    def from_settings(cls, settings, clock: Callable[[], float] = time.monotonic) -> "CacheRegistry":
        return cls(
            zone=EnterpriseCache("zone", settings.zone_cache_max_size, settings.zone_cache_ttl_minutes, clock),
            rate=EnterpriseCache("rate", settings.rate_cache_max_size, settings.rate_cache_ttl_minutes, clock),
            carrier_config=EnterpriseCache(
                "carrier_config",
                settings.carrier_config_cache_max_size,
                settings.carrier_config_cache_ttl_minutes,
                clock,
            ),
        )

    def domain(self, name: str) -> EnterpriseCache:
        if name not in self.DOMAINS:
            raise InvalidArgument(f"unknown cache type {name!r}; expected one of {list(self.DOMAINS)}")
        return getattr(self, name)

    def stats(self) -> Dict[str, Any]:
        per_domain = {name: self.domain(name).stats() for name in self.DOMAINS}
        hits = sum(s["hits"] for s in per_domain.values())
        misses = sum(s["misses"] for s in per_domain.values())
        return {
            **per_domain,
            "overall": {
                "total_hits": hits,
                "total_misses": misses,
                "overall_hit_rate": f"{(hits / (hits + misses) * 100) if hits + misses else 0.0:.2f}%",
                "total_memory_kb": sum(s["memory_kb"] for s in per_domain.values()),
            },
        }

    def cleanup(self, cache_type: str = "all") -> Dict[str, int]:
        names = self.DOMAINS if cache_type == "all" else (cache_type,)
        return {name: self.domain(name).cleanup() for name in names}
