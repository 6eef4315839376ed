# src/freight_rating/rules/rating_engine.py
from __future__ import annotations

import logging
from dataclasses import replace
from datetime import date
from typing import Any, Dict, Iterable, Mapping, Optional

from ..cache import CacheRegistry, Lane
from ..errors import NotFound
from ..models import CarrierRateConfig, RatingBreak, RatingBreakSet, Tariff
from .breaks import BreakEvaluation, RateCell, evaluate
from .freight_class import FreightClassResolution, FreightClassResolver
from .ltl_tariff import LTLRateResult, LTLTariffCalculator
from .regions import canonicalize_postal
from .shipment import ShipmentMetrics
from .strategies import NormalizedRateResult, RateFormat, calculate_normalized
from .zones import ZoneResolution, ZoneResolver

logger = logging.getLogger(__name__)

__all__ = ["RatingEngine"]


def _config_snapshot(row: CarrierRateConfig) -> Dict[str, Any]:
    # Plain dict so cached configs outlive the session that loaded them
    return {
        "id": row.id,
        "carrier_id": row.carrier_id,
        "carrier_name": row.carrier_name,
        "config_name": row.config_name,
        "format": row.format,
        "currency": row.currency,
        "terminal_mapping": list(row.terminal_mapping or []),
        "terminal_rates": list(row.terminal_rates or []),
        "skid_rates": list(row.skid_rates or []),
        "enabled": row.enabled,
    }


def _lane_region(end) -> str:
    return canonicalize_postal(end.postal_code) if end.postal_code else f"{end.city},{end.province}"


class RatingEngine:
    """Front door for zone and rate lookups; memoizes through the injected caches."""

    def __init__(self, store, caches: CacheRegistry, default_currency: str = "CAD"):
        self.store = store
        self.caches = caches
        self.default_currency = default_currency
        self.zones = ZoneResolver(store)
        self.classes = FreightClassResolver(store)
        self.ltl = LTLTariffCalculator(store, self.classes, default_currency)

    # ------------- zones -------------

    def resolve_zone(
        self,
        carrier_id: str,
        origin_postal: str,
        dest_postal: str,
        ship_date: Optional[date] = None,
        service_id: Optional[str] = None,
    ) -> ZoneResolution:
        key = self.caches.zone.generate_key(
            carrier_id, service_id, canonicalize_postal(origin_postal), canonicalize_postal(dest_postal), ship_date
        )
        hit = self.caches.zone.get(key)
        if hit is not None:
            return hit.as_cached()
        resolution = self.zones.resolve_zone(carrier_id, origin_postal, dest_postal, ship_date, service_id)
        self.caches.zone.set(key, resolution)
        return resolution

    def prewarm_zones(self, lanes: Iterable[Lane]) -> int:
        return self.caches.zone.prewarm(
            lanes,
            lambda lane: self.zones.resolve_zone(
                lane.carrier_id,
                lane.origin_region_id,
                lane.dest_region_id,
                lane.ship_date if isinstance(lane.ship_date, date) else None,
                lane.service_id,
            ),
        )

    # ------------- normalized carrier configs -------------

    def load_config(self, carrier_id: str) -> Dict[str, Any]:
        key = f"config|{carrier_id}"
        hit = self.caches.carrier_config.get(key)
        if hit is not None:
            return hit
        row = self.store.first(CarrierRateConfig, {"carrier_id": carrier_id, "enabled": True})
        if row is None:
            raise NotFound(f"no rate configuration for carrier {carrier_id}")
        config = _config_snapshot(row)
        self.caches.carrier_config.set(key, config)
        return config

    def calculate_rate(
        self,
        carrier_id: str,
        shipment: ShipmentMetrics | Mapping[str, Any],
        config: Optional[Mapping[str, Any]] = None,
        rate_format: Optional[RateFormat | str] = None,
    ) -> NormalizedRateResult:
        metrics = shipment if isinstance(shipment, ShipmentMetrics) else ShipmentMetrics.from_payload(shipment)
        # Only stored configs are cached; an inline config can change under the same id
        stored = config is None
        if stored:
            config = self.load_config(carrier_id)
        config = {**config, "carrier_id": config.get("carrier_id") or carrier_id}
        fmt = RateFormat.parse(rate_format or config.get("format"))

        key = None
        if stored and config.get("id"):
            key = self.caches.rate.generate_key(
                carrier_id,
                metrics.service_id,
                _lane_region(metrics.origin),
                _lane_region(metrics.destination),
                metrics.ship_date,
                {"config": config["id"], "format": fmt.value, "shipment": metrics.shipment_hash()},
            )
            hit = self.caches.rate.get(key)
            if hit is not None:
                return replace(hit, cached=True)
        result = calculate_normalized(config, metrics, fmt, self.default_currency)
        if key is not None:
            self.caches.rate.set(key, result)
        return result

    # ------------- NMFC tariffs -------------

    def calculate_ltl(
        self,
        tariff_id: str,
        shipment: ShipmentMetrics | Mapping[str, Any],
        customer_id: Optional[str] = None,
        ship_date: Optional[date] = None,
    ) -> LTLRateResult:
        metrics = shipment if isinstance(shipment, ShipmentMetrics) else ShipmentMetrics.from_payload(shipment)
        return self.ltl.calculate(tariff_id, metrics, customer_id, ship_date)

    def resolve_freight_class(
        self,
        shipment: ShipmentMetrics | Mapping[str, Any],
        tariff_id: Optional[str] = None,
        customer_id: Optional[str] = None,
    ) -> FreightClassResolution:
        metrics = shipment if isinstance(shipment, ShipmentMetrics) else ShipmentMetrics.from_payload(shipment)
        tariff = None
        if tariff_id:
            tariff = self.store.get(Tariff, tariff_id)
            if tariff is None:
                raise NotFound(f"tariff {tariff_id} not found")
        return self.classes.resolve(metrics, tariff, customer_id, metrics.ship_date)

    # ------------- break sets -------------

    def evaluate_break_set(
        self, break_set_id: str, metric_value: Any, rate_matrix: Mapping[str, RateCell]
    ) -> BreakEvaluation:
        break_set = self.store.get(RatingBreakSet, break_set_id)
        if break_set is None or not break_set.enabled:
            raise NotFound(f"break set {break_set_id} not found")
        breaks = self.store.query(RatingBreak, {"break_set_id": break_set_id}, order_by="seq")
        return evaluate(metric_value, break_set, breaks, rate_matrix)
