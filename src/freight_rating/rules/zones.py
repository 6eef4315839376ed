# src/freight_rating/rules/zones.py
from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import date
from enum import Enum
from typing import Any, Dict, Optional

from ..errors import InvalidArgument, NotFound
from ..models import CarrierZoneBinding, CarrierZoneOverride, ZoneMapping, ZoneSet
from .regions import RegionHierarchy, canonicalize_postal

logger = logging.getLogger(__name__)

__all__ = ["ZoneSource", "ZoneResolution", "ZoneResolver"]


class ZoneSource(str, Enum):
    CARRIER_OVERRIDE = "carrier_override"
    BASE_ZONE_SET = "base_zone_set"
    STATE_TO_STATE = "state_to_state"
    COUNTRY_TO_COUNTRY = "country_to_country"


@dataclass
class ZoneResolution:
    zone_code: str
    source: ZoneSource
    origin_region: str
    dest_region: str
    matched_origin: str
    matched_dest: str
    zone_set_id: Optional[str] = None
    override_id: Optional[int] = None
    override_reason: Optional[str] = None
    cached: bool = False

    def as_cached(self) -> "ZoneResolution":
        return replace(self, cached=True)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "zone_code": self.zone_code,
            "source": self.source.value,
            "origin_region": self.origin_region,
            "dest_region": self.dest_region,
            "matched_origin": self.matched_origin,
            "matched_dest": self.matched_dest,
            "zone_set_id": self.zone_set_id,
            "override_id": self.override_id,
            "override_reason": self.override_reason,
            "cached": self.cached,
        }


class ZoneResolver:
    """Resolves a lane to a price zone.

    Order: carrier override, then the carrier's bound zone set at FSA/ZIP3
    level, then state/province pair, then country pair. The first level
    that matches wins.
    """

    def __init__(self, store, hierarchy: Optional[RegionHierarchy] = None):
        self.store = store
        self.hierarchy = hierarchy or RegionHierarchy(store)

    # ------------- lookups -------------

    def find_override(
        self, carrier_id: str, origin: str, dest: str, service_id: Optional[str] = None
    ) -> Optional[CarrierZoneOverride]:
        """Service-scoped override first, then one that applies to every service.

        Bindings fall back the same way (see ``find_binding``).
        """
        base: Dict[str, Any] = {
            "carrier_id": carrier_id,
            "origin_region_id": origin,
            "dest_region_id": dest,
            "enabled": True,
        }
        if service_id:
            override = self.store.first(
                CarrierZoneOverride, {**base, "service_id": service_id}, order_by="priority", descending=True
            )
            if override is not None:
                return override
        return self.store.first(
            CarrierZoneOverride, {**base, "service_id": None}, order_by="priority", descending=True
        )

    def _effective_binding(self, filters: Dict[str, Any], on: date) -> Optional[CarrierZoneBinding]:
        # Bindings come back by priority; the first whose zone set is live on ``on`` wins
        for binding in self.store.query(CarrierZoneBinding, filters, order_by="priority", descending=True):
            zone_set = self.store.get(ZoneSet, binding.zone_set_id)
            if zone_set is None:
                logger.warning("Binding %s points at missing zone set %s", binding.id, binding.zone_set_id)
                continue
            if zone_set.effective_from and on < zone_set.effective_from:
                continue
            if zone_set.effective_to and on > zone_set.effective_to:
                continue
            return binding
        return None

    def find_binding(
        self, carrier_id: str, service_id: Optional[str] = None, ship_date: Optional[date] = None
    ) -> Optional[CarrierZoneBinding]:
        on = ship_date or date.today()
        base = {"carrier_id": carrier_id, "enabled": True}
        if service_id:
            binding = self._effective_binding({**base, "service_id": service_id}, on)
            if binding is not None:
                return binding
        # Carrier-wide binding covers every service
        return self._effective_binding({**base, "service_id": None}, on)

    def find_mapping(self, zone_set_id: str, origin: str, dest: str) -> Optional[ZoneMapping]:
        return self.store.first(
            ZoneMapping,
            {"zone_set_id": zone_set_id, "origin_region_id": origin, "dest_region_id": dest},
        )

    # ------------- resolution -------------

    def resolve_zone(
        self,
        carrier_id: str,
        origin_postal: str,
        dest_postal: str,
        ship_date: Optional[date] = None,
        service_id: Optional[str] = None,
    ) -> ZoneResolution:
        if not carrier_id:
            raise InvalidArgument("carrier_id is required")
        origin = canonicalize_postal(origin_postal)
        dest = canonicalize_postal(dest_postal)
        if not origin or not dest:
            raise InvalidArgument("origin and destination postal codes are required")

        override = self.find_override(carrier_id, origin, dest, service_id)
        if override is not None:
            logger.info("Zone %s for %s %s->%s from carrier override %s", override.zone_code, carrier_id, origin, dest, override.id)
            return ZoneResolution(
                zone_code=override.zone_code,
                source=ZoneSource.CARRIER_OVERRIDE,
                origin_region=origin,
                dest_region=dest,
                matched_origin=origin,
                matched_dest=dest,
                override_id=override.id,
                override_reason=override.override_reason,
            )

        binding = self.find_binding(carrier_id, service_id, ship_date)
        if binding is None:
            raise NotFound(
                "no zone set binding",
                details={"carrier_id": carrier_id, "service_id": service_id, "ship_date": str(ship_date or date.today())},
            )
        zone_set_id = binding.zone_set_id

        def _hit(mapping: ZoneMapping, source: ZoneSource) -> ZoneResolution:
            logger.info("Zone %s for %s %s->%s from %s (zone set %s)", mapping.zone_code, carrier_id, origin, dest, source.value, zone_set_id)
            return ZoneResolution(
                zone_code=mapping.zone_code,
                source=source,
                origin_region=origin,
                dest_region=dest,
                matched_origin=mapping.origin_region_id,
                matched_dest=mapping.dest_region_id,
                zone_set_id=zone_set_id,
            )

        mapping = self.find_mapping(zone_set_id, origin, dest)
        if mapping is not None:
            return _hit(mapping, ZoneSource.BASE_ZONE_SET)

        o_up = self.hierarchy.ancestry(origin)
        d_up = self.hierarchy.ancestry(dest)
        if o_up.state_province_id and d_up.state_province_id:
            mapping = self.find_mapping(zone_set_id, o_up.state_province_id, d_up.state_province_id)
            if mapping is not None:
                return _hit(mapping, ZoneSource.STATE_TO_STATE)
        if o_up.country_id and d_up.country_id:
            mapping = self.find_mapping(zone_set_id, o_up.country_id, d_up.country_id)
            if mapping is not None:
                return _hit(mapping, ZoneSource.COUNTRY_TO_COUNTRY)

        raise NotFound(
            "no zone mapping for route",
            details={"carrier_id": carrier_id, "origin": origin, "destination": dest, "zone_set_id": zone_set_id},
        )
