# src/freight_rating/rules/shipment.py
from __future__ import annotations

import hashlib
import json
import math
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Dict, List, Mapping, Optional

from ..errors import InvalidArgument

__all__ = ["normalize_city", "normalize_province", "RouteEnd", "ShipmentMetrics"]

KG_TO_LB = Decimal("2.20462")
CUBIC_INCHES_PER_FT3 = Decimal("1728")
CUBIC_CM_PER_FT3 = Decimal("28316.8466")

# Standard skid footprint: 48" x 48" (imperial) or 121.92 x 121.92 cm (metric)
SKID_SIDE = {"imperial": Decimal("48"), "metric": Decimal("121.92")}


def _round2(x: Decimal) -> Decimal:
    return x.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def _num(value: Any, label: str) -> Decimal:
    if value in (None, ""):
        return Decimal("0")
    try:
        out = Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise InvalidArgument(f"{label} must be numeric, got {value!r}") from exc
    if out < 0:
        raise InvalidArgument(f"{label} must not be negative")
    return out


def normalize_city(city: Optional[str]) -> str:
    if not city:
        return ""
    return "".join(ch for ch in city.strip().upper() if ch.isalnum() or ch.isspace())


def normalize_province(province: Optional[str]) -> str:
    return (province or "").strip().upper()


@dataclass
class RouteEnd:
    city: str = ""
    province: str = ""
    postal_code: Optional[str] = None
    country: Optional[str] = None

    @classmethod
    def from_payload(cls, data: Optional[Mapping[str, Any]], label: str) -> "RouteEnd":
        if not data:
            raise InvalidArgument(f"{label} is required")
        end = cls(
            city=normalize_city(data.get("city")),
            province=normalize_province(data.get("province") or data.get("state")),
            postal_code=(data.get("postal_code") or None),
            country=(data.get("country") or None),
        )
        if not end.postal_code and not end.city:
            raise InvalidArgument(f"{label} needs a postal_code or a city")
        return end

    def to_dict(self) -> Dict[str, Any]:
        return {
            "city": self.city,
            "province": self.province,
            "postal_code": self.postal_code,
            "country": self.country,
        }


@dataclass
class ShipmentMetrics:
    """Totals derived from a shipment's package list, in the units rating needs."""

    origin: RouteEnd
    destination: RouteEnd
    unit_system: str = "imperial"
    total_weight: Decimal = Decimal("0")   # in the shipment's own unit
    weight_lbs: Decimal = Decimal("0")
    total_volume: Decimal = Decimal("0")   # in3 or cm3
    cube_ft3: Decimal = Decimal("0")
    total_pieces: int = 0
    package_count: int = 0
    skid_equivalents: int = 0
    nmfc_class: Optional[str] = None
    customer_id: Optional[str] = None
    service_id: Optional[str] = None
    shipment_type: Optional[str] = None
    ship_date: Optional[date] = None
    accessorial_services: List[str] = field(default_factory=list)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "ShipmentMetrics":
        unit_system = (payload.get("unit_system") or "imperial").lower()
        if unit_system not in SKID_SIDE:
            raise InvalidArgument(f"unit_system must be 'imperial' or 'metric', got {unit_system!r}")
        origin = RouteEnd.from_payload(payload.get("origin"), "origin")
        destination = RouteEnd.from_payload(payload.get("destination"), "destination")

        side = SKID_SIDE[unit_system]
        weight = volume = footprint = Decimal("0")
        pieces = 0
        packages = payload.get("packages") or []
        for idx, pkg in enumerate(packages, start=1):
            qty = pkg.get("quantity")
            try:
                qty = 1 if qty in (None, "") else int(qty)
            except (TypeError, ValueError) as exc:
                raise InvalidArgument(f"package {idx}: quantity must be an integer") from exc
            if qty < 1:
                raise InvalidArgument(f"package {idx}: quantity must be at least 1")
            length = _num(pkg.get("length"), f"package {idx} length")
            width = _num(pkg.get("width"), f"package {idx} width")
            height = _num(pkg.get("height"), f"package {idx} height")
            weight += _num(pkg.get("weight"), f"package {idx} weight") * qty
            volume += length * width * height * qty
            # Missing footprint dimensions count as a full skid
            footprint += (length or side) * (width or side) * qty
            pieces += qty

        if weight <= 0:
            raise InvalidArgument("shipment weight must be greater than zero")

        if unit_system == "metric":
            weight_lbs = weight * KG_TO_LB
            cube = volume / CUBIC_CM_PER_FT3
        else:
            weight_lbs = weight
            cube = volume / CUBIC_INCHES_PER_FT3

        ship_date = payload.get("ship_date")
        if isinstance(ship_date, str):
            try:
                ship_date = date.fromisoformat(ship_date[:10])
            except ValueError as exc:
                raise InvalidArgument(f"ship_date must be ISO formatted, got {ship_date!r}") from exc

        return cls(
            origin=origin,
            destination=destination,
            unit_system=unit_system,
            total_weight=_round2(weight),
            weight_lbs=_round2(weight_lbs),
            total_volume=_round2(volume),
            cube_ft3=_round2(cube),
            total_pieces=pieces,
            package_count=len(packages),
            skid_equivalents=math.ceil(footprint / (side * side)) if packages else 0,
            nmfc_class=(str(payload["nmfc_class"]) if payload.get("nmfc_class") else None),
            customer_id=payload.get("customer_id"),
            service_id=payload.get("service_id"),
            shipment_type=payload.get("shipment_type"),
            ship_date=ship_date,
            accessorial_services=list(payload.get("accessorial_services") or []),
        )

    def shipment_hash(self) -> str:
        """Short digest of the fields that change a rate on an unchanged lane."""
        blob = json.dumps(
            {
                "weight": str(self.weight_lbs),
                "pieces": self.total_pieces,
                "cube": str(self.cube_ft3),
                "skids": self.skid_equivalents,
                "class": self.nmfc_class,
                "type": self.shipment_type or "freight",
                "origin": [self.origin.city, self.origin.province],
                "destination": [self.destination.city, self.destination.province],
                "accessorials": sorted(self.accessorial_services),
            },
            sort_keys=True,
        )
        return hashlib.sha1(blob.encode("utf-8")).hexdigest()[:16]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "unit_system": self.unit_system,
            "total_weight": str(self.total_weight),
            "weight_lbs": str(self.weight_lbs),
            "total_volume": str(self.total_volume),
            "cube_ft3": str(self.cube_ft3),
            "total_pieces": self.total_pieces,
            "package_count": self.package_count,
            "skid_equivalents": self.skid_equivalents,
            "nmfc_class": self.nmfc_class,
            "route": {"origin": self.origin.to_dict(), "destination": self.destination.to_dict()},
        }
