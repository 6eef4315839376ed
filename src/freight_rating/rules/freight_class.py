# src/freight_rating/rules/freight_class.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional, Tuple

from ..models import ClassPricingOverride

logger = logging.getLogger(__name__)

__all__ = [
    "StandardClass",
    "STANDARD_CLASSES",
    "DEFAULT_CLASS",
    "density_pcf",
    "density_class",
    "FreightClassResolution",
    "FreightClassResolver",
]


@dataclass(frozen=True)
class StandardClass:
    code: str
    description: str
    density_min: Optional[Decimal]
    density_max: Optional[Decimal]  # exclusive; None = no upper bound


def _d(x: str) -> Decimal:
    return Decimal(x)


# Descending density floors (lb/ft3). Order matters: first floor met wins.
_CLASS_TABLE: List[Tuple[str, str, Optional[str]]] = [
    ("50", "Very dense, high value items", "50"),
    ("55", "Dense, high value items", "35"),
    ("60", "Dense items", "30"),
    ("65", "Moderately dense items", "22.5"),
    ("70", "Average density items", "15"),
    ("77.5", "Slightly below average density", "13.5"),
    ("85", "Below average density", "12"),
    ("92.5", "Low density items", "10.5"),
    ("100", "Standard reference class", "9"),
    ("110", "Light, bulky items", "8"),
    ("125", "Very light, bulky items", "6"),
    ("150", "Extremely light, bulky items", "5"),
    ("175", "Very low density items", "4"),
    ("200", "Low density, fragile items", "3"),
    ("250", "Very low density, high care items", "2"),
    ("300", "Extremely low density items", "1"),
    ("400", "Ultra-low density items", "0.5"),
    ("500", "Lowest density classification", None),
]


def _build_standard_classes() -> Tuple[StandardClass, ...]:
    out: List[StandardClass] = []
    upper: Optional[Decimal] = None
    for code, description, floor in _CLASS_TABLE:
        lower = _d(floor) if floor is not None else Decimal("0")
        out.append(StandardClass(code, description, lower, upper))
        upper = lower
    return tuple(out)


STANDARD_CLASSES: Tuple[StandardClass, ...] = _build_standard_classes()

# Used when no cube is known
DEFAULT_CLASS = "70"


def density_pcf(weight_lbs: Decimal | float | int, cube_ft3: Decimal | float | int) -> Optional[Decimal]:
    cube = Decimal(str(cube_ft3))
    if cube <= 0:
        return None
    return (Decimal(str(weight_lbs)) / cube).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def density_class(weight_lbs: Decimal | float | int, cube_ft3: Decimal | float | int) -> str:
    """Map weight over cube to its NMFC class. Zero cube falls back to class 70."""
    cube = Decimal(str(cube_ft3))
    if cube <= 0:
        return DEFAULT_CLASS
    density = Decimal(str(weight_lbs)) / cube
    for code, _, floor in _CLASS_TABLE:
        if floor is None or density >= _d(floor):
            return code
    return _CLASS_TABLE[-1][0]


@dataclass
class FreightClassResolution:
    actual: str
    price: str
    source: str  # declared | density_calculated | FAK_mapped
    density: Optional[Decimal] = None
    fak_scope: Optional[str] = None  # customer | tariff | global

    def to_dict(self) -> Dict[str, Any]:
        return {
            "actual": self.actual,
            "price": self.price,
            "source": self.source,
            "density": str(self.density) if self.density is not None else None,
            "fak_scope": self.fak_scope,
        }


def _in_window(mapping: ClassPricingOverride, on: date) -> bool:
    if mapping.effective_from and on < mapping.effective_from:
        return False
    if mapping.effective_to and on > mapping.effective_to:
        return False
    return True


class FreightClassResolver:
    def __init__(self, store):
        self.store = store

    def actual_class(self, metrics: Any) -> Tuple[str, str, Optional[Decimal]]:
        declared = getattr(metrics, "nmfc_class", None)
        weight = getattr(metrics, "weight_lbs", 0) or 0
        cube = getattr(metrics, "cube_ft3", 0) or 0
        density = density_pcf(weight, cube)
        if declared:
            return str(declared), "declared", density
        return density_class(weight, cube), "density_calculated", density

    def find_fak(
        self,
        from_class: str,
        tariff_id: Optional[str],
        customer_id: Optional[str],
        on: date,
    ) -> Optional[Tuple[ClassPricingOverride, str]]:
        # One equality query, then scope precedence in memory
        rows = [
            m for m in self.store.query(ClassPricingOverride, {"from_class_code": from_class})
            if _in_window(m, on)
        ]
        if customer_id:
            scoped = [m for m in rows if m.customer_id == customer_id and m.tariff_id in (tariff_id, None)]
            scoped.sort(key=lambda m: 0 if (tariff_id and m.tariff_id == tariff_id) else 1)
            if scoped:
                return scoped[0], "customer"
        if tariff_id:
            for m in rows:
                if m.customer_id is None and m.tariff_id == tariff_id:
                    return m, "tariff"
        for m in rows:
            if m.customer_id is None and m.tariff_id is None:
                return m, "global"
        return None

    def resolve(
        self,
        metrics: Any,
        tariff: Any = None,
        customer_id: Optional[str] = None,
        ship_date: Optional[date] = None,
    ) -> FreightClassResolution:
        actual, source, density = self.actual_class(metrics)
        customer_id = customer_id or getattr(metrics, "customer_id", None)
        on = ship_date or getattr(metrics, "ship_date", None) or date.today()
        tariff_id = getattr(tariff, "id", None)

        hit = self.find_fak(actual, tariff_id, customer_id, on)
        if hit is None:
            logger.info("Freight class %s (%s), no FAK mapping", actual, source)
            return FreightClassResolution(actual=actual, price=actual, source=source, density=density)
        mapping, scope = hit
        logger.info("Freight class %s -> %s via %s FAK mapping", actual, mapping.to_class_code, scope)
        return FreightClassResolution(
            actual=actual,
            price=mapping.to_class_code,
            source="FAK_mapped",
            density=density,
            fak_scope=scope,
        )
