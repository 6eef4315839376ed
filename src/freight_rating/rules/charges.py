# src/freight_rating/rules/charges.py
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Iterable, List, Optional

__all__ = ["ChargeLine", "ChargeSummary", "apply_additional_charges"]


def _money(x: Decimal | int | float | str) -> Decimal:
    if not isinstance(x, Decimal):
        x = Decimal(str(x))
    return x.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


@dataclass
class ChargeLine:
    code: str
    name: str
    amount: Decimal
    details: dict = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "name": self.name, "amount": str(self.amount), "details": self.details}


@dataclass
class ChargeSummary:
    linehaul: Decimal
    fuel_surcharge: Decimal
    accessorials: Decimal
    total_charge: Decimal
    breakdown: List[ChargeLine]


def apply_additional_charges(
    linehaul: Decimal | float | int,
    fuel_surcharge_pct: Optional[Decimal | float | int] = None,
    accessorial_services: Optional[Iterable[str]] = None,
    *,
    linehaul_details: Optional[dict] = None,
) -> ChargeSummary:
    """Layer fuel and accessorials over a linehaul charge.

    Accessorials have no rate schedule yet and always price at zero; the
    requested services are echoed in the line details.
    """
    linehaul = _money(linehaul)
    pct = Decimal(str(fuel_surcharge_pct or 0))
    fuel = _money(linehaul * pct / Decimal("100"))
    services = list(accessorial_services or [])
    accessorials = Decimal("0.00")
    breakdown = [
        ChargeLine("LINEHAUL", "Linehaul", linehaul, dict(linehaul_details or {})),
        ChargeLine("FUEL", "Fuel Surcharge", fuel, {"pct": str(pct)}),
        ChargeLine("ACCESSORIALS", "Accessorials", accessorials, {"services": services}),
    ]
    return ChargeSummary(
        linehaul=linehaul,
        fuel_surcharge=fuel,
        accessorials=accessorials,
        total_charge=_money(linehaul + fuel + accessorials),
        breakdown=breakdown,
    )
