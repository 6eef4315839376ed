# src/freight_rating/rules/ltl_tariff.py
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

from ..errors import InvalidArgument, NotFound
from ..models import BaseRateMatrixEntry, RateMatrixEntry, RatingBreak, RatingBreakSet, Tariff
from .breaks import BreakEvaluation, RateCell, evaluate
from .charges import ChargeLine, apply_additional_charges
from .freight_class import FreightClassResolution, FreightClassResolver

logger = logging.getLogger(__name__)

__all__ = ["PricingMode", "LTLRateResult", "LTLTariffCalculator", "cwt_for"]


def _money(x: Decimal | int | float | str) -> Decimal:
    if not isinstance(x, Decimal):
        x = Decimal(str(x))
    return x.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


class PricingMode(str, Enum):
    EXPLICIT = "explicit"
    BASE_DISCOUNT = "base_discount"


def cwt_for(weight_lbs: Decimal | float | int) -> int:
    """Billable hundredweight, always rounded up."""
    return int(math.ceil(Decimal(str(weight_lbs)) / Decimal("100")))


@dataclass
class LTLRateResult:
    tariff_id: str
    pricing_mode: PricingMode
    freight_class: FreightClassResolution
    cwt: int
    linehaul: Decimal
    fuel_surcharge: Decimal
    accessorials: Decimal
    total_charge: Decimal
    currency: str
    breakdown: List[ChargeLine] = field(default_factory=list)
    details: Dict[str, Any] = field(default_factory=dict)
    break_evaluation: Optional[BreakEvaluation] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tariff_id": self.tariff_id,
            "pricing_mode": self.pricing_mode.value,
            "freight_class": self.freight_class.to_dict(),
            "cwt": self.cwt,
            "linehaul": str(self.linehaul),
            "fuel_surcharge": str(self.fuel_surcharge),
            "accessorials": str(self.accessorials),
            "total_charge": str(self.total_charge),
            "currency": self.currency,
            "breakdown": [line.to_dict() for line in self.breakdown],
            "details": self.details,
            "break_evaluation": self.break_evaluation.to_dict() if self.break_evaluation else None,
        }


class LTLTariffCalculator:
    """NMFC class tariffs: explicit break/class matrices or discount off a base tariff."""

    def __init__(self, store, class_resolver: Optional[FreightClassResolver] = None, default_currency: str = "CAD"):
        self.store = store
        self.class_resolver = class_resolver or FreightClassResolver(store)
        self.default_currency = default_currency

    def _explicit(self, tariff: Tariff, cwt: int, price_class: str) -> tuple[Decimal, Dict[str, Any], BreakEvaluation]:
        if not tariff.break_set_id:
            raise InvalidArgument(f"tariff {tariff.id} has no break set")
        break_set = self.store.get(RatingBreakSet, tariff.break_set_id)
        if break_set is None or not break_set.enabled:
            raise NotFound(f"break set {tariff.break_set_id} not found")
        breaks = self.store.query(RatingBreak, {"break_set_id": break_set.id}, order_by="seq")

        matrix: Dict[str, RateCell] = {}
        for row in self.store.query(RateMatrixEntry, {"tariff_id": tariff.id, "class_code": price_class}):
            matrix.setdefault(row.break_id, RateCell(row.rate_value, row.min_charge))
        if not matrix:
            raise NotFound(
                f"no rate matrix rows for class {price_class}",
                details={"tariff_id": tariff.id, "class_code": price_class},
            )

        ladder = SimpleNamespace(
            id=break_set.id,
            method=tariff.method or break_set.method,
            meta=break_set.meta,
            metric=break_set.metric,
            unit=break_set.unit,
        )
        result = evaluate(cwt, ladder, breaks, matrix)
        details = {
            "break_set_id": break_set.id,
            "break_id": result.best.break_id,
            "rate_value": str(result.best.rate_value),
            "calculation": result.best.calculation,
        }
        return result.charge, details, result

    def _base_discount(self, tariff: Tariff, cwt: int, price_class: str) -> tuple[Decimal, Dict[str, Any]]:
        if not tariff.base_tariff_id:
            raise InvalidArgument(f"tariff {tariff.id} has no base tariff")
        base = self.store.first(
            BaseRateMatrixEntry, {"base_tariff_id": tariff.base_tariff_id, "class_code": price_class}
        )
        if base is None:
            raise NotFound(
                f"no base rate for class {price_class}",
                details={"base_tariff_id": tariff.base_tariff_id, "class_code": price_class},
            )
        discount = Decimal(str(tariff.discount_pct or 0))
        discounted = Decimal(str(base.base_rate_cwt)) * (Decimal("1") - discount / Decimal("100"))
        linehaul = discounted * cwt
        details: Dict[str, Any] = {
            "base_rate_cwt": str(base.base_rate_cwt),
            "discount_pct": str(discount),
            "discounted_rate_cwt": str(_money(discounted)),
            "amc_applied": False,
        }
        if tariff.amc is not None and linehaul < tariff.amc:
            linehaul = Decimal(str(tariff.amc))
            details["amc_applied"] = True
        return linehaul, details

    def calculate(
        self,
        tariff_id: str,
        metrics: Any,
        customer_id: Optional[str] = None,
        ship_date: Optional[date] = None,
    ) -> LTLRateResult:
        tariff = self.store.get(Tariff, tariff_id)
        if tariff is None:
            raise NotFound(f"tariff {tariff_id} not found")
        try:
            mode = PricingMode(tariff.pricing_mode or PricingMode.EXPLICIT.value)
        except ValueError as exc:
            raise InvalidArgument(f"unknown pricing mode: {tariff.pricing_mode!r}") from exc

        fc = self.class_resolver.resolve(metrics, tariff, customer_id, ship_date)
        cwt = cwt_for(metrics.weight_lbs)

        evaluation: Optional[BreakEvaluation] = None
        if mode is PricingMode.EXPLICIT:
            linehaul, details, evaluation = self._explicit(tariff, cwt, fc.price)
        else:
            linehaul, details = self._base_discount(tariff, cwt, fc.price)

        summary = apply_additional_charges(
            linehaul,
            tariff.fuel_surcharge_pct,
            getattr(metrics, "accessorial_services", None),
            linehaul_details={"pricing_mode": mode.value, "class": fc.price, "cwt": cwt},
        )
        logger.info(
            "LTL tariff %s (%s) class %s/%s cwt=%d linehaul=%s total=%s",
            tariff.id, mode.value, fc.actual, fc.price, cwt, summary.linehaul, summary.total_charge,
        )
        return LTLRateResult(
            tariff_id=tariff.id,
            pricing_mode=mode,
            freight_class=fc,
            cwt=cwt,
            linehaul=summary.linehaul,
            fuel_surcharge=summary.fuel_surcharge,
            accessorials=summary.accessorials,
            total_charge=summary.total_charge,
            currency=tariff.currency or self.default_currency,
            breakdown=summary.breakdown,
            details=details,
            break_evaluation=evaluation,
        )
