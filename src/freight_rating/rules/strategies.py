# src/freight_rating/rules/strategies.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

from ..errors import InvalidArgument, NotFound, Unimplemented
from .charges import ChargeLine, apply_additional_charges
from .shipment import ShipmentMetrics, normalize_city, normalize_province

logger = logging.getLogger(__name__)

__all__ = [
    "RateFormat",
    "RateType",
    "NormalizedRateResult",
    "find_terminal",
    "find_terminal_rate",
    "select_skid_rate",
    "STRATEGIES",
    "calculate_normalized",
]


def _money(x: Decimal | int | float | str) -> Decimal:
    if not isinstance(x, Decimal):
        x = Decimal(str(x))
    return x.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def _dec(x: Any, default: str = "0") -> Decimal:
    if x is None or x == "":
        return Decimal(default)
    return x if isinstance(x, Decimal) else Decimal(str(x))


def _get(obj: Any, name: str, default: Any = None) -> Any:
    if isinstance(obj, Mapping):
        return obj.get(name, default)
    return getattr(obj, name, default)


def _transit(days: Any) -> Optional[str]:
    if days in (None, ""):
        return None
    n = int(days)
    return f"{n} business day{'s' if n > 1 else ''}"


class RateFormat(str, Enum):
    TERMINAL_WEIGHT_BASED = "terminal_weight_based"
    SKID_BASED = "skid_based"
    ZONE_MATRIX = "zone_matrix"
    HYBRID_TERMINAL_ZONE = "hybrid_terminal_zone"

    @classmethod
    def parse(cls, value: Any) -> "RateFormat":
        try:
            return cls(value)
        except ValueError as exc:
            raise InvalidArgument(f"unsupported rate format: {value!r}") from exc


class RateType(str, Enum):
    PER_100LBS = "PER_100LBS"
    PER_LB = "PER_LB"
    FLAT_RATE = "FLAT_RATE"

    def compute(self, weight_lbs: Decimal, rate: Decimal) -> Tuple[Decimal, str]:
        if self is RateType.PER_100LBS:
            hundreds = weight_lbs / Decimal("100")
            charge = hundreds * rate
            return charge, f"{_money(hundreds)} x ${rate}/100lbs = ${_money(charge)}"
        if self is RateType.PER_LB:
            charge = weight_lbs * rate
            return charge, f"{weight_lbs} lbs x ${rate}/lb = ${_money(charge)}"
        return rate, f"Flat rate: ${_money(rate)}"


@dataclass
class NormalizedRateResult:
    carrier_id: str
    format: RateFormat
    breakdown: List[ChargeLine]
    base_total: Decimal
    final_total: Decimal
    currency: str
    transit_time: Optional[str] = None
    routing_info: Dict[str, Any] = field(default_factory=dict)
    carrier_name: Optional[str] = None
    config_id: Optional[str] = None
    config_name: Optional[str] = None
    shipment: Dict[str, Any] = field(default_factory=dict)
    cached: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "carrier": {"id": self.carrier_id, "name": self.carrier_name},
            "configuration": {"id": self.config_id, "name": self.config_name, "format": self.format.value},
            "breakdown": [line.to_dict() for line in self.breakdown],
            "base_total": str(self.base_total),
            "final_total": str(self.final_total),
            "currency": self.currency,
            "transit_time": self.transit_time,
            "routing_info": self.routing_info,
            "shipment_metrics": self.shipment,
            "cached": self.cached,
        }


# ------------- terminal helpers -------------

def find_terminal(city: str, province: str, terminal_mapping: List[Mapping[str, Any]]) -> Optional[Mapping[str, Any]]:
    """Exact city+province match first, then a whitespace-insensitive substring match in the province."""
    city = normalize_city(city)
    province = normalize_province(province)
    for row in terminal_mapping:
        if normalize_city(row.get("city")) == city and normalize_province(row.get("province")) == province:
            return row
    needle = "".join(city.split())
    if not needle:
        return None
    for row in terminal_mapping:
        if normalize_province(row.get("province")) != province:
            continue
        candidate = "".join(normalize_city(row.get("city")).split())
        if candidate and (needle in candidate or candidate in needle):
            return row
    return None


def find_terminal_rate(
    origin_terminal: str, dest_terminal: str, weight_lbs: Decimal, terminal_rates: List[Mapping[str, Any]]
) -> Optional[Mapping[str, Any]]:
    for row in terminal_rates:
        if row.get("origin_terminal") != origin_terminal or row.get("destination_terminal") != dest_terminal:
            continue
        # inclusive on both ends
        if _dec(row.get("weight_min")) <= weight_lbs <= _dec(row.get("weight_max")):
            return row
    return None


def select_skid_rate(skid_count: int, skid_rates: List[Mapping[str, Any]]) -> Optional[Mapping[str, Any]]:
    """Exact count, else the smallest count above it, else the largest available."""
    if not skid_rates:
        return None
    for row in skid_rates:
        if int(row.get("skid_count")) == skid_count:
            return row
    above = sorted((r for r in skid_rates if int(r.get("skid_count")) >= skid_count), key=lambda r: int(r.get("skid_count")))
    if above:
        return above[0]
    return max(skid_rates, key=lambda r: int(r.get("skid_count")))


# ------------- strategies -------------

class RateStrategy:
    format: RateFormat

    def calculate(self, config: Any, metrics: ShipmentMetrics, currency: str) -> NormalizedRateResult:
        raise NotImplementedError

    def _result(self, config: Any, metrics: ShipmentMetrics, currency: str, summary, **extra) -> NormalizedRateResult:
        return NormalizedRateResult(
            carrier_id=_get(config, "carrier_id"),
            carrier_name=_get(config, "carrier_name"),
            config_id=_get(config, "id"),
            config_name=_get(config, "config_name"),
            format=self.format,
            breakdown=summary.breakdown,
            base_total=summary.linehaul,
            final_total=summary.total_charge,
            currency=_get(config, "currency") or currency,
            shipment=metrics.to_dict(),
            **extra,
        )


class TerminalWeightStrategy(RateStrategy):
    format = RateFormat.TERMINAL_WEIGHT_BASED

    def calculate(self, config: Any, metrics: ShipmentMetrics, currency: str) -> NormalizedRateResult:
        mapping = list(_get(config, "terminal_mapping") or [])
        rates = list(_get(config, "terminal_rates") or [])
        origin = find_terminal(metrics.origin.city, metrics.origin.province, mapping)
        if origin is None:
            raise NotFound(f"No terminal found for origin: {metrics.origin.city}, {metrics.origin.province}")
        dest = find_terminal(metrics.destination.city, metrics.destination.province, mapping)
        if dest is None:
            raise NotFound(f"No terminal found for destination: {metrics.destination.city}, {metrics.destination.province}")

        weight = metrics.weight_lbs
        row = find_terminal_rate(origin["terminal_code"], dest["terminal_code"], weight, rates)
        if row is None:
            raise NotFound(
                f"No rate found between terminals {origin['terminal_code']} and {dest['terminal_code']} for weight {weight} lbs"
            )
        try:
            rate_type = RateType(row.get("rate_type"))
        except ValueError as exc:
            raise InvalidArgument(f"unknown rate type: {row.get('rate_type')!r}") from exc

        charge, calc = rate_type.compute(weight, _dec(row.get("rate_value")))
        min_charge = _dec(row.get("min_charge"))
        if charge < min_charge:
            charge = min_charge
            calc += f" (min charge: ${_money(min_charge)})"

        summary = apply_additional_charges(
            charge,
            row.get("fuel_surcharge_pct"),
            metrics.accessorial_services,
            linehaul_details={"rate_type": rate_type.value, "weight_lbs": str(weight)},
        )
        routing = {
            "origin_terminal": origin["terminal_code"],
            "origin_terminal_name": origin.get("terminal_name"),
            "destination_terminal": dest["terminal_code"],
            "destination_terminal_name": dest.get("terminal_name"),
            "weight_break": f"{row.get('weight_min')}-{row.get('weight_max')} lbs",
            "rate_type": rate_type.value,
            "rate_value": str(row.get("rate_value")),
            "min_charge": str(min_charge),
            "calculation": calc,
        }
        return self._result(config, metrics, currency, summary, transit_time=_transit(row.get("transit_days")), routing_info=routing)


class SkidStrategy(RateStrategy):
    format = RateFormat.SKID_BASED

    def calculate(self, config: Any, metrics: ShipmentMetrics, currency: str) -> NormalizedRateResult:
        skid_count = max(1, metrics.skid_equivalents)
        row = select_skid_rate(skid_count, list(_get(config, "skid_rates") or []))
        if row is None:
            raise NotFound(f"No skid rate configuration found for {skid_count} skids")
        rate = _dec(row.get("rate"))
        plural = "s" if skid_count > 1 else ""
        summary = apply_additional_charges(
            rate,
            row.get("fuel_surcharge_pct"),
            metrics.accessorial_services,
            linehaul_details={"skid_count": skid_count},
        )
        routing = {
            "skid_count": skid_count,
            "rate_used": int(row.get("skid_count")),
            "calculation": f"{skid_count} skid{plural} @ ${_money(rate)}",
            "notes": row.get("notes"),
        }
        return self._result(config, metrics, currency, summary, transit_time=_transit(row.get("transit_days")), routing_info=routing)


class UnimplementedStrategy(RateStrategy):
    def __init__(self, rate_format: RateFormat, label: str):
        self.format = rate_format
        self.label = label

    def calculate(self, config: Any, metrics: ShipmentMetrics, currency: str) -> NormalizedRateResult:
        raise Unimplemented(f"{self.label} pricing is not implemented", details={"format": self.format.value})


STRATEGIES: Dict[RateFormat, RateStrategy] = {
    RateFormat.TERMINAL_WEIGHT_BASED: TerminalWeightStrategy(),
    RateFormat.SKID_BASED: SkidStrategy(),
    RateFormat.ZONE_MATRIX: UnimplementedStrategy(RateFormat.ZONE_MATRIX, "Zone matrix"),
    RateFormat.HYBRID_TERMINAL_ZONE: UnimplementedStrategy(RateFormat.HYBRID_TERMINAL_ZONE, "Hybrid terminal/zone"),
}

_missing = set(RateFormat) - set(STRATEGIES)
if _missing:
    raise RuntimeError(f"rate formats without a strategy: {sorted(f.value for f in _missing)}")


def calculate_normalized(
    config: Any,
    metrics: ShipmentMetrics,
    rate_format: Optional[RateFormat | str] = None,
    currency: str = "CAD",
) -> NormalizedRateResult:
    fmt = RateFormat.parse(rate_format or _get(config, "format"))
    strategy = STRATEGIES[fmt]
    result = strategy.calculate(config, metrics, currency)
    logger.info(
        "Rated %s via %s: base=%s final=%s %s",
        result.carrier_id, fmt.value, result.base_total, result.final_total, result.currency,
    )
    return result
