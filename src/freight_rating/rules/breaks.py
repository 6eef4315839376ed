# src/freight_rating/rules/breaks.py
"""Generic break-ladder evaluation (weight, linear feet or skid breaks)."""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_CEILING, ROUND_FLOOR, ROUND_HALF_UP
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from ..errors import InvalidArgument, NotFound
from ..models import RatingBreak, RatingBreakSet

logger = logging.getLogger(__name__)

__all__ = [
    "BreakMethod",
    "BreakMetric",
    "VALID_UNITS",
    "RateCell",
    "BreakCandidate",
    "BreakEvaluation",
    "apply_rounding",
    "evaluate",
    "define_break_set",
    "describe_candidate",
]


def _money(x: Decimal | int | float | str) -> Decimal:
    if not isinstance(x, Decimal):
        x = Decimal(str(x))
    return x.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def _dec(x: Any) -> Decimal:
    return x if isinstance(x, Decimal) else Decimal(str(x))


class BreakMethod(str, Enum):
    STEP = "step"      # value must fall inside [min, max)
    EXTEND = "extend"  # value is bumped up to the break minimum


class BreakMetric(str, Enum):
    WEIGHT = "weight"
    LF = "lf"
    SKID = "skid"


VALID_UNITS: Dict[BreakMetric, Tuple[str, ...]] = {
    BreakMetric.WEIGHT: ("lb", "kg", "cwt"),
    BreakMetric.LF: ("lf",),
    BreakMetric.SKID: ("skid",),
}


@dataclass
class RateCell:
    rate_value: Decimal
    min_charge: Optional[Decimal] = None


@dataclass
class BreakCandidate:
    break_id: str
    input_value: Decimal
    rounded_value: Decimal
    units: Decimal
    rate_value: Decimal
    min_charge: Optional[Decimal]
    raw_charge: Decimal
    charge: Decimal
    method: BreakMethod
    calculation: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "break_id": self.break_id,
            "input_value": str(self.input_value),
            "rounded_value": str(self.rounded_value),
            "units": str(self.units),
            "rate_value": str(self.rate_value),
            "min_charge": str(self.min_charge) if self.min_charge is not None else None,
            "charge": str(_money(self.charge)),
            "method": self.method.value,
            "calculation": self.calculation,
        }


@dataclass
class BreakEvaluation:
    best: BreakCandidate
    candidates: List[BreakCandidate] = field(default_factory=list)

    @property
    def charge(self) -> Decimal:
        return self.best.charge

    def to_dict(self) -> Dict[str, Any]:
        return {
            "best": self.best.to_dict(),
            "candidates": [c.to_dict() for c in self.candidates],
        }


def apply_rounding(value: Decimal | float | int, increment: Decimal | float | int, direction: str = "up") -> Decimal:
    value = _dec(value)
    increment = _dec(increment)
    if increment <= 0:
        return value
    steps = value / increment
    if direction == "up":
        steps = steps.to_integral_value(rounding=ROUND_CEILING)
    elif direction == "down":
        steps = steps.to_integral_value(rounding=ROUND_FLOOR)
    elif direction == "nearest":
        steps = steps.to_integral_value(rounding=ROUND_HALF_UP)
    else:
        return value
    return steps * increment


def _method_of(break_set: Any) -> BreakMethod:
    raw = getattr(break_set, "method", None)
    try:
        return BreakMethod(raw)
    except ValueError as exc:
        raise InvalidArgument(f"unknown break method: {raw!r}") from exc


def _unit_label(break_set: Any) -> str:
    metric = getattr(break_set, "metric", None)
    if metric == BreakMetric.LF.value:
        return "LF"
    if metric == BreakMetric.SKID.value:
        return "skids"
    return getattr(break_set, "unit", None) or "units"


def describe_candidate(break_set: Any, candidate: BreakCandidate) -> str:
    unit = _unit_label(break_set)
    suffix = " (extended)" if candidate.method is BreakMethod.EXTEND and candidate.units != candidate.rounded_value else ""
    text = f"{candidate.units} {unit}{suffix} x ${candidate.rate_value}/{unit.rstrip('s')} = ${_money(candidate.raw_charge)}"
    if candidate.charge != candidate.raw_charge:
        text += f", minimum ${_money(candidate.charge)} applied"
    return text


def evaluate(
    metric_value: Decimal | float | int,
    break_set: Any,
    breaks: Iterable[Any],
    rate_matrix: Mapping[str, RateCell],
) -> BreakEvaluation:
    """Price ``metric_value`` against every break and keep the cheapest.

    ``break_set`` needs ``method`` (and optionally ``meta``/``metric``/``unit``);
    each break needs ``id``, ``min_metric``, ``max_metric`` and ``seq``.
    Breaks without a rate in ``rate_matrix`` are skipped.
    """
    method = _method_of(break_set)
    value = _dec(metric_value)
    meta = getattr(break_set, "meta", None) or {}
    rounded = value
    if meta.get("rounding_increment"):
        rounded = apply_rounding(value, meta["rounding_increment"], meta.get("rounding_direction", "up"))

    ordered = sorted(breaks, key=lambda b: (b.seq or 0, _dec(b.min_metric)))
    candidates: List[BreakCandidate] = []
    best: Optional[BreakCandidate] = None
    for brk in ordered:
        cell = rate_matrix.get(brk.id)
        if cell is None:
            continue
        min_metric = _dec(brk.min_metric)
        max_metric = _dec(brk.max_metric) if brk.max_metric is not None else None

        if method is BreakMethod.STEP:
            if rounded < min_metric or (max_metric is not None and rounded >= max_metric):
                continue
            units = rounded
        else:
            units = max(rounded, min_metric)

        rate = _dec(cell.rate_value)
        min_charge = _dec(cell.min_charge) if cell.min_charge is not None else None
        raw = units * rate
        charge = max(raw, min_charge or Decimal("0"))
        cand = BreakCandidate(
            break_id=brk.id,
            input_value=value,
            rounded_value=rounded,
            units=units,
            rate_value=rate,
            min_charge=min_charge,
            raw_charge=raw,
            charge=charge,
            method=method,
        )
        cand.calculation = describe_candidate(break_set, cand)
        candidates.append(cand)
        # strict comparison keeps the earliest break on ties
        if best is None or charge < best.charge:
            best = cand

    if best is None:
        raise NotFound(
            "no applicable rating break",
            details={"metric_value": str(value), "break_set": getattr(break_set, "id", None)},
        )
    logger.debug("Break %s selected at %s (%d candidates)", best.break_id, best.charge, len(candidates))
    return BreakEvaluation(best=best, candidates=candidates)


# ---------- Break set definition ----------

def _check_ranges(method: BreakMethod, rows: Sequence[Tuple[Decimal, Optional[Decimal]]]) -> List[str]:
    errors: List[str] = []
    for idx, (lo, hi) in enumerate(rows, start=1):
        if lo < 0:
            errors.append(f"break {idx}: min_metric must be >= 0")
        if hi is not None and lo >= hi:
            errors.append(f"break {idx}: min_metric {lo} must be below max_metric {hi}")
    if method is BreakMethod.STEP:
        for idx in range(1, len(rows)):
            prev_lo, prev_hi = rows[idx - 1]
            lo, _ = rows[idx]
            if prev_hi is None or prev_hi > lo:
                errors.append(f"break {idx} [{prev_lo}, {prev_hi if prev_hi is not None else 'inf'}) overlaps break {idx + 1} starting at {lo}")
    return errors


def define_break_set(
    name: str,
    metric: str,
    unit: str,
    method: str,
    breaks: Sequence[Mapping[str, Any]],
    *,
    description: Optional[str] = None,
    meta: Optional[Dict[str, Any]] = None,
    break_set_id: Optional[str] = None,
) -> Tuple[RatingBreakSet, List[RatingBreak]]:
    """Validate a ladder and build unsaved ``RatingBreakSet``/``RatingBreak`` rows.

    Breaks are sorted by ``min_metric`` and resequenced from 1. Step ladders
    may not overlap, which also means an open-ended break has to be last.
    """
    if not name or not str(name).strip():
        raise InvalidArgument("break set name is required")
    try:
        metric_enum = BreakMetric(metric)
    except ValueError as exc:
        raise InvalidArgument(f"metric must be one of {[m.value for m in BreakMetric]}") from exc
    if unit not in VALID_UNITS[metric_enum]:
        raise InvalidArgument(f"unit {unit!r} is not valid for metric {metric_enum.value!r}")
    try:
        method_enum = BreakMethod(method)
    except ValueError as exc:
        raise InvalidArgument(f"method must be one of {[m.value for m in BreakMethod]}") from exc
    if not breaks:
        raise InvalidArgument("at least one break is required")

    rows: List[Tuple[Decimal, Optional[Decimal]]] = []
    for raw in breaks:
        try:
            lo = _dec(raw["min_metric"])
            hi = _dec(raw["max_metric"]) if raw.get("max_metric") is not None else None
        except (KeyError, ArithmeticError, ValueError) as exc:
            raise InvalidArgument(f"invalid break definition: {dict(raw)}") from exc
        rows.append((lo, hi))
    rows.sort(key=lambda r: r[0])

    errors = _check_ranges(method_enum, rows)
    if errors:
        raise InvalidArgument("invalid break set", details={"errors": errors})

    set_id = break_set_id or uuid.uuid4().hex
    merged_meta = {"rounding_direction": "up"}
    merged_meta.update(meta or {})
    break_set = RatingBreakSet(
        id=set_id,
        name=name.strip(),
        metric=metric_enum.value,
        unit=unit,
        method=method_enum.value,
        description=description,
        meta=merged_meta,
        enabled=True,
    )
    rating_breaks = [
        RatingBreak(id=f"{set_id}-{seq}", break_set_id=set_id, min_metric=lo, max_metric=hi, seq=seq)
        for seq, (lo, hi) in enumerate(rows, start=1)
    ]
    logger.info("Defined break set %s (%s/%s, %d breaks)", name, metric_enum.value, method_enum.value, len(rating_breaks))
    return break_set, rating_breaks
