"""Carrier rate-card templates (CSV or XLSX) into normalized carrier configs."""
from __future__ import annotations

import csv
import io
import logging
import uuid
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Mapping, Optional, Sequence

import openpyxl

from ..errors import InvalidArgument, Unimplemented
from .strategies import RateFormat, RateType

logger = logging.getLogger(__name__)

__all__ = [
    "TEMPLATE_HEADERS",
    "parse_rows",
    "validate_terminal_mapping",
    "validate_terminal_rates",
    "validate_skid_rates",
    "build_carrier_config",
    "import_summary",
]

TEMPLATE_HEADERS: Dict[str, List[str]] = {
    "terminal_mapping": ["City", "Province_State", "Terminal_Code", "Terminal_Name", "Service_Area"],
    "terminal_rates": [
        "Origin_Terminal", "Destination_Terminal", "Weight_Min", "Weight_Max",
        "Rate_Type", "Rate_Value", "Min_Charge", "Fuel_Surcharge_Pct", "Transit_Days",
    ],
    "skid_rates": ["Skid_Count", "Rate", "Fuel_Surcharge_Pct", "Transit_Days", "Max_Weight_Per_Skid", "Notes"],
}

_REQUIRED_TEMPLATES = {
    RateFormat.TERMINAL_WEIGHT_BASED: ("terminal_mapping", "terminal_rates"),
    RateFormat.SKID_BASED: ("skid_rates",),
}

MAX_SKIDS = 26
DEFAULT_TRANSIT_DAYS = 2
DEFAULT_MAX_WEIGHT_PER_SKID = 2000


def _key(header: Any) -> str:
    return str(header).strip().lower() if header is not None else ""


def parse_rows(data: bytes, filename: str = "upload.csv") -> List[Dict[str, Any]]:
    """Parse a CSV or XLSX template into dict records keyed by lower-cased header."""
    if filename.lower().endswith((".xlsx", ".xlsm")):
        wb = openpyxl.load_workbook(io.BytesIO(data), data_only=True)
        ws = wb.active
        rows = list(ws.iter_rows(values_only=True))
    else:
        text = data.decode("utf-8-sig")
        rows = list(csv.reader(io.StringIO(text)))
    if not rows:
        return []

    headers = [_key(h) for h in rows[0]]
    records: List[Dict[str, Any]] = []
    for row in rows[1:]:
        if all(v is None or str(v).strip() == "" for v in row):
            continue
        rec: Dict[str, Any] = {}
        for h, v in zip(headers, row):
            if not h:
                continue
            rec[h] = v.strip() if isinstance(v, str) else v
        records.append(rec)
    return records


def _text(row: Mapping[str, Any], field: str) -> str:
    value = row.get(field)
    return str(value).strip() if value is not None else ""


def _num(row: Mapping[str, Any], field: str) -> Optional[Decimal]:
    value = row.get(field)
    if value is None or str(value).strip() == "":
        return None
    try:
        return Decimal(str(value).strip())
    except InvalidOperation:
        return None


def _int(row: Mapping[str, Any], field: str) -> Optional[int]:
    num = _num(row, field)
    if num is None or num != num.to_integral_value():
        return None
    return int(num)


# ------------- validation -------------

def validate_terminal_mapping(rows: Sequence[Mapping[str, Any]]) -> List[str]:
    errors: List[str] = []
    seen: Dict[str, str] = {}
    for idx, row in enumerate(rows, start=2):
        city = _text(row, "city").upper()
        province = _text(row, "province_state").upper()
        code = _text(row, "terminal_code").upper()
        if not city:
            errors.append(f"Row {idx}: City is required")
        if not province:
            errors.append(f"Row {idx}: Province/State is required")
        if len(code) != 3:
            errors.append(f"Row {idx}: Terminal code must be exactly 3 characters")
        if not _text(row, "terminal_name"):
            errors.append(f"Row {idx}: Terminal name is required")
        city_key = f"{city}_{province}"
        if code and city_key in seen:
            errors.append(f"Row {idx}: Duplicate city mapping for {city}, {province}")
        elif code:
            seen[city_key] = code
    return errors


def validate_terminal_rates(rows: Sequence[Mapping[str, Any]]) -> List[str]:
    errors: List[str] = []
    ranges: Dict[str, List[tuple]] = {}
    valid_types = [t.value for t in RateType]
    for idx, row in enumerate(rows, start=2):
        origin = _text(row, "origin_terminal").upper()
        dest = _text(row, "destination_terminal").upper()
        if len(origin) != 3:
            errors.append(f"Row {idx}: Origin terminal must be 3 characters")
        if len(dest) != 3:
            errors.append(f"Row {idx}: Destination terminal must be 3 characters")
        lo = _num(row, "weight_min")
        hi = _num(row, "weight_max")
        if lo is None or lo < 0:
            errors.append(f"Row {idx}: Invalid minimum weight")
        if hi is None or lo is None or hi <= lo:
            errors.append(f"Row {idx}: Maximum weight must be greater than minimum")
        if _text(row, "rate_type").upper() not in valid_types:
            errors.append(f"Row {idx}: Rate type must be {', '.join(valid_types)}")
        rate = _num(row, "rate_value")
        if rate is None or rate <= 0:
            errors.append(f"Row {idx}: Invalid rate value")
        min_charge = _num(row, "min_charge")
        if min_charge is None or min_charge < 0:
            errors.append(f"Row {idx}: Invalid minimum charge")
        fuel = _num(row, "fuel_surcharge_pct")
        if fuel is None or fuel < 0:
            errors.append(f"Row {idx}: Invalid fuel surcharge percentage")

        if lo is None or hi is None:
            continue
        pair = ranges.setdefault(f"{origin}_{dest}", [])
        if any(not (hi <= p_lo or lo >= p_hi) for p_lo, p_hi in pair):
            errors.append(f"Row {idx}: Overlapping weight range for {origin} to {dest}")
        pair.append((lo, hi))
    return errors


def validate_skid_rates(rows: Sequence[Mapping[str, Any]]) -> List[str]:
    errors: List[str] = []
    counts: set = set()
    for idx, row in enumerate(rows, start=2):
        skids = _int(row, "skid_count")
        if skids is None or not 1 <= skids <= MAX_SKIDS:
            errors.append(f"Row {idx}: Skid count must be 1-{MAX_SKIDS}")
        elif skids in counts:
            errors.append(f"Row {idx}: Duplicate skid count {skids}")
        else:
            counts.add(skids)
        rate = _num(row, "rate")
        if rate is None or rate <= 0:
            errors.append(f"Row {idx}: Invalid rate")
        fuel = _num(row, "fuel_surcharge_pct")
        if fuel is None or fuel < 0:
            errors.append(f"Row {idx}: Invalid fuel surcharge percentage")
    return errors


_VALIDATORS = {
    "terminal_mapping": validate_terminal_mapping,
    "terminal_rates": validate_terminal_rates,
    "skid_rates": validate_skid_rates,
}


# ------------- normalization -------------

def _mapping_rows(rows: Sequence[Mapping[str, Any]]) -> List[Dict[str, Any]]:
    return [
        {
            "city": _text(r, "city").upper(),
            "province": _text(r, "province_state").upper(),
            "terminal_code": _text(r, "terminal_code").upper(),
            "terminal_name": _text(r, "terminal_name"),
            "service_area": _text(r, "service_area").upper() or None,
        }
        for r in rows
    ]


def _rate_rows(rows: Sequence[Mapping[str, Any]]) -> List[Dict[str, Any]]:
    return [
        {
            "origin_terminal": _text(r, "origin_terminal").upper(),
            "destination_terminal": _text(r, "destination_terminal").upper(),
            "weight_min": str(_num(r, "weight_min")),
            "weight_max": str(_num(r, "weight_max")),
            "rate_type": _text(r, "rate_type").upper(),
            "rate_value": str(_num(r, "rate_value")),
            "min_charge": str(_num(r, "min_charge")),
            "fuel_surcharge_pct": str(_num(r, "fuel_surcharge_pct")),
            "transit_days": _int(r, "transit_days") or DEFAULT_TRANSIT_DAYS,
        }
        for r in rows
    ]


def _skid_rows(rows: Sequence[Mapping[str, Any]]) -> List[Dict[str, Any]]:
    return [
        {
            "skid_count": _int(r, "skid_count"),
            "rate": str(_num(r, "rate")),
            "fuel_surcharge_pct": str(_num(r, "fuel_surcharge_pct")),
            "transit_days": _int(r, "transit_days") or DEFAULT_TRANSIT_DAYS,
            "max_weight_per_skid": str(_num(r, "max_weight_per_skid") or DEFAULT_MAX_WEIGHT_PER_SKID),
            "notes": _text(r, "notes") or None,
        }
        for r in rows
    ]


def build_carrier_config(
    carrier_id: str,
    rate_format: RateFormat | str,
    templates: Mapping[str, Sequence[Mapping[str, Any]]],
    *,
    config_name: Optional[str] = None,
    currency: str = "CAD",
    carrier_name: Optional[str] = None,
    config_id: Optional[str] = None,
) -> Dict[str, Any]:
    """Validate the templates for ``rate_format`` and return a normalized config dict.

    Every problem across every template is collected before raising, so the
    caller sees the full list in ``InvalidArgument.details["errors"]``.
    """
    if not carrier_id:
        raise InvalidArgument("carrier_id is required")
    fmt = RateFormat.parse(rate_format)
    required = _REQUIRED_TEMPLATES.get(fmt)
    if required is None:
        raise Unimplemented(f"rate card import for {fmt.value} is not implemented")

    errors: List[str] = []
    for name in required:
        rows = templates.get(name)
        if not rows:
            errors.append(f"{name.replace('_', ' ').capitalize()} template is required")
            continue
        errors.extend(f"{name}: {msg}" for msg in _VALIDATORS[name](rows))
    if errors:
        logger.warning("Rate card import for %s rejected with %d errors", carrier_id, len(errors))
        raise InvalidArgument("rate card validation failed", details={"errors": errors})

    config: Dict[str, Any] = {
        "id": config_id or uuid.uuid4().hex,
        "carrier_id": carrier_id,
        "carrier_name": carrier_name,
        "config_name": config_name or f"{carrier_id} {fmt.value}",
        "format": fmt.value,
        "currency": currency,
        "terminal_mapping": [],
        "terminal_rates": [],
        "skid_rates": [],
        "enabled": True,
    }
    if fmt is RateFormat.TERMINAL_WEIGHT_BASED:
        config["terminal_mapping"] = _mapping_rows(templates["terminal_mapping"])
        config["terminal_rates"] = _rate_rows(templates["terminal_rates"])
    else:
        config["skid_rates"] = _skid_rows(templates["skid_rates"])
    logger.info("Built %s config %s for carrier %s", fmt.value, config["id"], carrier_id)
    return config


def import_summary(config: Mapping[str, Any]) -> Dict[str, Any]:
    mapping = config.get("terminal_mapping") or []
    rates = config.get("terminal_rates") or []
    skids = config.get("skid_rates") or []
    summary: Dict[str, Any] = {
        "format": config.get("format"),
        "config_name": config.get("config_name"),
        "currency": config.get("currency"),
        "total_records": len(mapping) + len(rates) + len(skids),
    }
    if config.get("format") == RateFormat.TERMINAL_WEIGHT_BASED.value:
        summary["details"] = {
            "terminals": len({m["terminal_code"] for m in mapping}),
            "city_mappings": len(mapping),
            "rate_pairs": len({(r["origin_terminal"], r["destination_terminal"]) for r in rates}),
            "weight_breaks": len(rates),
        }
    elif config.get("format") == RateFormat.SKID_BASED.value:
        counts = [s["skid_count"] for s in skids]
        summary["details"] = {
            "skid_range": f"{min(counts)}-{max(counts)} skids" if counts else "No rates",
            "rate_count": len(skids),
        }
    return summary
