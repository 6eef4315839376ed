# src/freight_rating/api/routes.py
"""
Rating API routes.

Notes:
- Every handler is a thin shell over RatingEngine; RatingError subclasses
  propagate to the app-level handler which maps them to HTTP statuses.
- Caches live on app.state and are shared by all requests in this process.
"""

from __future__ import annotations

import base64
import logging
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Literal, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..cache import CacheRegistry, Lane
from ..db import SessionLocal, activate_carrier_config
from ..errors import InvalidArgument
from ..rules.breaks import RateCell, define_break_set, evaluate
from ..rules.rate_card_loader import build_carrier_config, import_summary, parse_rows
from ..rules.rating_engine import RatingEngine
from ..rules.regions import canonicalize_postal
from ..settings import settings
from ..store import SqlDocumentStore

logger = logging.getLogger("freight-rating-api")

router = APIRouter(prefix="/api/v1", tags=["Rating"])

# ============ Pydantic Models ============

class AddressIn(BaseModel):
    city: Optional[str] = Field(None, example="Toronto")
    province: Optional[str] = Field(None, example="ON")
    postal_code: Optional[str] = Field(None, example="M5V 3L9")
    country: Optional[str] = Field(None, example="CA")


class PackageIn(BaseModel):
    weight: Decimal = Field(..., example=500)
    length: Optional[Decimal] = Field(None, example=48)
    width: Optional[Decimal] = Field(None, example=40)
    height: Optional[Decimal] = Field(None, example=48)
    quantity: int = Field(1, example=2)


class ShipmentIn(BaseModel):
    origin: AddressIn
    destination: AddressIn
    packages: List[PackageIn]
    unit_system: Literal["imperial", "metric"] = "imperial"
    nmfc_class: Optional[str] = Field(None, example="85")
    customer_id: Optional[str] = None
    service_id: Optional[str] = None
    shipment_type: Optional[str] = Field(None, example="freight")
    ship_date: Optional[date] = None
    accessorial_services: List[str] = Field(default_factory=list)


class ZoneRequest(BaseModel):
    carrier_id: str = Field(..., example="CARRIER-X")
    origin_postal: str = Field(..., example="M5V 3L9")
    destination_postal: str = Field(..., example="V6B 1A1")
    service_id: Optional[str] = None
    ship_date: Optional[date] = None


class RateRequest(BaseModel):
    carrier_id: str
    shipment: ShipmentIn
    config: Optional[Dict[str, Any]] = Field(None, description="Inline normalized config; stored config when omitted")
    rate_format: Optional[str] = None


class LTLRequest(BaseModel):
    tariff_id: str
    shipment: ShipmentIn
    customer_id: Optional[str] = None
    ship_date: Optional[date] = None


class FreightClassRequest(BaseModel):
    shipment: ShipmentIn
    tariff_id: Optional[str] = None
    customer_id: Optional[str] = None


class RateCellIn(BaseModel):
    rate_value: Decimal
    min_charge: Optional[Decimal] = None


class BreakIn(BaseModel):
    min_metric: Decimal
    max_metric: Optional[Decimal] = None


class BreakSetDefinition(BaseModel):
    name: str
    metric: str = Field(..., example="weight")
    unit: str = Field(..., example="lb")
    method: str = Field(..., example="step")
    breaks: List[BreakIn]
    meta: Dict[str, Any] = Field(default_factory=dict)


class BreakEvaluateRequest(BaseModel):
    metric_value: Decimal
    rates: Dict[str, RateCellIn] = Field(..., description="Keyed by break id, or by seq for inline definitions")
    break_set_id: Optional[str] = None
    definition: Optional[BreakSetDefinition] = None


class TemplateUpload(BaseModel):
    filename: str = "template.csv"
    content: str
    base64_encoded: bool = Field(False, description="True for XLSX uploads")


class CarrierConfigImport(BaseModel):
    carrier_id: str
    format: str = Field(..., example="skid_based")
    config_name: Optional[str] = None
    carrier_name: Optional[str] = None
    currency: Optional[str] = None
    templates: Dict[str, TemplateUpload]
    persist: bool = False


class CleanupRequest(BaseModel):
    cache_type: Literal["all", "zone", "rate", "carrier_config"] = "all"


class LaneIn(BaseModel):
    carrier_id: str
    origin_postal: str
    destination_postal: str
    service_id: Optional[str] = None
    ship_date: Optional[date] = None


class PrewarmRequest(BaseModel):
    lanes: List[LaneIn]


# ============ Dependencies ============

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_caches(request: Request) -> CacheRegistry:
    return request.app.state.caches


def get_engine(
    db: Session = Depends(get_db),
    caches: CacheRegistry = Depends(get_caches),
) -> RatingEngine:
    return RatingEngine(SqlDocumentStore(db), caches, settings.default_currency)


def _template_rows(upload: TemplateUpload) -> List[Dict[str, Any]]:
    if upload.base64_encoded:
        try:
            data = base64.b64decode(upload.content)
        except ValueError as exc:
            raise InvalidArgument(f"{upload.filename}: content is not valid base64") from exc
    else:
        data = upload.content.encode("utf-8")
    return parse_rows(data, upload.filename)


# ============ Endpoints ============

@router.post("/zones/resolve")
def resolve_zone(req: ZoneRequest, engine: RatingEngine = Depends(get_engine)) -> Dict[str, Any]:
    resolution = engine.resolve_zone(
        req.carrier_id, req.origin_postal, req.destination_postal, req.ship_date, req.service_id
    )
    return resolution.to_dict()


@router.post("/rates/normalized")
def rate_normalized(req: RateRequest, engine: RatingEngine = Depends(get_engine)) -> Dict[str, Any]:
    result = engine.calculate_rate(req.carrier_id, req.shipment.model_dump(), req.config, req.rate_format)
    return result.to_dict()


@router.post("/rates/ltl")
def rate_ltl(req: LTLRequest, engine: RatingEngine = Depends(get_engine)) -> Dict[str, Any]:
    result = engine.calculate_ltl(req.tariff_id, req.shipment.model_dump(), req.customer_id, req.ship_date)
    return result.to_dict()


@router.post("/freight-class")
def freight_class(req: FreightClassRequest, engine: RatingEngine = Depends(get_engine)) -> Dict[str, Any]:
    return engine.resolve_freight_class(req.shipment.model_dump(), req.tariff_id, req.customer_id).to_dict()


@router.post("/breaks/evaluate", tags=["Breaks"])
def evaluate_breaks(req: BreakEvaluateRequest, engine: RatingEngine = Depends(get_engine)) -> Dict[str, Any]:
    cells = {k: RateCell(v.rate_value, v.min_charge) for k, v in req.rates.items()}
    if req.definition is not None:
        d = req.definition
        break_set, breaks = define_break_set(
            d.name, d.metric, d.unit, d.method,
            [b.model_dump() for b in d.breaks],
            meta=d.meta,
            break_set_id="inline",
        )
        matrix = {b.id: cells.get(b.id) or cells.get(str(b.seq)) for b in breaks}
        matrix = {k: v for k, v in matrix.items() if v is not None}
        return evaluate(req.metric_value, break_set, breaks, matrix).to_dict()
    if not req.break_set_id:
        raise InvalidArgument("either break_set_id or definition is required")
    return engine.evaluate_break_set(req.break_set_id, req.metric_value, cells).to_dict()


@router.post("/imports/carrier-config", tags=["Imports"])
def import_carrier_config(
    req: CarrierConfigImport,
    db: Session = Depends(get_db),
    caches: CacheRegistry = Depends(get_caches),
) -> Dict[str, Any]:
    templates = {name: _template_rows(upload) for name, upload in req.templates.items()}
    config = build_carrier_config(
        req.carrier_id,
        req.format,
        templates,
        config_name=req.config_name,
        currency=req.currency or settings.default_currency,
        carrier_name=req.carrier_name,
    )
    if req.persist:
        activate_carrier_config(db, config)
        caches.carrier_config.delete(f"config|{req.carrier_id}")
        logger.info("Stored carrier config %s for %s", config["id"], req.carrier_id)
    return {"config": config, "summary": import_summary(config), "persisted": req.persist}


# ============ Cache administration ============

@router.get("/admin/cache/stats", tags=["Admin"])
def cache_stats(caches: CacheRegistry = Depends(get_caches)) -> Dict[str, Any]:
    return caches.stats()


@router.post("/admin/cache/cleanup", tags=["Admin"])
def cache_cleanup(req: CleanupRequest, caches: CacheRegistry = Depends(get_caches)) -> Dict[str, Any]:
    removed = caches.cleanup(req.cache_type)
    return {"removed": removed, "total_removed": sum(removed.values())}


@router.post("/admin/cache/prewarm", tags=["Admin"])
def cache_prewarm(req: PrewarmRequest, engine: RatingEngine = Depends(get_engine)) -> Dict[str, Any]:
    lanes = [
        Lane(
            carrier_id=lane.carrier_id,
            origin_region_id=canonicalize_postal(lane.origin_postal),
            dest_region_id=canonicalize_postal(lane.destination_postal),
            service_id=lane.service_id,
            ship_date=lane.ship_date,
        )
        for lane in req.lanes
    ]
    warmed = engine.prewarm_zones(lanes)
    return {"requested": len(lanes), "prewarmed": warmed}
