from __future__ import annotations
from typing import Any, Optional
import datetime
from decimal import Decimal

from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy import String, Boolean, Numeric, Date, Integer, Text, JSON, UniqueConstraint

class Base(DeclarativeBase):
    pass

# ---------- Geography & zones ----------

class Region(Base):
    """Postal hierarchy node; FSA/ZIP3 rows point at a state_province, which points at a country."""

    __tablename__ = "regions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    code: Mapped[str] = mapped_column(String(16))
    name: Mapped[Optional[str]] = mapped_column(String(120))
    type: Mapped[str] = mapped_column(String(24))  # country/state_province/fsa/zip3/city
    parent_region_id: Mapped[Optional[str]] = mapped_column(String(64))
    patterns: Mapped[Optional[list]] = mapped_column(JSON, default=list)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True)


class ZoneSet(Base):
    __tablename__ = "zone_sets"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(120))
    geography: Mapped[Optional[str]] = mapped_column(String(48))
    version: Mapped[Optional[str]] = mapped_column(String(24))
    effective_from: Mapped[Optional[datetime.date]] = mapped_column(Date)
    effective_to: Mapped[Optional[datetime.date]] = mapped_column(Date)


class ZoneMapping(Base):
    __tablename__ = "zone_mappings"
    __table_args__ = (UniqueConstraint("zone_set_id", "origin_region_id", "dest_region_id"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    zone_set_id: Mapped[str] = mapped_column(String(64))
    origin_region_id: Mapped[str] = mapped_column(String(64))
    dest_region_id: Mapped[str] = mapped_column(String(64))
    zone_code: Mapped[str] = mapped_column(String(24))


class CarrierZoneOverride(Base):
    __tablename__ = "carrier_zone_overrides"

    id: Mapped[int] = mapped_column(primary_key=True)
    carrier_id: Mapped[str] = mapped_column(String(64))
    service_id: Mapped[Optional[str]] = mapped_column(String(64))
    origin_region_id: Mapped[str] = mapped_column(String(64))
    dest_region_id: Mapped[str] = mapped_column(String(64))
    zone_code: Mapped[str] = mapped_column(String(24))
    priority: Mapped[int] = mapped_column(Integer, default=0)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    override_reason: Mapped[Optional[str]] = mapped_column(Text)


class CarrierZoneBinding(Base):
    __tablename__ = "carrier_zone_bindings"

    id: Mapped[int] = mapped_column(primary_key=True)
    carrier_id: Mapped[str] = mapped_column(String(64))
    service_id: Mapped[Optional[str]] = mapped_column(String(64))
    zone_set_id: Mapped[str] = mapped_column(String(64))
    priority: Mapped[int] = mapped_column(Integer, default=0)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True)

# ---------- Break ladders ----------

class RatingBreakSet(Base):
    __tablename__ = "rating_break_sets"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(120), unique=True)
    metric: Mapped[str] = mapped_column(String(12))   # weight/lf/skid
    unit: Mapped[str] = mapped_column(String(12))     # lb/kg/cwt/lf/skid
    method: Mapped[str] = mapped_column(String(12))   # step/extend
    description: Mapped[Optional[str]] = mapped_column(Text)
    # rounding_increment / rounding_direction
    meta: Mapped[Optional[dict]] = mapped_column(JSON, default=dict)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True)


class RatingBreak(Base):
    __tablename__ = "rating_breaks"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    break_set_id: Mapped[str] = mapped_column(String(64))
    min_metric: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    max_metric: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2))  # NULL = open-ended
    seq: Mapped[int] = mapped_column(Integer, default=0)

# ---------- NMFC tariffs ----------

class FreightClass(Base):
    __tablename__ = "freight_classes"

    id: Mapped[int] = mapped_column(primary_key=True)
    code: Mapped[str] = mapped_column(String(8), unique=True)
    description: Mapped[Optional[str]] = mapped_column(String(200))
    density_min: Mapped[Optional[Decimal]] = mapped_column(Numeric(8, 2))
    density_max: Mapped[Optional[Decimal]] = mapped_column(Numeric(8, 2))


class ClassPricingOverride(Base):
    """FAK mapping; customer-specific beats tariff-specific beats global (both NULL)."""

    __tablename__ = "class_pricing_overrides"

    id: Mapped[int] = mapped_column(primary_key=True)
    tariff_id: Mapped[Optional[str]] = mapped_column(String(64))
    customer_id: Mapped[Optional[str]] = mapped_column(String(64))
    from_class_code: Mapped[str] = mapped_column(String(8))
    to_class_code: Mapped[str] = mapped_column(String(8))
    effective_from: Mapped[Optional[datetime.date]] = mapped_column(Date)
    effective_to: Mapped[Optional[datetime.date]] = mapped_column(Date)


class Tariff(Base):
    __tablename__ = "tariffs"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(120))
    pricing_mode: Mapped[str] = mapped_column(String(24), default="explicit")  # explicit/base_discount
    break_set_id: Mapped[Optional[str]] = mapped_column(String(64))
    base_tariff_id: Mapped[Optional[str]] = mapped_column(String(64))
    discount_pct: Mapped[Optional[Decimal]] = mapped_column(Numeric(6, 2))
    amc: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2))
    fuel_surcharge_pct: Mapped[Optional[Decimal]] = mapped_column(Numeric(6, 2))
    method: Mapped[str] = mapped_column(String(12), default="step")
    currency: Mapped[Optional[str]] = mapped_column(String(3))


class RateMatrixEntry(Base):
    __tablename__ = "rate_matrix"

    id: Mapped[int] = mapped_column(primary_key=True)
    tariff_id: Mapped[str] = mapped_column(String(64))
    break_id: Mapped[str] = mapped_column(String(64))
    class_code: Mapped[str] = mapped_column(String(8))
    rate_value: Mapped[Decimal] = mapped_column(Numeric(12, 4))
    min_charge: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2))


class BaseRateMatrixEntry(Base):
    __tablename__ = "base_rate_matrix"

    id: Mapped[int] = mapped_column(primary_key=True)
    base_tariff_id: Mapped[str] = mapped_column(String(64))
    class_code: Mapped[str] = mapped_column(String(8))
    base_rate_cwt: Mapped[Decimal] = mapped_column(Numeric(12, 4))

# ---------- Normalized carrier configs ----------

class CarrierRateConfig(Base):
    """Terminal / skid rate cards imported per carrier (see rules.rate_card_loader)."""

    __tablename__ = "carrier_rate_configs"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    carrier_id: Mapped[str] = mapped_column(String(64))
    carrier_name: Mapped[Optional[str]] = mapped_column(String(120))
    config_name: Mapped[Optional[str]] = mapped_column(String(120))
    format: Mapped[str] = mapped_column(String(32))
    currency: Mapped[Optional[str]] = mapped_column(String(3))
    terminal_mapping: Mapped[Optional[list[dict[str, Any]]]] = mapped_column(JSON, default=list)
    terminal_rates: Mapped[Optional[list[dict[str, Any]]]] = mapped_column(JSON, default=list)
    skid_rates: Mapped[Optional[list[dict[str, Any]]]] = mapped_column(JSON, default=list)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True)
