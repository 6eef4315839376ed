from __future__ import annotations

import os
from datetime import date

os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from freight_rating.models import (
    Base,
    CarrierZoneBinding,
    CarrierZoneOverride,
    Region,
    ZoneMapping,
    ZoneSet,
)
from freight_rating.store import SqlDocumentStore


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as s:
        yield s


@pytest.fixture
def store(session):
    return SqlDocumentStore(session)


@pytest.fixture
def zone_network(session):
    """Two provinces in Canada, one carrier bound to zone set ZS1.

    ZS1 maps M5V->V6B as Z1, ON->BC as Z4 and CA->CA as Z7.
    """
    session.add_all([
        Region(id="CA", code="CA", name="Canada", type="country"),
        Region(id="ON", code="ON", name="Ontario", type="state_province", parent_region_id="CA"),
        Region(id="BC", code="BC", name="British Columbia", type="state_province", parent_region_id="CA"),
        Region(id="M5V", code="M5V", type="fsa", parent_region_id="ON"),
        Region(id="K1A", code="K1A", type="fsa", parent_region_id="ON"),
        Region(id="V6B", code="V6B", type="fsa", parent_region_id="BC"),
        Region(id="V5K", code="V5K", type="fsa", parent_region_id="BC"),
        ZoneSet(id="ZS1", name="Canada LTL", geography="CA", version="2024.1", effective_from=date(2024, 1, 1)),
        CarrierZoneBinding(carrier_id="X", zone_set_id="ZS1", priority=1, enabled=True),
        ZoneMapping(zone_set_id="ZS1", origin_region_id="M5V", dest_region_id="V6B", zone_code="Z1"),
        ZoneMapping(zone_set_id="ZS1", origin_region_id="ON", dest_region_id="BC", zone_code="Z4"),
        ZoneMapping(zone_set_id="ZS1", origin_region_id="CA", dest_region_id="CA", zone_code="Z7"),
    ])
    session.commit()
    return session


@pytest.fixture
def add_override(session):
    def _add(zone_code: str, priority: int = 10, *, origin="M5V", dest="V6B", carrier="X", enabled=True, service_id=None, reason=None):
        row = CarrierZoneOverride(
            carrier_id=carrier,
            service_id=service_id,
            origin_region_id=origin,
            dest_region_id=dest,
            zone_code=zone_code,
            priority=priority,
            enabled=enabled,
            override_reason=reason,
        )
        session.add(row)
        session.commit()
        return row

    return _add


def shipment_payload(weight=250, quantity=2, length=48, width=40, height=48, **extra):
    payload = {
        "origin": {"city": "Toronto", "province": "ON", "postal_code": "M5V 3L9"},
        "destination": {"city": "Vancouver", "province": "BC", "postal_code": "V6B 1A1"},
        "packages": [
            {"weight": weight, "length": length, "width": width, "height": height, "quantity": quantity},
        ],
    }
    payload.update(extra)
    return payload


TERMINAL_CONFIG = {
    "id": "CFG-TERM",
    "carrier_id": "APEX",
    "carrier_name": "Apex Freight",
    "config_name": "Apex terminals",
    "format": "terminal_weight_based",
    "currency": "CAD",
    "terminal_mapping": [
        {"city": "TORONTO", "province": "ON", "terminal_code": "TOR", "terminal_name": "Toronto Hub"},
        {"city": "MISSISSAUGA", "province": "ON", "terminal_code": "MIS", "terminal_name": "Mississauga"},
        {"city": "VANCOUVER", "province": "BC", "terminal_code": "VAN", "terminal_name": "Vancouver Hub"},
    ],
    "terminal_rates": [
        {
            "origin_terminal": "TOR", "destination_terminal": "VAN",
            "weight_min": "0", "weight_max": "999.99", "rate_type": "PER_100LBS",
            "rate_value": "45.00", "min_charge": "150", "fuel_surcharge_pct": "20", "transit_days": 5,
        },
        {
            "origin_terminal": "TOR", "destination_terminal": "VAN",
            "weight_min": "1000", "weight_max": "5000", "rate_type": "PER_100LBS",
            "rate_value": "38.00", "min_charge": "150", "fuel_surcharge_pct": "20", "transit_days": 5,
        },
        {
            "origin_terminal": "MIS", "destination_terminal": "VAN",
            "weight_min": "0", "weight_max": "5000", "rate_type": "FLAT_RATE",
            "rate_value": "310", "min_charge": "0", "fuel_surcharge_pct": "0", "transit_days": 1,
        },
    ],
    "skid_rates": [],
}

SKID_CONFIG = {
    "id": "CFG-SKID",
    "carrier_id": "SIMPLE",
    "format": "skid_based",
    "currency": "CAD",
    "terminal_mapping": [],
    "terminal_rates": [],
    "skid_rates": [
        {"skid_count": 1, "rate": "100", "fuel_surcharge_pct": "10", "transit_days": 2},
        {"skid_count": 5, "rate": "400", "fuel_surcharge_pct": "10", "transit_days": 3},
    ],
}
