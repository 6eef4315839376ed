from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from freight_rating.errors import InternalError
from freight_rating.models import CarrierZoneOverride, Region, Tariff
from freight_rating.store import SqlDocumentStore


def test_none_filter_matches_null_columns(session, store):
    session.add_all([
        Region(id="CA", code="CA", type="country"),
        Region(id="ON", code="ON", type="state_province", parent_region_id="CA"),
    ])
    session.commit()

    roots = store.query(Region, {"parent_region_id": None})
    assert [r.id for r in roots] == ["CA"]


def test_ordering_falls_back_to_primary_key(session, store):
    for code in ("ZA", "ZB", "ZC"):
        session.add(CarrierZoneOverride(
            carrier_id="X", origin_region_id="M5V", dest_region_id="V6B",
            zone_code=code, priority=5, enabled=True,
        ))
    session.commit()

    rows = store.query(CarrierZoneOverride, {"carrier_id": "X"}, order_by="priority", descending=True, limit=2)
    assert [r.zone_code for r in rows] == ["ZA", "ZB"]


def test_first_returns_none_when_empty(store):
    assert store.first(Tariff, {"id": "missing"}) is None
    assert store.get(Tariff, "missing") is None


def test_database_errors_become_internal_errors():
    session = MagicMock()
    session.execute.side_effect = OperationalError("SELECT 1", {}, Exception("connection reset"))
    session.get.side_effect = OperationalError("SELECT 1", {}, Exception("connection reset"))
    store = SqlDocumentStore(session)

    with pytest.raises(InternalError) as exc:
        store.query(Tariff, {"id": "T1"})
    assert exc.value.status_code == 500

    with pytest.raises(InternalError):
        store.get(Tariff, "T1")
