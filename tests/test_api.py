from __future__ import annotations

import base64
import io
from types import SimpleNamespace

import openpyxl
import pytest
from fastapi.testclient import TestClient

from conftest import SKID_CONFIG, shipment_payload
from freight_rating.api.main import app
from freight_rating.api.routes import get_db
from freight_rating.cache import CacheRegistry
from freight_rating.models import CarrierRateConfig


@pytest.fixture
def client(session, clock, monkeypatch):
    caches = CacheRegistry.from_settings(
        SimpleNamespace(
            zone_cache_max_size=100,
            zone_cache_ttl_minutes=60,
            rate_cache_max_size=100,
            rate_cache_ttl_minutes=15,
            carrier_config_cache_max_size=10,
            carrier_config_cache_ttl_minutes=120,
        ),
        clock,
    )
    monkeypatch.setattr(app.state, "caches", caches)

    def _db():
        yield session

    app.dependency_overrides[get_db] = _db
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    body = r.json()
    assert body["ok"] is True
    assert set(body["cache_stats"]) == {"zone", "rate", "carrier_config", "overall"}


def test_resolve_zone_and_cache_hit(client, zone_network):
    req = {"carrier_id": "X", "origin_postal": "M5V 3L9", "destination_postal": "V6B 1A1"}

    first = client.post("/api/v1/zones/resolve", json=req).json()
    second = client.post("/api/v1/zones/resolve", json=req).json()

    assert first["zone_code"] == "Z1"
    assert first["source"] == "base_zone_set"
    assert (first["cached"], second["cached"]) == (False, True)


def test_not_found_error_shape(client, zone_network):
    r = client.post(
        "/api/v1/zones/resolve",
        json={"carrier_id": "X", "origin_postal": "90210", "destination_postal": "10001"},
    )
    assert r.status_code == 404
    error = r.json()["error"]
    assert error["code"] == "not_found"
    assert error["message"] == "no zone mapping for route"
    assert error["details"]["origin"] == "902"


def test_invalid_argument_maps_to_422(client):
    r = client.post(
        "/api/v1/zones/resolve",
        json={"carrier_id": "", "origin_postal": "M5V", "destination_postal": "V6B"},
    )
    assert r.status_code == 422
    assert r.json()["error"]["code"] == "invalid_argument"


def test_normalized_rate_with_inline_config(client):
    r = client.post(
        "/api/v1/rates/normalized",
        json={"carrier_id": "SIMPLE", "shipment": shipment_payload(quantity=1), "config": SKID_CONFIG},
    )
    assert r.status_code == 200
    body = r.json()
    assert body["configuration"]["format"] == "skid_based"
    assert body["final_total"] == "110.00"
    assert [line["code"] for line in body["breakdown"]] == ["LINEHAUL", "FUEL", "ACCESSORIALS"]


def test_unimplemented_format_returns_501(client):
    config = dict(SKID_CONFIG, format="zone_matrix")
    r = client.post("/api/v1/rates/normalized", json={"carrier_id": "SIMPLE", "shipment": shipment_payload(), "config": config})
    assert r.status_code == 501
    assert r.json()["error"]["code"] == "unimplemented"


def test_freight_class_endpoint(client):
    payload = shipment_payload(weight=500, quantity=2, length=48, width=48, height=50)
    r = client.post("/api/v1/freight-class", json={"shipment": payload})
    assert r.status_code == 200
    # 1000 lb over 133.33 ft3 is 7.5 pcf
    assert r.json()["actual"] == "125"


def test_inline_break_evaluation(client):
    body = {
        "metric_value": 450,
        "definition": {
            "name": "quick",
            "metric": "weight",
            "unit": "lb",
            "method": "extend",
            "breaks": [{"min_metric": 0, "max_metric": 500}, {"min_metric": 500}],
        },
        "rates": {"1": {"rate_value": 1.0}, "2": {"rate_value": 0.8}},
    }
    r = client.post("/api/v1/breaks/evaluate", json=body)
    assert r.status_code == 200
    best = r.json()["best"]
    # 450 at $1 loses to the 500 lb break at $0.80
    assert best["break_id"] == "inline-2"
    assert best["charge"] == "400.00"


def test_break_evaluation_needs_a_ladder(client):
    r = client.post("/api/v1/breaks/evaluate", json={"metric_value": 1, "rates": {}})
    assert r.status_code == 422


def test_import_and_persist_skid_config(client, session):
    csv_text = "Skid_Count,Rate,Fuel_Surcharge_Pct,Transit_Days\n1,120,10,2\n3,300,10,3\n"
    r = client.post(
        "/api/v1/imports/carrier-config",
        json={
            "carrier_id": "SIMPLE",
            "format": "skid_based",
            "templates": {"skid_rates": {"filename": "skids.csv", "content": csv_text}},
            "persist": True,
        },
    )
    assert r.status_code == 200
    body = r.json()
    assert body["persisted"] is True
    assert body["summary"]["details"]["skid_range"] == "1-3 skids"
    assert session.get(CarrierRateConfig, body["config"]["id"]).carrier_id == "SIMPLE"

    rated = client.post("/api/v1/rates/normalized", json={"carrier_id": "SIMPLE", "shipment": shipment_payload()})
    assert rated.json()["base_total"] == "300.00"


def test_second_import_replaces_stored_config(client, session):
    def import_skids(rate):
        r = client.post(
            "/api/v1/imports/carrier-config",
            json={
                "carrier_id": "SIMPLE",
                "format": "skid_based",
                "templates": {"skid_rates": {"content": f"Skid_Count,Rate,Fuel_Surcharge_Pct\n3,{rate},10\n"}},
                "persist": True,
            },
        )
        assert r.status_code == 200
        return r.json()["config"]["id"]

    old_id = import_skids(300)
    client.post("/api/v1/rates/normalized", json={"carrier_id": "SIMPLE", "shipment": shipment_payload()})
    new_id = import_skids(250)

    rated = client.post("/api/v1/rates/normalized", json={"carrier_id": "SIMPLE", "shipment": shipment_payload()}).json()
    assert rated["configuration"]["id"] == new_id
    assert rated["base_total"] == "250.00"
    session.expire_all()
    assert session.get(CarrierRateConfig, old_id).enabled is False


def test_import_xlsx_upload(client):
    wb = openpyxl.Workbook()
    ws = wb.active
    ws.append(["Skid_Count", "Rate", "Fuel_Surcharge_Pct"])
    ws.append([2, 180, 5])
    buf = io.BytesIO()
    wb.save(buf)

    r = client.post(
        "/api/v1/imports/carrier-config",
        json={
            "carrier_id": "SIMPLE",
            "format": "skid_based",
            "templates": {
                "skid_rates": {
                    "filename": "skids.xlsx",
                    "content": base64.b64encode(buf.getvalue()).decode("ascii"),
                    "base64_encoded": True,
                }
            },
        },
    )
    assert r.status_code == 200
    assert r.json()["config"]["skid_rates"][0]["rate"] == "180"
    assert r.json()["persisted"] is False


def test_import_validation_errors(client):
    r = client.post(
        "/api/v1/imports/carrier-config",
        json={
            "carrier_id": "SIMPLE",
            "format": "skid_based",
            "templates": {"skid_rates": {"content": "Skid_Count,Rate,Fuel_Surcharge_Pct\n40,0,1\n"}},
        },
    )
    assert r.status_code == 422
    errors = r.json()["error"]["details"]["errors"]
    assert "skid_rates: Row 2: Skid count must be 1-26" in errors


def test_cache_admin_endpoints(client, zone_network, clock):
    warmed = client.post(
        "/api/v1/admin/cache/prewarm",
        json={"lanes": [
            {"carrier_id": "X", "origin_postal": "M5V 3L9", "destination_postal": "V6B 1A1"},
            {"carrier_id": "X", "origin_postal": "90210", "destination_postal": "10001"},
        ]},
    ).json()
    assert warmed == {"requested": 2, "prewarmed": 1}

    stats = client.get("/api/v1/admin/cache/stats").json()
    assert stats["zone"]["size"] == 1

    clock.advance(2 * 60 * 60)
    cleaned = client.post("/api/v1/admin/cache/cleanup", json={"cache_type": "zone"}).json()
    assert cleaned == {"removed": {"zone": 1}, "total_removed": 1}
