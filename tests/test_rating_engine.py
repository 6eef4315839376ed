from __future__ import annotations

from decimal import Decimal
from types import SimpleNamespace

import pytest

from conftest import SKID_CONFIG, TERMINAL_CONFIG, shipment_payload
from freight_rating.cache import CacheRegistry, Lane
from freight_rating.db import activate_carrier_config
from freight_rating.errors import NotFound
from freight_rating.models import CarrierRateConfig, RatingBreak, RatingBreakSet
from freight_rating.rules.breaks import RateCell
from freight_rating.rules.rating_engine import RatingEngine
from freight_rating.rules.zones import ZoneSource


@pytest.fixture
def caches(clock):
    settings = SimpleNamespace(
        zone_cache_max_size=100,
        zone_cache_ttl_minutes=60,
        rate_cache_max_size=100,
        rate_cache_ttl_minutes=15,
        carrier_config_cache_max_size=10,
        carrier_config_cache_ttl_minutes=120,
    )
    return CacheRegistry.from_settings(settings, clock)


@pytest.fixture
def rating_engine(store, caches):
    return RatingEngine(store, caches)


def test_zone_resolution_is_cached(zone_network, rating_engine, caches):
    first = rating_engine.resolve_zone("X", "M5V 3L9", "V6B 1A1")
    second = rating_engine.resolve_zone("X", "m5v", "v6b")

    assert first.cached is False
    assert second.cached is True
    assert second.zone_code == first.zone_code == "Z1"
    assert caches.zone.hits == 1


def test_cached_zone_survives_new_overrides_until_expiry(zone_network, rating_engine, add_override, clock):
    rating_engine.resolve_zone("X", "M5V", "V6B")
    add_override("Z9", priority=99)

    assert rating_engine.resolve_zone("X", "M5V", "V6B").zone_code == "Z1"
    clock.advance(61 * 60)
    fresh = rating_engine.resolve_zone("X", "M5V", "V6B")
    assert (fresh.zone_code, fresh.source, fresh.cached) == ("Z9", ZoneSource.CARRIER_OVERRIDE, False)


def test_zone_errors_are_not_cached(zone_network, rating_engine, caches):
    with pytest.raises(NotFound):
        rating_engine.resolve_zone("X", "90210", "10001")
    assert len(caches.zone) == 0


def test_prewarm_zones(zone_network, rating_engine, caches):
    lanes = [Lane("X", "M5V", "V6B"), Lane("X", "K1A", "V5K"), Lane("X", "902", "100")]

    assert rating_engine.prewarm_zones(lanes) == 2
    assert rating_engine.resolve_zone("X", "K1A", "V5K").cached is True


@pytest.fixture
def stored_configs(session):
    for cfg in (TERMINAL_CONFIG, SKID_CONFIG):
        session.add(CarrierRateConfig(**cfg))
    session.commit()
    return session


def test_load_config_caches_plain_dict(stored_configs, rating_engine, caches):
    config = rating_engine.load_config("APEX")

    assert isinstance(config, dict)
    assert config["format"] == "terminal_weight_based"
    assert rating_engine.load_config("APEX") is config
    assert caches.carrier_config.hits == 1


def test_load_config_missing_carrier(rating_engine):
    with pytest.raises(NotFound):
        rating_engine.load_config("GHOST")


def test_disabled_config_is_not_loaded(session, rating_engine):
    session.add(CarrierRateConfig(**dict(SKID_CONFIG, id="OFF", carrier_id="DORMANT", enabled=False)))
    session.commit()
    with pytest.raises(NotFound):
        rating_engine.load_config("DORMANT")


def test_stored_config_rate_is_cached_per_shipment(stored_configs, rating_engine, caches):
    first = rating_engine.calculate_rate("APEX", shipment_payload())
    second = rating_engine.calculate_rate("APEX", shipment_payload())
    heavier = rating_engine.calculate_rate("APEX", shipment_payload(weight=300))

    assert first.cached is False
    assert second.cached is True
    assert second.final_total == first.final_total == Decimal("270.00")
    assert heavier.cached is False
    assert len(caches.rate) == 2


def test_inline_config_bypasses_rate_cache(rating_engine, caches):
    inline = {k: v for k, v in SKID_CONFIG.items() if k != "id"}

    result = rating_engine.calculate_rate("SIMPLE", shipment_payload(), config=inline)
    again = rating_engine.calculate_rate("SIMPLE", shipment_payload(), config=inline)

    # two 48x40 skids round up to the 5-skid row
    assert result.base_total == Decimal("400.00")
    assert again.cached is False
    assert len(caches.rate) == 0


def test_evaluate_stored_break_set(session, rating_engine):
    session.add_all([
        RatingBreakSet(id="LB", name="Pounds", metric="weight", unit="lb", method="step", meta={}),
        RatingBreak(id="LB-1", break_set_id="LB", min_metric=Decimal("0"), max_metric=Decimal("500"), seq=1),
        RatingBreak(id="LB-2", break_set_id="LB", min_metric=Decimal("500"), max_metric=None, seq=2),
    ])
    session.commit()

    result = rating_engine.evaluate_break_set("LB", 600, {"LB-1": RateCell(Decimal("1")), "LB-2": RateCell(Decimal("0.8"))})

    assert result.best.break_id == "LB-2"
    assert result.charge == Decimal("480.00")


def test_evaluate_unknown_break_set(rating_engine):
    with pytest.raises(NotFound):
        rating_engine.evaluate_break_set("NOPE", 1, {})


def test_freight_class_for_unknown_tariff(rating_engine):
    with pytest.raises(NotFound):
        rating_engine.resolve_freight_class(shipment_payload(), tariff_id="NOPE")


def test_edited_inline_config_is_recomputed(rating_engine, caches):
    first = rating_engine.calculate_rate("SIMPLE", shipment_payload(), config=SKID_CONFIG)

    edited = dict(SKID_CONFIG, skid_rates=[
        {"skid_count": 1, "rate": "100", "fuel_surcharge_pct": "10", "transit_days": 2},
        {"skid_count": 5, "rate": "999", "fuel_surcharge_pct": "10", "transit_days": 3},
    ])
    second = rating_engine.calculate_rate("SIMPLE", shipment_payload(), config=edited)

    assert first.base_total == Decimal("400.00")
    assert second.base_total == Decimal("999.00")
    assert second.cached is False
    assert len(caches.rate) == 0


def test_reimported_config_replaces_the_old_one(session, rating_engine, caches):
    old = dict(SKID_CONFIG, id="b-old", enabled=True)
    new = dict(SKID_CONFIG, id="a-new", enabled=True, skid_rates=[
        {"skid_count": 5, "rate": "250", "fuel_surcharge_pct": "10", "transit_days": 3},
    ])

    assert activate_carrier_config(session, old) == 0
    assert rating_engine.calculate_rate("SIMPLE", shipment_payload()).base_total == Decimal("400.00")

    assert activate_carrier_config(session, new) == 1
    caches.carrier_config.delete("config|SIMPLE")

    result = rating_engine.calculate_rate("SIMPLE", shipment_payload())
    assert result.config_id == "a-new"
    assert result.base_total == Decimal("250.00")
    assert session.get(CarrierRateConfig, "b-old").enabled is False


def test_accessorials_are_part_of_the_rate_cache_key(stored_configs, rating_engine):
    plain = rating_engine.calculate_rate("SIMPLE", shipment_payload())
    liftgate = rating_engine.calculate_rate("SIMPLE", shipment_payload(accessorial_services=["liftgate"]))

    assert plain.cached is False
    assert liftgate.cached is False
    assert liftgate.breakdown[2].details["services"] == ["liftgate"]
