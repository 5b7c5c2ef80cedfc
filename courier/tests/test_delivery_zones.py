"""
Tests for the zone catalog: validation, coordinate resolution, fee quotes,
duplication and partial updates.
"""
from decimal import Decimal

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from courier.app.services.delivery_zones import (
    DeliveryZoneService,
    ZoneNotFound,
    ZoneValidationError,
    collect_zone_errors,
    pick_zone_color,
    quote_fee,
    validate_zone,
)
from courier.app.services.geo import boundary_from_ring
from courier.tests.factories import ACCRA_POINT, ACCRA_RING, STORE_ID, make_zone

OSU_RING = [(5.54, -0.20), (5.54, -0.16), (5.58, -0.16), (5.58, -0.20)]
OSU_POINT = (5.56, -0.18)


def zone_input(**overrides):
    data = {
        "name": "Osu",
        "delivery_fee": "12.00",
        "min_order_amount": "50.00",
        "estimated_time_minutes": 30,
        "boundary": boundary_from_ring(OSU_RING),
    }
    data.update(overrides)
    return data


# ============================================
# VALIDATION
# ============================================

class TestValidateZone:
    def test_valid_input(self):
        assert validate_zone(zone_input()) is None

    def test_threshold_equal_to_min_order_rejected(self):
        error = validate_zone(zone_input(free_delivery_threshold="50.00"))
        assert error.field == "free_delivery_threshold"

    def test_threshold_below_min_order_rejected(self):
        error = validate_zone(zone_input(free_delivery_threshold="20.00"))
        assert error.field == "free_delivery_threshold"

    def test_threshold_above_min_order_accepted(self):
        assert validate_zone(zone_input(free_delivery_threshold="50.01")) is None

    def test_threshold_without_min_order_compares_against_zero(self):
        assert validate_zone(zone_input(min_order_amount=None, free_delivery_threshold="0")).field == (
            "free_delivery_threshold"
        )
        assert validate_zone(zone_input(min_order_amount=None, free_delivery_threshold="1")) is None

    @pytest.mark.parametrize("name", ["", "   ", "A", None])
    def test_bad_name(self, name):
        assert validate_zone(zone_input(name=name)).field == "name"

    @pytest.mark.parametrize("fee", [None, "-0.01", "abc"])
    def test_bad_fee(self, fee):
        assert validate_zone(zone_input(delivery_fee=fee)).field == "delivery_fee"

    def test_zero_fee_allowed(self):
        assert validate_zone(zone_input(delivery_fee="0")) is None

    def test_negative_min_order(self):
        assert validate_zone(zone_input(min_order_amount="-1")).field == "min_order_amount"

    @pytest.mark.parametrize("minutes", [0, -5, "soon"])
    def test_bad_minutes(self, minutes):
        assert validate_zone(zone_input(estimated_time_minutes=minutes)).field == "estimated_time_minutes"

    def test_missing_minutes_uses_default(self):
        data = zone_input()
        del data["estimated_time_minutes"]
        assert validate_zone(data) is None

    @pytest.mark.parametrize("boundary", [
        {"type": "Polygon", "coordinates": [[[0, 0], [1, 1], [0, 0]]]},
        {"type": "Polygon", "coordinates": [[[0, 0], [0, 0], [0, 0], [0, 0]]]},
        {"type": "Polygon", "coordinates": [[[0, 0], [1, 1], [2, 2], [0, 0]]]},
        {"type": "Polygon", "coordinates": [[["x", 0], [1, 1], [2, 0]]]},
        {"type": "Point", "coordinates": [0, 0]},
    ])
    def test_bad_boundary(self, boundary):
        assert validate_zone(zone_input(boundary=boundary)).field == "boundary"

    def test_no_boundary_is_valid(self):
        assert validate_zone(zone_input(boundary=None)) is None

    def test_first_error_follows_field_order(self):
        error = validate_zone(zone_input(name="", delivery_fee="-1"))
        assert error.field == "name"

    def test_collect_reports_every_field(self):
        errors = collect_zone_errors({
            "name": "X",
            "delivery_fee": "-1",
            "min_order_amount": "100",
            "free_delivery_threshold": "10",
            "estimated_time_minutes": 0,
            "boundary": {"type": "Polygon", "coordinates": [[[0, 0], [1, 1]]]},
        })
        assert {e.field for e in errors} == {
            "name", "delivery_fee", "free_delivery_threshold", "estimated_time_minutes", "boundary",
        }


# ============================================
# FEE QUOTES
# ============================================

class TestQuoteFee:
    async def test_plain_fee_without_total(self, test_session: AsyncSession):
        zone = await make_zone(test_session, fee="15.00")
        quote = quote_fee(zone)
        assert quote.fee == Decimal("15.00")
        assert quote.free_delivery is False

    async def test_free_delivery_at_threshold(self, test_session: AsyncSession):
        zone = await make_zone(test_session, fee="15.00", min_order_amount="20", free_delivery_threshold=Decimal("200"))
        assert quote_fee(zone, Decimal("199.99")).fee == Decimal("15.00")
        quote = quote_fee(zone, Decimal("200"))
        assert quote.fee == Decimal("0")
        assert quote.free_delivery is True

    async def test_minimum_order_flag(self, test_session: AsyncSession):
        zone = await make_zone(test_session, min_order_amount="50")
        assert quote_fee(zone, Decimal("49.99")).meets_minimum is False
        assert quote_fee(zone, Decimal("50")).meets_minimum is True


def test_pick_zone_color_skips_used_colors():
    assert pick_zone_color([]) == "#FFD000"
    assert pick_zone_color(["#FFD000", None]) == "#FF9500"


# ============================================
# SERVICE
# ============================================

async def test_create_zone_picks_unused_color(test_session: AsyncSession):
    service = DeliveryZoneService(test_session)
    first = await service.create_zone(STORE_ID, zone_input(name="Osu"))
    second = await service.create_zone(STORE_ID, zone_input(name="Labone"))
    await test_session.commit()
    assert first.color != second.color
    assert first.min_order_amount == Decimal("50.00")


async def test_create_zone_raises_all_errors(test_session: AsyncSession):
    service = DeliveryZoneService(test_session)
    with pytest.raises(ZoneValidationError) as exc_info:
        await service.create_zone(STORE_ID, {"name": "", "delivery_fee": "-3"})
    assert set(exc_info.value.as_dict()) == {"name", "delivery_fee"}
    assert exc_info.value.status_code == 422
    assert await service.get_zones(STORE_ID) == []


async def test_resolve_matches_containing_zone(test_session: AsyncSession):
    zone = await make_zone(test_session, name="Central", ring=ACCRA_RING)
    match = await DeliveryZoneService(test_session).resolve(STORE_ID, *ACCRA_POINT)
    assert match.matched is True
    assert match.zone.id == zone.id
    assert match.fee == Decimal("15.00")


async def test_resolve_overlap_prefers_lowest_id(test_session: AsyncSession):
    wide = await make_zone(test_session, name="Greater Accra", fee="20.00", ring=ACCRA_RING)
    await make_zone(test_session, name="Osu", fee="8.00", ring=OSU_RING)
    match = await DeliveryZoneService(test_session).resolve(STORE_ID, *OSU_POINT)
    assert match.zone.id == wide.id
    assert match.fee == Decimal("20.00")


async def test_resolve_skips_inactive_and_unbounded_zones(test_session: AsyncSession):
    await make_zone(test_session, name="Old", ring=ACCRA_RING, is_active=False)
    await make_zone(test_session, name="Manual only")
    osu = await make_zone(test_session, name="Osu", fee="8.00", ring=OSU_RING)
    service = DeliveryZoneService(test_session)

    match = await service.resolve(STORE_ID, *OSU_POINT)
    assert match.zone.id == osu.id

    miss = await service.resolve(STORE_ID, *ACCRA_POINT)
    assert miss.matched is False
    assert miss.zone is None
    assert miss.fee is None


async def test_resolve_is_scoped_to_store(test_session: AsyncSession):
    await make_zone(test_session, ring=ACCRA_RING, store_id="other-store")
    match = await DeliveryZoneService(test_session).resolve(STORE_ID, *ACCRA_POINT)
    assert match.matched is False


async def test_resolve_applies_free_delivery(test_session: AsyncSession):
    await make_zone(test_session, ring=ACCRA_RING, free_delivery_threshold=Decimal("300"))
    service = DeliveryZoneService(test_session)
    match = await service.resolve(STORE_ID, *ACCRA_POINT, order_total=Decimal("350"))
    assert match.fee == Decimal("0")
    assert match.free_delivery is True


async def test_duplicate_zone(test_session: AsyncSession):
    source = await make_zone(test_session, name="Osu", ring=OSU_RING, color="#34C759")
    copy = await DeliveryZoneService(test_session).duplicate_zone(source.id, STORE_ID)
    await test_session.commit()
    assert copy.id != source.id
    assert copy.name == "Osu (Copy)"
    assert copy.is_active is False
    assert copy.boundary == source.boundary
    assert copy.color == source.color
    assert copy.delivery_fee == source.delivery_fee


async def test_duplicate_missing_zone(test_session: AsyncSession):
    with pytest.raises(ZoneNotFound):
        await DeliveryZoneService(test_session).duplicate_zone(999, STORE_ID)


async def test_update_validates_merged_zone(test_session: AsyncSession):
    service = DeliveryZoneService(test_session)
    zone = await service.create_zone(STORE_ID, zone_input(free_delivery_threshold="150"))
    await test_session.commit()

    with pytest.raises(ZoneValidationError) as exc_info:
        await service.update_zone(zone.id, STORE_ID, {"min_order_amount": "200"})
    assert "free_delivery_threshold" in exc_info.value.as_dict()

    updated = await service.update_zone(zone.id, STORE_ID, {"delivery_fee": "9.50", "name": "  Osu East "})
    await test_session.commit()
    assert updated.delivery_fee == Decimal("9.50")
    assert updated.name == "Osu East"
    assert updated.min_order_amount == Decimal("50.00")


async def test_get_zone_other_store_not_found(test_session: AsyncSession):
    zone = await make_zone(test_session, store_id="other-store")
    with pytest.raises(ZoneNotFound):
        await DeliveryZoneService(test_session).get_zone(zone.id, STORE_ID)
