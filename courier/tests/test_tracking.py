"""Tests for tracking code generation and assignment."""
import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from courier.app.core.constants import TRACKING_ALPHABET, TRACKING_CODE_LENGTH
from courier.app.services.tracking import (
    OrderNotFound,
    TrackingCodeExhausted,
    TrackingService,
    generate_tracking_code,
)
from courier.tests.factories import STORE_ID, make_order


def scripted(*codes):
    """Generator stand-in that returns the given codes in order."""
    remaining = list(codes)
    return lambda: remaining.pop(0)


def test_generated_codes_use_unambiguous_alphabet():
    for _ in range(200):
        code = generate_tracking_code()
        assert len(code) == TRACKING_CODE_LENGTH
        assert set(code) <= set(TRACKING_ALPHABET)
        assert not set(code) & set("IO01")


def test_generated_codes_vary():
    assert len({generate_tracking_code() for _ in range(50)}) > 45


async def test_assign_tracking_code(test_session: AsyncSession):
    order = await make_order(test_session)
    code = await TrackingService(test_session, generator=scripted("ABCD2345")).assign_tracking_code(order.id, STORE_ID)
    assert code == "ABCD2345"
    await test_session.refresh(order)
    assert order.tracking_code == "ABCD2345"


async def test_existing_code_is_kept(test_session: AsyncSession):
    order = await make_order(test_session, tracking_code="KEEP2345")
    service = TrackingService(test_session, generator=scripted("NEW23456"))
    assert await service.assign_tracking_code(order.id, STORE_ID) == "KEEP2345"


async def test_collision_is_regenerated(test_session: AsyncSession):
    await make_order(test_session, order_number="1", tracking_code="TAKEN234")
    order = await make_order(test_session, order_number="2")
    service = TrackingService(test_session, generator=scripted("TAKEN234", "TAKEN234", "FRESH234"))
    assert await service.assign_tracking_code(order.id, STORE_ID) == "FRESH234"


async def test_exhausted_attempts(test_session: AsyncSession):
    await make_order(test_session, order_number="1", tracking_code="TAKEN234")
    service = TrackingService(test_session, generator=lambda: "TAKEN234", max_attempts=3)
    with pytest.raises(TrackingCodeExhausted) as exc_info:
        await service.new_unique_code()
    assert exc_info.value.status_code == 409


async def test_lookup_by_code_is_case_insensitive(test_session: AsyncSession):
    order = await make_order(test_session, tracking_code="WXYZ5678")
    found = await TrackingService(test_session).get_by_tracking_code("  wxyz5678 ")
    assert found.id == order.id


async def test_unknown_code(test_session: AsyncSession):
    with pytest.raises(OrderNotFound):
        await TrackingService(test_session).get_by_tracking_code("NOPE2345")


async def test_order_from_other_store(test_session: AsyncSession):
    order = await make_order(test_session, store_id="other-store")
    with pytest.raises(OrderNotFound):
        await TrackingService(test_session).assign_tracking_code(order.id, STORE_ID)
