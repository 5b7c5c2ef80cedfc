"""
API tests for zone management, rider registry, dispatch and public tracking.
"""
from decimal import Decimal

from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from courier.app.services.geo import boundary_from_ring
from courier.tests.factories import ACCRA_POINT, ACCRA_RING, STORE_ID, make_order

BASE = f"/stores/{STORE_ID}"


# ============================================
# AUTH AND SERVICE ENDPOINTS
# ============================================

async def test_staff_routes_need_api_key(client: AsyncClient):
    response = await client.get(f"{BASE}/zones", headers={"X-Api-Key": "wrong"})
    assert response.status_code == 401


async def test_health(client: AsyncClient):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["checks"]["database"] == "ok"


async def test_metrics(client: AsyncClient):
    await client.get(f"{BASE}/zones")
    response = await client.get("/metrics")
    assert response.status_code == 200
    assert "http_requests_total" in response.text


# ============================================
# ZONES
# ============================================

async def test_create_zone_reports_every_invalid_field(client: AsyncClient):
    response = await client.post(f"{BASE}/zones", json={
        "name": "X",
        "delivery_fee": -1,
        "min_order_amount": 50,
        "free_delivery_threshold": 20,
        "estimated_time_minutes": 0,
    })
    assert response.status_code == 422
    errors = response.json()["detail"]["errors"]
    assert set(errors) == {"name", "delivery_fee", "free_delivery_threshold", "estimated_time_minutes"}


async def test_zone_lifecycle(client: AsyncClient):
    response = await client.post(f"{BASE}/zones", json={
        "name": "Central Accra",
        "delivery_fee": "15.00",
        "boundary": boundary_from_ring(ACCRA_RING),
    })
    assert response.status_code == 201
    zone = response.json()
    assert zone["color"] == "#FFD000"
    assert zone["estimated_time_minutes"] == 45

    response = await client.post(f"{BASE}/zones/resolve", json={"latitude": ACCRA_POINT[0], "longitude": ACCRA_POINT[1]})
    assert response.status_code == 200
    body = response.json()
    assert body["matched"] is True
    assert body["zone"]["id"] == zone["id"]
    assert Decimal(body["fee"]) == Decimal("15.00")

    response = await client.patch(f"{BASE}/zones/{zone['id']}", json={"is_active": False})
    assert response.status_code == 200
    response = await client.post(f"{BASE}/zones/resolve", json={"latitude": ACCRA_POINT[0], "longitude": ACCRA_POINT[1]})
    assert response.json()["matched"] is False

    response = await client.post(f"{BASE}/zones/{zone['id']}/duplicate")
    assert response.status_code == 201
    assert response.json()["name"] == "Central Accra (Copy)"

    response = await client.get(f"{BASE}/zones")
    assert len(response.json()) == 2


async def test_update_missing_zone(client: AsyncClient):
    response = await client.patch(f"{BASE}/zones/999", json={"name": "Nowhere"})
    assert response.status_code == 404


# ============================================
# RIDERS
# ============================================

async def test_rider_registry(client: AsyncClient):
    response = await client.post(f"{BASE}/riders", json={"name": "Kwame Mensah", "phone": "+233241110000"})
    assert response.status_code == 201
    rider = response.json()
    assert rider["status"] == "offline"

    response = await client.get(f"{BASE}/riders/available")
    assert response.json() == []

    response = await client.post(f"{BASE}/riders/{rider['id']}/presence", json={"online": True})
    assert response.json()["status"] == "available"

    response = await client.get(f"{BASE}/riders/available")
    assert [r["id"] for r in response.json()] == [rider["id"]]

    response = await client.post(f"{BASE}/riders/{rider['id']}/location", json={"latitude": 5.6, "longitude": -0.2})
    assert response.status_code == 200

    response = await client.post(f"{BASE}/riders", json={"name": "Yaw", "phone": "+233", "vehicle_type": "jet"})
    assert response.status_code == 422


# ============================================
# DISPATCH
# ============================================

async def test_dispatch_flow(client: AsyncClient, test_session: AsyncSession, zone, rider, fake_sender):
    order = await make_order(test_session, order_number="5001")

    response = await client.post(f"{BASE}/deliveries/assign", json={"order_id": order.id, "rider_id": rider.id})
    assert response.status_code == 201
    assignment = response.json()
    assert assignment["status"] == "assigned"
    assert Decimal(assignment["delivery_fee"]) == Decimal("15.00")
    assert Decimal(assignment["rider_earnings"]) == Decimal("10.50")

    # Rider is taken: a second order gets 409
    second = await make_order(test_session, order_number="5002")
    response = await client.post(f"{BASE}/deliveries/assign", json={"order_id": second.id, "rider_id": rider.id})
    assert response.status_code == 409

    url = f"{BASE}/deliveries/{assignment['id']}/status"
    response = await client.post(url, json={"status": "delivered"})
    assert response.status_code == 409

    response = await client.post(url, json={"status": "failed"})
    assert response.status_code == 422

    response = await client.post(url, json={"status": "accepted", "expected_status": "assigned"})
    assert response.status_code == 200
    response = await client.post(url, json={"status": "cancelled", "expected_status": "assigned"})
    assert response.status_code == 409

    response = await client.post(url, json={"status": "failed", "failure_reason": "customer unreachable"})
    assert response.status_code == 200
    assert response.json()["failure_reason"] == "customer unreachable"

    response = await client.post(url, json={"status": "accepted"})
    assert response.status_code == 409

    response = await client.post(
        f"{BASE}/deliveries/{assignment['id']}/failure-reason", json={"failure_reason": "wrong address"}
    )
    assert response.json()["failure_reason"] == "wrong address"

    response = await client.get(f"{BASE}/riders/available")
    assert [r["id"] for r in response.json()] == [rider.id]

    response = await client.get(f"{BASE}/deliveries", params={"status": "failed"})
    assert [a["id"] for a in response.json()] == [assignment["id"]]

    response = await client.get(f"{BASE}/deliveries/stats")
    assert response.status_code == 200
    assert response.json()["failed_today"] == 1


async def test_queue_and_rate(client: AsyncClient, test_session: AsyncSession, zone, rider):
    order = await make_order(test_session, order_number="6001")

    response = await client.post(f"{BASE}/deliveries", json={"order_id": order.id})
    assert response.status_code == 201
    pending = response.json()
    assert pending["status"] == "pending"

    response = await client.post(f"{BASE}/deliveries", json={"order_id": order.id})
    assert response.status_code == 409

    response = await client.post(f"{BASE}/deliveries/assign", json={"order_id": order.id, "rider_id": rider.id})
    assert response.json()["id"] == pending["id"]

    url = f"{BASE}/deliveries/{pending['id']}/status"
    for status in ("accepted", "picked_up", "in_transit", "delivered"):
        response = await client.post(url, json={"status": status})
        assert response.status_code == 200

    response = await client.post(f"{BASE}/deliveries/{pending['id']}/rating", json={"rating": 5})
    assert response.json()["customer_rating"] == 5
    response = await client.post(f"{BASE}/deliveries/{pending['id']}/rating", json={"rating": 4})
    assert response.status_code == 409


async def test_unknown_assignment(client: AsyncClient):
    response = await client.get(f"{BASE}/deliveries/404")
    assert response.status_code == 404


# ============================================
# PUBLIC TRACKING
# ============================================

async def test_public_tracking(client: AsyncClient, test_session: AsyncSession, zone, rider):
    order = await make_order(test_session, order_number="7001")

    response = await client.post(f"{BASE}/orders/{order.id}/tracking-code")
    assert response.status_code == 200
    code = response.json()["tracking_code"]
    assert response.json()["tracking_url"] == f"https://track.test/t/{code}"

    await client.post(f"{BASE}/deliveries/assign", json={"order_id": order.id, "rider_id": rider.id})

    # No staff key on the public page
    response = await client.get(f"/track/{code.lower()}", headers={"X-Api-Key": ""})
    assert response.status_code == 200
    body = response.json()
    assert body["order_number"] == "7001"
    assert body["delivery_status"] == "assigned"
    assert body["rider_name"] == "Kwame"
    assert body["estimated_time_minutes"] == 30

    response = await client.get("/track/ZZZZ9999")
    assert response.status_code == 404
