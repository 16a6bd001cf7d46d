"""
Integration tests for the REST API endpoints.

The routes run against the in-memory core from ``conftest``: the
lifecycle / ledger / policy dependencies are overridden, so no database
or Redis is needed.  Money comes back as decimal strings.
"""

from __future__ import annotations

from decimal import Decimal
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from ridecore.api.app import create_app
from ridecore.api.dependencies import get_ledger, get_lifecycle, get_policies
from ridecore.api.middleware import limiter
from tests.conftest import ROSEBANK, SANDTON, Core

PICKUP = {"latitude": SANDTON.latitude, "longitude": SANDTON.longitude, "address": SANDTON.address}
DESTINATION = {
    "latitude": ROSEBANK.latitude,
    "longitude": ROSEBANK.longitude,
    "address": ROSEBANK.address,
}


def _client_for(core: Core) -> AsyncClient:
    app = create_app()
    app.dependency_overrides[get_lifecycle] = lambda: core.lifecycle
    app.dependency_overrides[get_ledger] = lambda: core.ledger
    app.dependency_overrides[get_policies] = lambda: core.policies
    limiter.reset()
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


@pytest_asyncio.fixture
async def client(core) -> AsyncGenerator[AsyncClient, None]:
    async with _client_for(core) as ac:
        yield ac


@pytest_asyncio.fixture
async def client_without_policy(core_without_policy) -> AsyncGenerator[AsyncClient, None]:
    async with _client_for(core_without_policy) as ac:
        yield ac


async def _create_ride(client: AsyncClient, **extra) -> dict:
    resp = await client.post(
        "/api/v1/rides",
        json={
            "passenger_id": "p1",
            "pickup": PICKUP,
            "destination": DESTINATION,
            "vehicle_class": "standard",
            **extra,
        },
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


# ── Rides ─────────────────────────────────────────────────────────────


class TestRideEndpoints:
    @pytest.mark.asyncio
    async def test_estimate(self, client):
        resp = await client.post(
            "/api/v1/rides/estimate",
            json={"pickup": PICKUP, "destination": DESTINATION, "vehicle_class": "premium"},
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["vehicle_class"] == "premium"
        assert data["currency"] == "ZAR"
        assert Decimal(data["total_fare"]) >= Decimal("70")
        assert data["surge_multiplier"] == 1.0

    @pytest.mark.asyncio
    async def test_create_ride(self, client):
        data = await _create_ride(client, payment_method="wallet")
        assert data["status"] == "pending"
        assert data["driver_id"] is None
        assert data["payment"]["method"] == "wallet"
        assert data["payment"]["status"] == "pending"
        assert data["payment"]["amount"] == data["pricing"]["total_fare"]
        assert data["pickup"]["address"] == "Sandton City"
        assert data["cancellation"] is None

    @pytest.mark.asyncio
    async def test_idempotent_create(self, client):
        first = await _create_ride(client, idempotency_key="abc-123")
        second = await _create_ride(client, idempotency_key="abc-123")
        assert first["id"] == second["id"]

    @pytest.mark.asyncio
    async def test_create_unknown_passenger(self, client):
        resp = await client.post(
            "/api/v1/rides",
            json={"passenger_id": "ghost", "pickup": PICKUP, "destination": DESTINATION},
        )
        assert resp.status_code == 422
        assert resp.json()["error"] == "ValidationError"

    @pytest.mark.asyncio
    async def test_invalid_coordinates_rejected(self, client):
        resp = await client.post(
            "/api/v1/rides",
            json={
                "passenger_id": "p1",
                "pickup": {"latitude": 200, "longitude": 28.0},
                "destination": DESTINATION,
            },
        )
        assert resp.status_code == 422

    @pytest.mark.asyncio
    async def test_get_missing_ride(self, client):
        resp = await client.get("/api/v1/rides/does-not-exist")
        assert resp.status_code == 404
        assert resp.json()["error"] == "RideNotFound"

    @pytest.mark.asyncio
    async def test_full_trip(self, client):
        ride = await _create_ride(client)
        ride_id = ride["id"]

        resp = await client.post(f"/api/v1/rides/{ride_id}/assign", json={"driver_id": "d1"})
        assert resp.status_code == 200
        assert resp.json()["status"] == "accepted"
        assert resp.json()["driver_id"] == "d1"

        for status in ("driver_en_route", "arrived", "in_progress"):
            resp = await client.post(
                f"/api/v1/rides/{ride_id}/advance", json={"status": status}
            )
            assert resp.status_code == 200
            assert resp.json()["status"] == status

        resp = await client.post(
            f"/api/v1/rides/{ride_id}/advance",
            json={"status": "completed", "actual_distance_km": 6.0, "actual_duration_min": 15},
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "completed"
        assert Decimal(data["pricing"]["total_fare"]) == Decimal("105.50")
        assert data["payment"]["status"] == "paid"
        assert data["payment"]["receipt_number"].startswith("RCPT-")

        resp = await client.get(f"/api/v1/rides/{ride_id}")
        assert resp.json()["timestamps"]["completed"] is not None

    @pytest.mark.asyncio
    async def test_assign_busy_driver(self, client):
        first = await _create_ride(client)
        second = await _create_ride(client)
        await client.post(f"/api/v1/rides/{first['id']}/assign", json={"driver_id": "d1"})

        resp = await client.post(
            f"/api/v1/rides/{second['id']}/assign", json={"driver_id": "d1"}
        )
        assert resp.status_code == 409
        assert resp.json()["error"] == "DriverUnavailable"

    @pytest.mark.asyncio
    async def test_skipping_a_status_conflicts(self, client):
        ride = await _create_ride(client)
        resp = await client.post(
            f"/api/v1/rides/{ride['id']}/advance", json={"status": "completed"}
        )
        assert resp.status_code == 409
        assert resp.json()["error"] == "InvalidTransition"

    @pytest.mark.asyncio
    async def test_cancel_within_free_window(self, client):
        ride = await _create_ride(client)
        resp = await client.post(
            f"/api/v1/rides/{ride['id']}/cancel",
            json={"cancelled_by": "passenger", "reason": "Found another ride"},
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "cancelled"
        assert data["cancellation"]["free_cancellation"] is True
        assert Decimal(data["cancellation"]["fee"]) == 0
        assert data["cancellation"]["policy_name"] == "Standard Cancellation Policy"

        again = await client.post(
            f"/api/v1/rides/{ride['id']}/cancel",
            json={"cancelled_by": "passenger", "reason": "Twice"},
        )
        assert again.status_code == 409
        assert again.json()["error"] == "AlreadyTerminal"

    @pytest.mark.asyncio
    async def test_cancel_unknown_role_rejected(self, client):
        ride = await _create_ride(client)
        resp = await client.post(
            f"/api/v1/rides/{ride['id']}/cancel",
            json={"cancelled_by": "dispatcher", "reason": "x"},
        )
        assert resp.status_code == 422

    @pytest.mark.asyncio
    async def test_cancel_without_policy(self, client_without_policy):
        ride = await _create_ride(client_without_policy)
        resp = await client_without_policy.post(
            f"/api/v1/rides/{ride['id']}/cancel",
            json={"cancelled_by": "passenger", "reason": "Changed plans"},
        )
        assert resp.status_code == 503
        assert resp.json()["error"] == "PolicyMissing"

    @pytest.mark.asyncio
    async def test_capture_wallet_ride(self, client):
        await client.post("/api/v1/wallets/p1/top-up", json={"amount": "500"})
        ride = await _create_ride(client, payment_method="wallet")

        resp = await client.post(f"/api/v1/rides/{ride['id']}/capture")
        assert resp.status_code == 200
        payment = resp.json()["payment"]
        assert payment["status"] == "paid"
        assert payment["captured_amount"] == payment["amount"]

    @pytest.mark.asyncio
    async def test_capture_wallet_ride_without_funds(self, client):
        ride = await _create_ride(client, payment_method="wallet")
        resp = await client.post(f"/api/v1/rides/{ride['id']}/capture")
        assert resp.status_code == 402
        assert resp.json()["error"] == "InsufficientFunds"

    @pytest.mark.asyncio
    async def test_capture_cash_rejected(self, client):
        ride = await _create_ride(client)
        resp = await client.post(f"/api/v1/rides/{ride['id']}/capture")
        assert resp.status_code == 422

    @pytest.mark.asyncio
    async def test_settle_requires_completed_ride(self, client):
        ride = await _create_ride(client)
        resp = await client.post(f"/api/v1/rides/{ride['id']}/settle", json={})
        assert resp.status_code == 409

    @pytest.mark.asyncio
    async def test_refund_requires_cancelled_ride(self, client):
        ride = await _create_ride(client)
        resp = await client.post(f"/api/v1/rides/{ride['id']}/refund")
        assert resp.status_code == 409


# ── Wallets ───────────────────────────────────────────────────────────


class TestWalletEndpoints:
    @pytest.mark.asyncio
    async def test_top_up_and_balance(self, client):
        resp = await client.post(
            "/api/v1/wallets/p1/top-up", json={"amount": "100", "reference": "card-001"}
        )
        assert resp.status_code == 201
        txn = resp.json()
        assert txn["type"] == "topup"
        assert Decimal(txn["amount"]) == Decimal("100")
        assert txn["reference"] == "card-001"

        resp = await client.get("/api/v1/wallets/p1")
        assert resp.status_code == 200
        assert Decimal(resp.json()["balance"]) == Decimal("100")
        assert resp.json()["currency"] == "ZAR"

    @pytest.mark.asyncio
    async def test_withdraw_beyond_balance(self, client):
        await client.post("/api/v1/wallets/p1/top-up", json={"amount": "20"})
        resp = await client.post("/api/v1/wallets/p1/withdraw", json={"amount": "50"})
        assert resp.status_code == 402
        assert resp.json()["error"] == "InsufficientFunds"

    @pytest.mark.asyncio
    async def test_withdraw(self, client):
        await client.post("/api/v1/wallets/p1/top-up", json={"amount": "80"})
        resp = await client.post("/api/v1/wallets/p1/withdraw", json={"amount": "30"})
        assert resp.status_code == 201
        assert Decimal(resp.json()["amount"]) == Decimal("-30")
        assert Decimal(resp.json()["balance_after"]) == Decimal("50")

    @pytest.mark.asyncio
    async def test_non_positive_amount_rejected(self, client):
        resp = await client.post("/api/v1/wallets/p1/top-up", json={"amount": "0"})
        assert resp.status_code == 422

    @pytest.mark.asyncio
    async def test_transactions_newest_first(self, client):
        for ref in ("a", "b", "c"):
            await client.post(
                "/api/v1/wallets/p1/top-up", json={"amount": "10", "reference": ref}
            )
        resp = await client.get("/api/v1/wallets/p1/transactions", params={"limit": 2})
        assert resp.status_code == 200
        assert [t["reference"] for t in resp.json()] == ["c", "b"]

    @pytest.mark.asyncio
    async def test_verify(self, client):
        await client.post("/api/v1/wallets/p1/top-up", json={"amount": "10"})
        resp = await client.get("/api/v1/wallets/p1/verify")
        assert resp.status_code == 200
        assert resp.json() == {"user_id": "p1", "consistent": True}


# ── Admin ─────────────────────────────────────────────────────────────


class TestAdminEndpoints:
    @pytest.mark.asyncio
    async def test_active_policy(self, client):
        resp = await client.get("/api/v1/admin/cancellation-policy")
        assert resp.status_code == 200
        data = resp.json()
        assert data["name"] == "Standard Cancellation Policy"
        assert data["free_cancellation_window"] == 2
        assert len(data["rules"]) == 4
        assert data["rules"][0]["fee_type"] == "fixed"
        assert data["rules"][1]["applies_to"] == "passenger"

    @pytest.mark.asyncio
    async def test_policy_missing(self, client_without_policy):
        resp = await client_without_policy.get("/api/v1/admin/cancellation-policy")
        assert resp.status_code == 503

    @pytest.mark.asyncio
    async def test_rates(self, client):
        resp = await client.get("/api/v1/admin/rates")
        assert resp.status_code == 200
        classes = {r["vehicle_class"]: r for r in resp.json()}
        assert set(classes) == {"standard", "premium", "luxury"}
        assert Decimal(classes["standard"]["minimum_fare"]) == Decimal("35")

    @pytest.mark.asyncio
    async def test_health(self, client):
        resp = await client.get("/api/v1/admin/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}
