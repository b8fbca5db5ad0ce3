"""HTTP-level tests for the subscription and admin routers."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "api"))

import uuid
from datetime import date, timedelta

import httpx
import pytest
import pytest_asyncio

from config import settings
from db.database import get_db, get_session_factory
from main import app
from services.scheduling import store_today
from factories import seed_subscription


@pytest_asyncio.fixture
async def client(session_factory):
    async def _get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


@pytest.mark.asyncio
async def test_health(client):
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "healthy"


@pytest.mark.asyncio
async def test_subscribe_and_read_back(client, session_factory):
    seed = await seed_subscription(
        session_factory, status="CANCELLED", balance="100.00", locked="0.00", with_reservation=False,
    )

    resp = await client.post("/api/subscriptions/", json={
        "customer_id": str(seed.customer_id),
        "plan_id": str(seed.plan_id),
        "payment_method": "WALLET",
        "shipping_address": "House 7, Road 2, Banani",
    })
    assert resp.status_code == 201
    created = resp.json()
    assert created["status"] == "ACTIVE"

    detail = (await client.get(f"/api/subscriptions/{created['id']}")).json()
    assert detail["id"] == created["id"]
    assert detail["next_delivery"] is None
    assert detail["can_pause_or_cancel"] is True
    assert detail["frequency"] == "MONTHLY"
    assert created["start_date"] == store_today(settings.RENEWAL_TIMEZONE).isoformat()


@pytest.mark.asyncio
async def test_unknown_subscription_is_404(client):
    resp = await client.get(f"/api/subscriptions/{uuid.uuid4()}")
    assert resp.status_code == 404
    assert resp.json()["detail"]["error"] == "SubscriptionNotFound"


@pytest.mark.asyncio
async def test_insufficient_funds_is_402(client, session_factory):
    seed = await seed_subscription(session_factory, balance="5.00", locked="0.00", with_reservation=False)

    resp = await client.post("/api/subscriptions/", json={
        "customer_id": str(seed.customer_id),
        "plan_id": str(seed.plan_id),
        "payment_method": "WALLET",
        "shipping_address": "House 7, Road 2, Banani",
    })
    assert resp.status_code == 402


@pytest.mark.asyncio
async def test_pause_resume_cancel_round(client, session_factory):
    seed = await seed_subscription(session_factory)
    base = f"/api/subscriptions/{seed.subscription_id}"

    assert (await client.post(f"{base}/pause")).json()["status"] == "PAUSED"
    assert (await client.post(f"{base}/resume")).json()["status"] == "ACTIVE"
    assert (await client.post(f"{base}/cancel", json={"customer_id": str(seed.customer_id)})).json()["status"] == "CANCELLED"

    resp = await client.post(f"{base}/resume")
    assert resp.status_code == 409
    assert resp.json()["detail"]["error"] == "InvalidStatusTransition"


@pytest.mark.asyncio
async def test_manual_renewal_run(client, session_factory):
    today = date(2026, 3, 10)
    await seed_subscription(session_factory, renewal_date=today - timedelta(days=1))

    resp = await client.post("/api/admin/renewals/run", params={"today": today.isoformat()})

    assert resp.status_code == 200
    body = resp.json()
    assert body["run_date"] == today.isoformat()
    assert (body["total"], body["successful"], body["failed"]) == (1, 1, 0)


@pytest.mark.asyncio
async def test_manual_renewal_run_defaults_to_store_date(client, session_factory):
    store_date = store_today(settings.RENEWAL_TIMEZONE)
    await seed_subscription(session_factory, renewal_date=store_date - timedelta(days=1))

    resp = await client.post("/api/admin/renewals/run")

    assert resp.status_code == 200
    body = resp.json()
    assert body["run_date"] == store_date.isoformat()
    assert body["successful"] == 1
