"""Tests for the revenue baseline HTTP API."""

import uuid
from datetime import UTC, datetime, time, timedelta
from decimal import Decimal

import pytest

from gate_engine.db.models.order import Order

pytestmark = pytest.mark.integration


async def _add_orders(session_factory, merchant_id, orders):
    async with session_factory() as session:
        for i, (created_at, revenue) in enumerate(orders):
            session.add(
                Order(
                    id=uuid.uuid4(),
                    merchant_id=merchant_id,
                    shopify_order_id=i + 1,
                    revenue=Decimal(str(revenue)),
                    created_at=created_at,
                )
            )
        await session.commit()


async def test_baseline_missing_is_404(client):
    assert (await client.get("/api/merchants/m-1/baseline")).status_code == 404

    response = await client.get("/api/merchants/m-1/baseline/compare", params={"date": "2026-03-04"})
    assert response.status_code == 404


async def test_recalculate_without_orders_is_provisional(client):
    response = await client.post("/api/merchants/m-1/baseline/recalculate")

    assert response.status_code == 200
    body = response.json()
    assert body["is_provisional"] is True
    assert body["data_points_used"] == 0
    assert set(body["baseline_by_dow"].values()) == {0.0}

    comparison = await client.get(
        "/api/merchants/m-1/baseline/compare",
        params={"date": "2026-03-04", "actual_revenue": 150},
    )
    assert comparison.json()["lift_percent"] is None


async def test_recalculate_and_compare(client, session_factory):
    today = datetime.now(UTC).date()
    noon = time(12, 0, tzinfo=UTC)
    await _add_orders(
        session_factory,
        "m-1",
        [
            (datetime.combine(today - timedelta(days=7), noon), 1000),
            (datetime.combine(today - timedelta(days=14), noon), 600),
            (datetime.combine(today - timedelta(days=14), noon) + timedelta(hours=1), 400),
        ],
    )

    recalculated = await client.post("/api/merchants/m-1/baseline/recalculate", json={"lookback_days": 30})
    assert recalculated.status_code == 200
    assert recalculated.json()["lookback_days"] == 30

    comparison = await client.get(
        "/api/merchants/m-1/baseline/compare",
        params={"date": today.isoformat(), "actual_revenue": 1200},
    )

    body = comparison.json()
    assert body["expected_revenue"] == 1000.0
    assert body["lift_percent"] == 20.0
    assert body["is_provisional"] is True


async def test_compare_uses_order_history_when_revenue_omitted(client, session_factory):
    today = datetime.now(UTC).date()
    noon = time(12, 0, tzinfo=UTC)
    await _add_orders(
        session_factory,
        "m-1",
        [
            (datetime.combine(today - timedelta(days=7), noon), 500),
            (datetime.combine(today, time(1, 0, tzinfo=UTC)), 250),
        ],
    )
    await client.post("/api/merchants/m-1/baseline/recalculate")

    response = await client.get("/api/merchants/m-1/baseline/compare", params={"date": today.isoformat()})

    body = response.json()
    assert body["actual_revenue"] == 250.0
    assert body["expected_revenue"] == 375.0
