"""Tests for health checks and correlation ID handling."""

import uuid

import pytest
from fastapi.testclient import TestClient

from gate_engine.main import app

pytestmark = pytest.mark.integration


def test_health():
    client = TestClient(app)

    response = client.get("/api/health")

    assert response.status_code == 200
    assert response.json() == {"status": "healthy", "service": "gate-engine"}


def test_response_includes_correlation_id_header():
    client = TestClient(app)

    response = client.get("/api/health")

    uuid.UUID(response.headers["x-request-id"])


def test_custom_correlation_id_echoed():
    client = TestClient(app)

    response = client.get("/api/health", headers={"X-Request-ID": "custom-id-123"})

    assert response.headers["x-request-id"] == "custom-id-123"


async def test_ready_with_database_and_redis(client, monkeypatch):
    import fakeredis.aioredis

    from gate_engine.db import redis as redis_db

    monkeypatch.setattr(redis_db, "_client", fakeredis.aioredis.FakeRedis(decode_responses=True))

    response = await client.get("/api/ready")

    assert response.status_code == 200
    assert response.json() == {"status": "ready", "checks": {"database": True, "redis": True}}


async def test_ready_degraded_without_redis(client, monkeypatch):
    from gate_engine.db import redis as redis_db

    monkeypatch.setattr(redis_db, "_client", None)

    response = await client.get("/api/ready")

    assert response.status_code == 503
    assert response.json()["checks"] == {"database": True, "redis": False}
