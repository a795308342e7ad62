"""Tests for the shared Redis client and readiness reporting."""

import fakeredis.aioredis
import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from gate_engine.db import redis as redis_db

pytestmark = pytest.mark.unit


@pytest.fixture
def fake_redis(monkeypatch):
    client = fakeredis.aioredis.FakeRedis(decode_responses=True)
    monkeypatch.setattr(redis_db, "_client", client)
    return client


@pytest.fixture
def no_redis(monkeypatch):
    monkeypatch.setattr(redis_db, "_client", None)


def test_get_redis_before_init_raises(no_redis):
    with pytest.raises(RuntimeError, match="not connected"):
        redis_db.get_redis()


async def test_ping_without_client_is_false(no_redis):
    assert await redis_db.ping_redis() is False


async def test_ping_with_client_is_true(fake_redis):
    assert await redis_db.ping_redis() is True
    assert redis_db.get_redis() is fake_redis


async def test_ping_failure_reported_as_false(fake_redis, monkeypatch):
    async def broken_ping():
        raise RedisConnectionError("connection reset")

    monkeypatch.setattr(fake_redis, "ping", broken_ping)

    assert await redis_db.ping_redis() is False


async def test_init_applies_pool_settings(no_redis, monkeypatch):
    created = {}
    client = fakeredis.aioredis.FakeRedis(decode_responses=True)

    def from_url(url, **kwargs):
        created["url"] = url
        created.update(kwargs)
        return client

    monkeypatch.setattr(redis_db.redis, "from_url", from_url)

    result = await redis_db.init_redis("redis://cache:6379/3")

    assert result is client
    assert created["url"] == "redis://cache:6379/3"
    assert created["max_connections"] == redis_db.get_settings().redis_max_connections
    assert created["socket_timeout"] == redis_db.get_settings().redis_socket_timeout_seconds
    assert await redis_db.init_redis("redis://other:6379/0") is client

    await redis_db.close_redis()
    assert redis_db._client is None


async def test_init_leaves_client_unset_when_unreachable(no_redis, monkeypatch):
    client = fakeredis.aioredis.FakeRedis(decode_responses=True)

    async def broken_ping():
        raise RedisConnectionError("refused")

    monkeypatch.setattr(client, "ping", broken_ping)
    monkeypatch.setattr(redis_db.redis, "from_url", lambda url, **kwargs: client)

    with pytest.raises(RedisConnectionError):
        await redis_db.init_redis()

    assert redis_db._client is None
