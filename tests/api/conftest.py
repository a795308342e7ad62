"""API test fixtures: in-process client bound to the test database."""

import httpx
import pytest

from gate_engine.main import app


@pytest.fixture
async def client(engine):
    """AsyncClient sharing the pytest-asyncio loop with the SQLite engine.

    The engine fixture installs the module-level session factory, so the
    route dependencies resolve to the test database without overrides.
    """
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
