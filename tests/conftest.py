"""Shared test fixtures: a throwaway SQLite database and service instances."""

from datetime import UTC, datetime

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from gate_engine.db.base import Base


@pytest.fixture
def now() -> datetime:
    """Fixed evaluation clock (a Wednesday)."""
    return datetime(2026, 3, 4, 12, 0, tzinfo=UTC)


@pytest.fixture
async def engine(tmp_path):
    """File-backed SQLite engine with all tables created.

    Also installs the module-level session factory so code paths that call
    get_session_factory() (API dependencies) see the same database.
    """
    import gate_engine.db.base as db_mod
    import gate_engine.db.models  # noqa: F401

    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path}/gates.db", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    db_mod._engine = engine
    db_mod._session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    yield engine

    db_mod._engine = None
    db_mod._session_factory = None
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def healthy_snapshot() -> dict:
    return {"hardBounceRate": 0.003, "softBounceRate": 0.012, "spamComplaintRate": 0.0005, "emailsSent": 125000}


@pytest.fixture
def failing_snapshot() -> dict:
    return {"hardBounceRate": 0.009, "softBounceRate": 0.062, "spamComplaintRate": 0.0015, "emailsSent": 125000}
