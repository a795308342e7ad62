"""Order history readers used by the baseline calculator."""

from datetime import UTC, date, datetime, time, timedelta
from decimal import Decimal
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gate_engine.db.models.order import Order


class OrderHistoryReader(Protocol):
    """Source of (timestamp, revenue) pairs for a merchant."""

    async def fetch(self, merchant_id: str, start: date, end: date) -> list[tuple[datetime, Decimal | float]]:
        """Return pairs for start..end inclusive (UTC calendar days), oldest first."""
        ...


class SqlOrderHistoryReader:
    """Reads order revenue from the orders table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def fetch(self, merchant_id: str, start: date, end: date) -> list[tuple[datetime, Decimal | float]]:
        window_start = datetime.combine(start, time.min, tzinfo=UTC)
        window_end = datetime.combine(end + timedelta(days=1), time.min, tzinfo=UTC)

        async with self.session_factory() as session:
            result = await session.execute(
                select(Order.created_at, Order.revenue)
                .where(
                    Order.merchant_id == merchant_id,
                    Order.created_at >= window_start,
                    Order.created_at < window_end,
                )
                .order_by(Order.created_at)
            )
            return [(created_at, revenue) for created_at, revenue in result.all()]
