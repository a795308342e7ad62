"""Order model: written by the ingestion pipeline, only read here."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import BigInteger, Column, DateTime, Index, Numeric, String, UniqueConstraint, Uuid

from gate_engine.db.base import Base


class Order(Base):
    __tablename__ = "orders"
    __table_args__ = (
        UniqueConstraint("merchant_id", "shopify_order_id", name="uq_orders_merchant_shopify_order"),
        Index("ix_orders_merchant_created", "merchant_id", "created_at"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    merchant_id = Column(String(64), nullable=False)
    shopify_order_id = Column(BigInteger, nullable=False)
    revenue = Column(Numeric(12, 2), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
