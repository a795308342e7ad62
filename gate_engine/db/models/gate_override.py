"""GateOverride model: append-only audit trail of manual gate overrides."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Index, String, Text, Uuid

from gate_engine.db.base import Base


class GateOverride(Base):
    __tablename__ = "gate_overrides"
    __table_args__ = (Index("ix_gate_overrides_merchant_gate", "merchant_id", "gate_type"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    merchant_id = Column(String(64), nullable=False)
    gate_type = Column(String(50), nullable=False)
    actor_id = Column(String(255), nullable=False)
    reason = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
