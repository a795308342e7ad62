"""GateState model: one live record per (merchant, gate type)."""

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Index, Integer, String, Text

from gate_engine.db.base import Base, JSONVariant


class GateState(Base):
    __tablename__ = "gate_states"
    __table_args__ = (
        Index("ix_gate_states_status", "status"),
        Index("ix_gate_states_grace_period_ends_at", "grace_period_ends_at"),
    )

    merchant_id = Column(String(64), primary_key=True)
    gate_type = Column(String(50), primary_key=True)  # GateType value

    status = Column(String(50), nullable=False)  # pass, warning, fail, grace_period
    message = Column(Text, nullable=True)
    metrics = Column(JSONVariant, nullable=False, default=dict)  # snapshot that produced status
    blocked_features = Column(JSONVariant, nullable=False, default=list)

    # Set iff status == grace_period
    grace_period_ends_at = Column(DateTime(timezone=True), nullable=True)
    # Start of the current failing episode, set iff status is fail or grace_period
    failed_at = Column(DateTime(timezone=True), nullable=True)

    last_evaluated_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))

    # Optimistic concurrency counter, bumped by SQLAlchemy on every UPDATE
    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}
