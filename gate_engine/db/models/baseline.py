"""Baseline model: expected revenue per day of week, one row per merchant."""

from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Integer, String

from gate_engine.db.base import Base, JSONVariant


class Baseline(Base):
    __tablename__ = "baselines"

    merchant_id = Column(String(64), primary_key=True)

    # {"0": 5120.5, ..., "6": 6400.0}, 0 = Sunday
    baseline_by_dow = Column(JSONVariant, nullable=False)

    calculated_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    lookback_days = Column(Integer, nullable=False)
    data_points_used = Column(Integer, nullable=False, default=0)
    anomalies_excluded = Column(Integer, nullable=False, default=0)
    is_provisional = Column(Boolean, nullable=False, default=True)
