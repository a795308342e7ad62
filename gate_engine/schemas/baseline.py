"""Revenue baseline Pydantic schemas."""

import datetime as dt

from pydantic import BaseModel, Field


class BaselineResponse(BaseModel):
    """Persisted baseline for a merchant. Keys of baseline_by_dow: 0 = Sunday .. 6 = Saturday."""

    merchant_id: str
    baseline_by_dow: dict[int, float]
    calculated_at: dt.datetime
    lookback_days: int
    data_points_used: int
    anomalies_excluded: int
    is_provisional: bool


class RecalculateBaselineRequest(BaseModel):
    lookback_days: int | None = Field(default=None, gt=0, le=730)


class BaselineComparisonResponse(BaseModel):
    """Actual vs expected revenue for one day."""

    date: dt.date
    actual_revenue: float
    expected_revenue: float
    lift_percent: float | None = Field(description="None when expected revenue is zero")
    is_provisional: bool
