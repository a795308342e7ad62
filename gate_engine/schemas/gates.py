"""Gate Pydantic schemas for API requests and responses."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class EvaluateGateRequest(BaseModel):
    """Metric snapshot pushed by the metric collector."""

    metrics: dict[str, Any] = Field(
        description="Rates as decimal fractions (0.003 = 0.3%) plus raw counters such as emailsSent",
    )
    grace_period_hours: int | None = Field(
        default=None,
        gt=0,
        description="Merchant-specific grace window; defaults to the configured window",
    )


class GateStateResponse(BaseModel):
    """Current state of one gate for one merchant."""

    merchant_id: str
    gate_type: str
    status: str
    message: str
    metrics: dict[str, Any] = Field(default_factory=dict)
    blocked_features: list[str] = Field(default_factory=list)
    grace_period_ends_at: datetime | None = None
    last_evaluated_at: datetime | None = None
    evaluated: bool = Field(default=True, description="False when no evaluation has been persisted yet")
    overridden: bool = Field(default=False, description="A manual override covers the current failing episode")
    stale: bool = Field(default=False, description="Fresh evaluation failed; this is the last persisted state")


class OverrideRequest(BaseModel):
    """Request to manually unblock a gate."""

    actor_id: str = Field(min_length=1, max_length=255)
    reason: str = Field(min_length=1)


class OverrideAcknowledgement(BaseModel):
    """Response after recording an override."""

    override_id: str
    merchant_id: str
    gate_type: str
    recorded_at: datetime
    message: str


class OverrideRecord(BaseModel):
    """One entry of the override audit trail."""

    override_id: str
    merchant_id: str
    gate_type: str
    actor_id: str
    reason: str
    created_at: datetime


class FeatureCheckResponse(BaseModel):
    """Whether a sending feature is currently allowed."""

    feature: str
    allowed: bool
    gate_type: str | None = None
    reason: str | None = None
    can_override: bool = False
