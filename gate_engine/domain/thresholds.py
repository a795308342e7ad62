"""Gate threshold table.

Static, data-driven configuration: each gate type maps to the metrics it
tracks, their warning/fail boundaries, the default grace window and the
features a failing gate blocks. The evaluator reads this table and never
branches on gate type, so adding a gate type means adding an entry here.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import timedelta
from enum import StrEnum

from gate_engine.core.exceptions import UnknownGateTypeError


class GateType(StrEnum):
    """Gate types tracked per merchant."""

    DELIVERABILITY = "deliverability"
    FUNNEL_THROUGHPUT = "funnel_throughput"
    CRO_REVIEW = "cro_review"
    OFFER_VALIDATION = "offer_validation"
    PAID_ACQUISITION = "paid_acquisition"


class MetricDirection(StrEnum):
    """Which side of a boundary is unhealthy."""

    HIGHER_IS_WORSE = "higher_is_worse"
    LOWER_IS_WORSE = "lower_is_worse"


@dataclass(frozen=True)
class MetricThreshold:
    """Warning/fail boundaries for one metric, as decimal fractions."""

    name: str
    label: str
    fail_level: float | None
    warning_level: float | None = None
    direction: MetricDirection = MetricDirection.HIGHER_IS_WORSE
    count_field: str | None = None  # derived display count, e.g. "hardBounces"

    def breaches(self, value: float, level: float | None) -> bool:
        """True when value is at or beyond level in the unhealthy direction."""
        if level is None:
            return False
        if self.direction == MetricDirection.LOWER_IS_WORSE:
            return value <= level
        return value >= level


@dataclass(frozen=True)
class GateThresholds:
    """Full threshold set for a gate type."""

    gate_type: GateType
    label: str
    metrics: tuple[MetricThreshold, ...]
    grace_period_hours: int
    blocked_features: tuple[str, ...] = field(default_factory=tuple)
    volume_field: str | None = None  # denominator used for display counts


THRESHOLD_TABLE: dict[GateType, GateThresholds] = {
    GateType.DELIVERABILITY: GateThresholds(
        gate_type=GateType.DELIVERABILITY,
        label="Deliverability",
        metrics=(
            # Hard bounces and spam complaints have no warning tier
            MetricThreshold(
                name="hardBounceRate",
                label="Hard bounce",
                fail_level=0.005,
                count_field="hardBounces",
            ),
            MetricThreshold(
                name="softBounceRate",
                label="Soft bounce",
                fail_level=0.05,
                warning_level=0.03,
                count_field="softBounces",
            ),
            MetricThreshold(
                name="spamComplaintRate",
                label="Spam complaint",
                fail_level=0.001,
                count_field="spamComplaints",
            ),
        ),
        grace_period_hours=72,
        blocked_features=("promotions", "broadcasts"),
        volume_field="emailsSent",
    ),
    GateType.FUNNEL_THROUGHPUT: GateThresholds(
        gate_type=GateType.FUNNEL_THROUGHPUT,
        label="Funnel throughput",
        metrics=(
            MetricThreshold(
                name="conversionRate",
                label="Conversion rate",
                fail_level=0.02,
                direction=MetricDirection.LOWER_IS_WORSE,
            ),
            # Week-over-week relative change; warn only
            MetricThreshold(
                name="conversionRateVariance",
                label="Conversion rate variance",
                fail_level=None,
                warning_level=0.10,
            ),
        ),
        grace_period_hours=72,
        blocked_features=("paid_acquisition_scaling",),
    ),
    GateType.CRO_REVIEW: GateThresholds(
        gate_type=GateType.CRO_REVIEW,
        label="CRO review",
        metrics=(),
        grace_period_hours=72,
    ),
    GateType.OFFER_VALIDATION: GateThresholds(
        gate_type=GateType.OFFER_VALIDATION,
        label="Offer validation",
        metrics=(),
        grace_period_hours=72,
        blocked_features=("paid_acquisition",),
    ),
    GateType.PAID_ACQUISITION: GateThresholds(
        gate_type=GateType.PAID_ACQUISITION,
        label="Paid acquisition",
        metrics=(),
        grace_period_hours=72,
    ),
}


def parse_gate_type(value: str | GateType) -> GateType:
    """Coerce a raw gate type string, rejecting unknown values."""
    try:
        return GateType(value)
    except ValueError:
        raise UnknownGateTypeError(str(value)) from None


def get_thresholds(gate_type: str | GateType) -> GateThresholds:
    """Return the threshold set for a gate type.

    Pure function -- no side effects.

    Raises:
        UnknownGateTypeError: gate type is not in the table
    """
    resolved = parse_gate_type(gate_type)
    try:
        return THRESHOLD_TABLE[resolved]
    except KeyError:
        raise UnknownGateTypeError(resolved.value) from None


def grace_period_for(gate_type: str | GateType, hours_by_gate: Mapping[str, int] | None = None) -> timedelta:
    """Grace window for a gate type.

    A deployment-level entry in hours_by_gate (keyed by gate type value)
    replaces the table default for that gate.
    """
    thresholds = get_thresholds(gate_type)
    hours = (hours_by_gate or {}).get(thresholds.gate_type.value, thresholds.grace_period_hours)
    return timedelta(hours=hours)
