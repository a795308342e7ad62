"""Gate status values and the prior-state view shared by evaluator and tracker."""

from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum


class GateStatus(StrEnum):
    """Persisted gate status.

    No total severity order: WARNING and GRACE_PERIOD are not comparable.
    FAIL and GRACE_PERIOD both mean blocking is in effect.
    """

    PASS = "pass"
    WARNING = "warning"
    FAIL = "fail"
    GRACE_PERIOD = "grace_period"

    @property
    def is_blocking(self) -> bool:
        return self in (GateStatus.FAIL, GateStatus.GRACE_PERIOD)


@dataclass(frozen=True)
class PriorGateState:
    """What was persisted for a gate last time, as seen by the tracker."""

    status: GateStatus
    grace_period_ends_at: datetime | None = None
    failed_at: datetime | None = None


def ensure_utc(dt: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes (some drivers drop tzinfo on read)."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt
