"""Grace period state machine.

Pure domain functions. No DB access, time is always injected.

Phases per (merchant, gate type):
    PASS / WARNING -> FAIL_GRACE(now + window)    first failing evaluation
    FAIL_GRACE(t)  -> FAIL_GRACE(t)               still failing, now < t
    FAIL_GRACE(t)  -> FAIL_BLOCKED                still failing, now >= t
    FAIL_*         -> PASS / WARNING              metrics recovered

The expiry is fixed when the episode starts. Repeated failures never move it.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import StrEnum

from gate_engine.domain.status import GateStatus, PriorGateState, ensure_utc


class GracePhase(StrEnum):
    PASS = "pass"
    WARNING = "warning"
    FAIL_GRACE = "fail_grace"
    FAIL_BLOCKED = "fail_blocked"


_PHASE_STATUS = {
    GracePhase.PASS: GateStatus.PASS,
    GracePhase.WARNING: GateStatus.WARNING,
    GracePhase.FAIL_GRACE: GateStatus.GRACE_PERIOD,
    GracePhase.FAIL_BLOCKED: GateStatus.FAIL,
}


@dataclass(frozen=True)
class GraceTransition:
    """Outcome of one tracker step."""

    phase: GracePhase
    grace_period_ends_at: datetime | None
    failed_at: datetime | None
    started_grace: bool = False
    expired: bool = False

    @property
    def status(self) -> GateStatus:
        return _PHASE_STATUS[self.phase]


def phase_of(state: PriorGateState | None) -> GracePhase:
    """Map a persisted status to its tracker phase (no record means PASS)."""
    if state is None or state.status == GateStatus.PASS:
        return GracePhase.PASS
    if state.status == GateStatus.WARNING:
        return GracePhase.WARNING
    if state.status == GateStatus.GRACE_PERIOD:
        return GracePhase.FAIL_GRACE
    return GracePhase.FAIL_BLOCKED


def advance(
    candidate: GateStatus,
    previous: PriorGateState | None,
    now: datetime,
    window: timedelta,
) -> GraceTransition:
    """Apply one evaluation result to the prior state.

    Args:
        candidate: Aggregated metric outcome (PASS, WARNING or FAIL)
        previous: Last persisted state, None if never evaluated
        now: Evaluation time (timezone-aware)
        window: Grace window to open if this starts a failing episode

    Returns:
        GraceTransition with the new phase, expiry and episode start
    """
    if candidate == GateStatus.GRACE_PERIOD:
        raise ValueError("candidate must be an aggregated metric outcome, not grace_period")

    # Recovery is immediate, no hysteresis on the way up
    if candidate == GateStatus.PASS:
        return GraceTransition(phase=GracePhase.PASS, grace_period_ends_at=None, failed_at=None)
    if candidate == GateStatus.WARNING:
        return GraceTransition(phase=GracePhase.WARNING, grace_period_ends_at=None, failed_at=None)

    prior_phase = phase_of(previous)

    if prior_phase in (GracePhase.PASS, GracePhase.WARNING):
        return GraceTransition(
            phase=GracePhase.FAIL_GRACE,
            grace_period_ends_at=now + window,
            failed_at=now,
            started_grace=True,
        )

    failed_at = ensure_utc(previous.failed_at) or now

    if prior_phase == GracePhase.FAIL_BLOCKED:
        return GraceTransition(phase=GracePhase.FAIL_BLOCKED, grace_period_ends_at=None, failed_at=failed_at)

    ends_at = ensure_utc(previous.grace_period_ends_at)
    if ends_at is None:
        # grace_period row without an expiry: reopen a window rather than block outright
        return GraceTransition(
            phase=GracePhase.FAIL_GRACE,
            grace_period_ends_at=now + window,
            failed_at=failed_at,
            started_grace=True,
        )

    if now < ends_at:
        return GraceTransition(phase=GracePhase.FAIL_GRACE, grace_period_ends_at=ends_at, failed_at=failed_at)

    return GraceTransition(
        phase=GracePhase.FAIL_BLOCKED,
        grace_period_ends_at=None,
        failed_at=failed_at,
        expired=True,
    )


def resolve_on_read(state: PriorGateState, now: datetime) -> PriorGateState:
    """Lazily apply grace expiry to a persisted state for display.

    The persisted metrics were failing when written, so an expired grace
    window reads as FAIL. Nothing is written back; the next scheduled
    evaluation persists the transition.
    """
    if state.status != GateStatus.GRACE_PERIOD:
        return state
    ends_at = ensure_utc(state.grace_period_ends_at)
    if ends_at is None or now < ends_at:
        return state
    return PriorGateState(status=GateStatus.FAIL, grace_period_ends_at=None, failed_at=state.failed_at)


def remaining(ends_at: datetime | None, now: datetime) -> timedelta | None:
    """Time left in a grace window, clamped at zero."""
    ends_at = ensure_utc(ends_at)
    if ends_at is None:
        return None
    return max(ends_at - now, timedelta(0))
