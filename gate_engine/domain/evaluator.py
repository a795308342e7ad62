"""Gate evaluation.

Pure domain functions. No DB access, fully deterministic given `now`.

A metric snapshot is a mapping of metric names to decimal fractions
(0.003 == 0.3%) plus raw counters used only for the message, e.g.
{"hardBounceRate": 0.007, "softBounceRate": 0.021, "emailsSent": 125000}.
"""

import math
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from enum import StrEnum
from typing import Any

from gate_engine.domain.grace_period import GracePhase, GraceTransition, advance, remaining
from gate_engine.domain.status import GateStatus, PriorGateState
from gate_engine.domain.thresholds import GateThresholds, GateType, MetricDirection, MetricThreshold, get_thresholds


class MetricLevel(StrEnum):
    OK = "ok"
    WARNING = "warning"
    FAIL = "fail"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class MetricResult:
    """Classification of one tracked metric."""

    threshold: MetricThreshold
    value: float | None
    level: MetricLevel

    @property
    def name(self) -> str:
        return self.threshold.name


@dataclass(frozen=True)
class GateEvaluation:
    """Result of evaluating one gate against one snapshot."""

    gate_type: GateType
    status: GateStatus
    message: str
    blocked_features: list[str]
    grace_period_ends_at: datetime | None
    failed_at: datetime | None
    candidate: GateStatus
    metric_results: list[MetricResult] = field(default_factory=list)
    missing_metrics: list[str] = field(default_factory=list)
    has_data: bool = True
    started_grace: bool = False
    expired: bool = False

    @property
    def incomplete(self) -> bool:
        return bool(self.missing_metrics)


def read_metric(snapshot: Mapping[str, Any], name: str) -> float | None:
    """Read a rate from the snapshot, or None when missing or malformed."""
    raw = snapshot.get(name)
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float, Decimal)):
        value = float(raw)
    elif isinstance(raw, str):
        try:
            value = float(raw.strip())
        except ValueError:
            return None
    else:
        return None
    if not math.isfinite(value) or value < 0:
        return None
    return value


def classify_metric(threshold: MetricThreshold, value: float | None) -> MetricLevel:
    """Classify a single metric against its own boundaries.

    Metrics without a warning tier go straight from OK to FAIL.
    """
    if value is None:
        return MetricLevel.UNKNOWN
    if threshold.breaches(value, threshold.fail_level):
        return MetricLevel.FAIL
    if threshold.breaches(value, threshold.warning_level):
        return MetricLevel.WARNING
    return MetricLevel.OK


def aggregate(results: list[MetricResult]) -> GateStatus:
    """Any FAIL -> FAIL, else any WARNING -> WARNING, else PASS."""
    levels = {r.level for r in results}
    if MetricLevel.FAIL in levels:
        return GateStatus.FAIL
    if MetricLevel.WARNING in levels:
        return GateStatus.WARNING
    return GateStatus.PASS


def format_percent(value: float) -> str:
    return f"{value * 100:.2f}%"


def format_duration(delta: timedelta) -> str:
    """Render a remaining duration as e.g. "2 days 4 hours" or "12 hours"."""
    seconds = int(delta.total_seconds())
    days, rest = divmod(seconds, 86400)
    hours, rest = divmod(rest, 3600)
    minutes = rest // 60

    parts = []
    if days:
        parts.append(f"{days} day{'s' if days != 1 else ''}")
    if hours:
        parts.append(f"{hours} hour{'s' if hours != 1 else ''}")
    if not parts and minutes:
        parts.append(f"{minutes} minute{'s' if minutes != 1 else ''}")
    return " ".join(parts) or "less than a minute"


def _display_count(result: MetricResult, volume: float | None) -> str:
    if volume is None or result.threshold.count_field is None or result.value is None:
        return ""
    count = round(volume * result.value)
    return f"{count:,} of {int(volume):,}, "


def _describe_failure(result: MetricResult, volume: float | None) -> str:
    t = result.threshold
    return (
        f"{t.label} {format_percent(result.value)} "
        f"({_display_count(result, volume)}threshold: {format_percent(t.fail_level)})"
    )


def _describe_warning(result: MetricResult, volume: float | None) -> str:
    t = result.threshold
    bounds = f"{format_percent(t.warning_level)} warning"
    if t.fail_level is not None:
        bounds += f", {format_percent(t.fail_level)} fail"
    return f"{t.label} at {format_percent(result.value)} ({_display_count(result, volume)}threshold: {bounds})"


def compose_message(
    thresholds: GateThresholds,
    status: GateStatus,
    results: list[MetricResult],
    blocked_features: list[str],
    missing_metrics: list[str],
    transition: GraceTransition,
    volume: float | None,
    has_data: bool,
    now: datetime,
) -> str:
    """Build the human-readable evaluation message."""
    label = thresholds.label
    failures = [r for r in results if r.level == MetricLevel.FAIL]
    warnings = [r for r in results if r.level == MetricLevel.WARNING]

    if not has_data:
        sentences = [f"{label} gate: no usable metrics reported; status {status.value} carried over."]
    elif status == GateStatus.PASS:
        if not thresholds.metrics:
            sentences = [f"{label}: no tracked metrics."]
        elif missing_metrics:
            sentences = [f"{label} healthy for reported metrics."]
        else:
            sentences = [f"{label} healthy. All thresholds within limits."]
    elif status == GateStatus.WARNING:
        details = ", ".join(_describe_warning(r, volume) for r in warnings)
        sentences = [f"WARNING: {details}. Monitor closely."]
    else:
        exceeded = [r for r in failures if r.threshold.direction == MetricDirection.HIGHER_IS_WORSE]
        below = [r for r in failures if r.threshold.direction == MetricDirection.LOWER_IS_WORSE]
        sentences = [f"{label} gate: FAIL."]
        if exceeded:
            sentences.append(f"Threshold exceeded: {', '.join(_describe_failure(r, volume) for r in exceeded)}.")
        if below:
            sentences.append(f"Below threshold: {', '.join(_describe_failure(r, volume) for r in below)}.")
        if status == GateStatus.GRACE_PERIOD:
            left = remaining(transition.grace_period_ends_at, now)
            sentences.append(f"Grace period expires in {format_duration(left)}.")
        else:
            sentences.append("Grace period expired.")
        if blocked_features:
            sentences.append(f"Blocked: {', '.join(blocked_features)}.")

    if missing_metrics:
        sentences.append(f"Metrics unavailable: {', '.join(missing_metrics)}.")

    return " ".join(sentences)


def _held_candidate(previous: PriorGateState | None) -> GateStatus:
    """Outcome to assume when no tracked metric could be classified."""
    if previous is None:
        return GateStatus.PASS
    if previous.status.is_blocking:
        return GateStatus.FAIL
    return previous.status


def evaluate_gate(
    gate_type: str | GateType,
    snapshot: Mapping[str, Any],
    previous: PriorGateState | None,
    now: datetime | None = None,
    grace_period: timedelta | None = None,
    thresholds: GateThresholds | None = None,
) -> GateEvaluation:
    """Evaluate a gate snapshot against its thresholds and prior state.

    Pure function -- no side effects, no DB access.

    Args:
        gate_type: Gate being evaluated
        snapshot: Metric snapshot (rates as decimal fractions plus counters)
        previous: Last persisted state for this merchant/gate, None if never evaluated
        now: Evaluation time (injectable for testing, defaults to datetime.now(UTC))
        grace_period: Grace window override (merchant/gate configuration)
        thresholds: Threshold set override, defaults to the threshold table

    Returns:
        GateEvaluation with status, message, blocked features and grace window

    Raises:
        UnknownGateTypeError: gate type not in the threshold table
    """
    if now is None:
        now = datetime.now(UTC)
    thresholds = thresholds or get_thresholds(gate_type)
    window = grace_period if grace_period is not None else timedelta(hours=thresholds.grace_period_hours)

    results: list[MetricResult] = []
    for t in thresholds.metrics:
        value = read_metric(snapshot, t.name)
        results.append(MetricResult(threshold=t, value=value, level=classify_metric(t, value)))
    missing = [r.name for r in results if r.level == MetricLevel.UNKNOWN]
    classified = [r for r in results if r.level != MetricLevel.UNKNOWN]

    has_data = bool(classified) or not thresholds.metrics
    candidate = aggregate(classified) if has_data else _held_candidate(previous)

    transition = advance(candidate, previous, now, window)
    status = transition.status
    blocked = list(thresholds.blocked_features) if status.is_blocking else []

    volume = read_metric(snapshot, thresholds.volume_field) if thresholds.volume_field else None
    message = compose_message(
        thresholds=thresholds,
        status=status,
        results=classified,
        blocked_features=blocked,
        missing_metrics=missing,
        transition=transition,
        volume=volume,
        has_data=has_data,
        now=now,
    )

    return GateEvaluation(
        gate_type=thresholds.gate_type,
        status=status,
        message=message,
        blocked_features=blocked,
        grace_period_ends_at=transition.grace_period_ends_at if transition.phase == GracePhase.FAIL_GRACE else None,
        failed_at=transition.failed_at,
        candidate=candidate,
        metric_results=results,
        missing_metrics=missing,
        has_data=has_data,
        started_grace=transition.started_grace,
        expired=transition.expired,
    )
