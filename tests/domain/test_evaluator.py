"""Tests for gate evaluation.

Pure function behavior:
- No DB access
- Deterministic given `now`
- Message text matches what operators see in the dashboard
"""

from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest

from gate_engine.domain.evaluator import (
    MetricLevel,
    classify_metric,
    evaluate_gate,
    format_duration,
    format_percent,
    read_metric,
)
from gate_engine.domain.status import GateStatus, PriorGateState
from gate_engine.domain.thresholds import GateType, get_thresholds

pytestmark = pytest.mark.unit

NOW = datetime(2026, 3, 4, 12, 0, tzinfo=UTC)


def _snapshot(**overrides) -> dict:
    snapshot = {"hardBounceRate": 0.003, "softBounceRate": 0.012, "spamComplaintRate": 0.0005, "emailsSent": 125000}
    snapshot.update(overrides)
    return snapshot


def test_all_metrics_healthy_passes():
    result = evaluate_gate(GateType.DELIVERABILITY, _snapshot(), None, now=NOW)

    assert result.status == GateStatus.PASS
    assert result.message == "Deliverability healthy. All thresholds within limits."
    assert result.blocked_features == []
    assert result.grace_period_ends_at is None
    assert result.failed_at is None


def test_soft_bounce_in_warning_band():
    result = evaluate_gate(GateType.DELIVERABILITY, _snapshot(softBounceRate=0.045), None, now=NOW)

    assert result.status == GateStatus.WARNING
    assert result.message == (
        "WARNING: Soft bounce at 4.50% (5,625 of 125,000, threshold: 3.00% warning, 5.00% fail). Monitor closely."
    )
    assert result.blocked_features == []


def test_first_failure_opens_grace_period():
    result = evaluate_gate(GateType.DELIVERABILITY, _snapshot(hardBounceRate=0.007), None, now=NOW)

    assert result.status == GateStatus.GRACE_PERIOD
    assert result.grace_period_ends_at == NOW + timedelta(hours=72)
    assert result.failed_at == NOW
    assert result.started_grace is True
    assert result.blocked_features == ["promotions", "broadcasts"]


def test_grace_period_message_with_time_remaining():
    previous = PriorGateState(
        status=GateStatus.GRACE_PERIOD,
        grace_period_ends_at=NOW + timedelta(hours=12),
        failed_at=NOW - timedelta(hours=60),
    )

    result = evaluate_gate(GateType.DELIVERABILITY, _snapshot(hardBounceRate=0.007), previous, now=NOW)

    assert result.status == GateStatus.GRACE_PERIOD
    assert result.grace_period_ends_at == NOW + timedelta(hours=12)
    assert result.message == (
        "Deliverability gate: FAIL. Threshold exceeded: Hard bounce 0.70% (875 of 125,000, threshold: 0.50%). "
        "Grace period expires in 12 hours. Blocked: promotions, broadcasts."
    )


def test_failure_after_grace_expiry_blocks():
    failed_at = NOW - timedelta(hours=73)
    previous = PriorGateState(
        status=GateStatus.GRACE_PERIOD,
        grace_period_ends_at=NOW - timedelta(hours=1),
        failed_at=failed_at,
    )

    result = evaluate_gate(
        GateType.DELIVERABILITY,
        _snapshot(hardBounceRate=0.009, softBounceRate=0.062, spamComplaintRate=0.0015),
        previous,
        now=NOW,
    )

    assert result.status == GateStatus.FAIL
    assert result.expired is True
    assert result.grace_period_ends_at is None
    assert result.failed_at == failed_at
    assert result.blocked_features == ["promotions", "broadcasts"]
    assert "Hard bounce 0.90%" in result.message
    assert "Soft bounce 6.20%" in result.message
    assert "Spam complaint 0.15%" in result.message
    assert "Grace period expired." in result.message


def test_repeated_failures_do_not_extend_grace_period():
    first = evaluate_gate(GateType.DELIVERABILITY, _snapshot(hardBounceRate=0.007), None, now=NOW)
    previous = PriorGateState(first.status, first.grace_period_ends_at, first.failed_at)

    later = NOW + timedelta(hours=5)
    second = evaluate_gate(GateType.DELIVERABILITY, _snapshot(hardBounceRate=0.008), previous, now=later)

    assert second.status == GateStatus.GRACE_PERIOD
    assert second.grace_period_ends_at == first.grace_period_ends_at
    assert second.failed_at == first.failed_at
    assert second.started_grace is False


def test_recovery_clears_failure_immediately():
    previous = PriorGateState(status=GateStatus.FAIL, failed_at=NOW - timedelta(days=5))

    result = evaluate_gate(GateType.DELIVERABILITY, _snapshot(), previous, now=NOW)

    assert result.status == GateStatus.PASS
    assert result.failed_at is None
    assert result.blocked_features == []


def test_recovery_to_warning_from_grace():
    previous = PriorGateState(
        status=GateStatus.GRACE_PERIOD,
        grace_period_ends_at=NOW + timedelta(hours=10),
        failed_at=NOW - timedelta(hours=62),
    )

    result = evaluate_gate(GateType.DELIVERABILITY, _snapshot(softBounceRate=0.04), previous, now=NOW)

    assert result.status == GateStatus.WARNING
    assert result.grace_period_ends_at is None


def test_any_failing_metric_fails_gate():
    # Healthy and warning metrics do not dilute a single failure
    result = evaluate_gate(
        GateType.DELIVERABILITY,
        _snapshot(softBounceRate=0.04, spamComplaintRate=0.001),
        None,
        now=NOW,
    )
    assert result.candidate == GateStatus.FAIL
    assert result.status == GateStatus.GRACE_PERIOD


def test_missing_metric_is_reported_not_failed():
    snapshot = {"hardBounceRate": 0.003, "softBounceRate": 0.012, "emailsSent": 125000}

    result = evaluate_gate(GateType.DELIVERABILITY, snapshot, None, now=NOW)

    assert result.status == GateStatus.PASS
    assert result.missing_metrics == ["spamComplaintRate"]
    assert result.incomplete is True
    assert result.message == (
        "Deliverability healthy for reported metrics. Metrics unavailable: spamComplaintRate."
    )


def test_malformed_metric_is_treated_as_missing():
    result = evaluate_gate(GateType.DELIVERABILITY, _snapshot(hardBounceRate="n/a"), None, now=NOW)

    assert result.status == GateStatus.PASS
    assert "hardBounceRate" in result.missing_metrics


def test_no_usable_metrics_without_history_is_pass_without_data():
    result = evaluate_gate(GateType.DELIVERABILITY, {"emailsSent": 0}, None, now=NOW)

    assert result.has_data is False
    assert result.status == GateStatus.PASS
    assert "no usable metrics reported" in result.message


def test_no_usable_metrics_holds_previous_warning():
    previous = PriorGateState(status=GateStatus.WARNING)

    result = evaluate_gate(GateType.DELIVERABILITY, {}, previous, now=NOW)

    assert result.status == GateStatus.WARNING
    assert result.has_data is False


def test_no_usable_metrics_still_lets_grace_expire():
    previous = PriorGateState(
        status=GateStatus.GRACE_PERIOD,
        grace_period_ends_at=NOW - timedelta(minutes=1),
        failed_at=NOW - timedelta(hours=72, minutes=1),
    )

    result = evaluate_gate(GateType.DELIVERABILITY, {}, previous, now=NOW)

    assert result.status == GateStatus.FAIL
    assert result.expired is True


def test_custom_grace_period():
    result = evaluate_gate(
        GateType.DELIVERABILITY,
        _snapshot(hardBounceRate=0.007),
        None,
        now=NOW,
        grace_period=timedelta(hours=24),
    )
    assert result.grace_period_ends_at == NOW + timedelta(hours=24)


def test_funnel_conversion_rate_below_floor_fails():
    result = evaluate_gate(GateType.FUNNEL_THROUGHPUT, {"conversionRate": 0.015}, None, now=NOW)

    assert result.status == GateStatus.GRACE_PERIOD
    assert result.blocked_features == ["paid_acquisition_scaling"]
    assert "Below threshold: Conversion rate 1.50% (threshold: 2.00%)." in result.message
    assert "exceeded" not in result.message


def test_funnel_variance_only_warns():
    result = evaluate_gate(
        GateType.FUNNEL_THROUGHPUT,
        {"conversionRate": 0.031, "conversionRateVariance": 0.25},
        None,
        now=NOW,
    )
    assert result.status == GateStatus.WARNING


def test_gate_without_metrics_passes():
    result = evaluate_gate(GateType.CRO_REVIEW, {}, None, now=NOW)

    assert result.status == GateStatus.PASS
    assert result.has_data is True
    assert result.message == "CRO review: no tracked metrics."


@pytest.mark.parametrize(
    "raw,expected",
    [
        (0.004, 0.004),
        (0, 0.0),
        (Decimal("0.0125"), 0.0125),
        (" 0.02 ", 0.02),
        (True, None),
        (-0.1, None),
        (float("nan"), None),
        (float("inf"), None),
        ("abc", None),
        ([0.1], None),
        (None, None),
    ],
)
def test_read_metric(raw, expected):
    assert read_metric({"rate": raw}, "rate") == expected


def test_classify_metric_levels():
    soft = next(m for m in get_thresholds(GateType.DELIVERABILITY).metrics if m.name == "softBounceRate")

    assert classify_metric(soft, None) == MetricLevel.UNKNOWN
    assert classify_metric(soft, 0.01) == MetricLevel.OK
    assert classify_metric(soft, 0.03) == MetricLevel.WARNING
    assert classify_metric(soft, 0.05) == MetricLevel.FAIL


def test_format_percent():
    assert format_percent(0.007) == "0.70%"
    assert format_percent(0.045) == "4.50%"


@pytest.mark.parametrize(
    "delta,text",
    [
        (timedelta(days=2, hours=4), "2 days 4 hours"),
        (timedelta(days=1), "1 day"),
        (timedelta(hours=1, minutes=30), "1 hour"),
        (timedelta(minutes=30), "30 minutes"),
        (timedelta(0), "less than a minute"),
    ],
)
def test_format_duration(delta, text):
    assert format_duration(delta) == text
