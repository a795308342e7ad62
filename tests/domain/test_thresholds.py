"""Tests for the gate threshold table."""

from datetime import timedelta

import pytest

from gate_engine.core.exceptions import UnknownGateTypeError
from gate_engine.domain.thresholds import (
    THRESHOLD_TABLE,
    GateType,
    MetricDirection,
    MetricThreshold,
    get_thresholds,
    grace_period_for,
    parse_gate_type,
)

pytestmark = pytest.mark.unit


def test_every_gate_type_has_thresholds():
    for gate_type in GateType:
        assert get_thresholds(gate_type).gate_type == gate_type


def test_deliverability_boundaries():
    thresholds = get_thresholds("deliverability")
    by_name = {m.name: m for m in thresholds.metrics}

    assert by_name["hardBounceRate"].fail_level == 0.005
    assert by_name["hardBounceRate"].warning_level is None
    assert by_name["softBounceRate"].warning_level == 0.03
    assert by_name["softBounceRate"].fail_level == 0.05
    assert by_name["spamComplaintRate"].fail_level == 0.001
    assert by_name["spamComplaintRate"].warning_level is None
    assert thresholds.grace_period_hours == 72
    assert thresholds.blocked_features == ("promotions", "broadcasts")


def test_boundaries_are_inclusive():
    hard = next(m for m in THRESHOLD_TABLE[GateType.DELIVERABILITY].metrics if m.name == "hardBounceRate")
    assert hard.breaches(0.005, hard.fail_level) is True
    assert hard.breaches(0.00499, hard.fail_level) is False


def test_lower_is_worse_direction():
    threshold = MetricThreshold(
        name="conversionRate",
        label="Conversion rate",
        fail_level=0.02,
        direction=MetricDirection.LOWER_IS_WORSE,
    )
    assert threshold.breaches(0.019, threshold.fail_level) is True
    assert threshold.breaches(0.021, threshold.fail_level) is False


def test_missing_level_never_breaches():
    threshold = MetricThreshold(name="x", label="X", fail_level=None)
    assert threshold.breaches(1.0, None) is False


def test_unknown_gate_type_raises():
    with pytest.raises(UnknownGateTypeError) as exc_info:
        get_thresholds("spam_filter")
    assert exc_info.value.gate_type == "spam_filter"


def test_parse_gate_type_accepts_enum_and_string():
    assert parse_gate_type(GateType.FUNNEL_THROUGHPUT) is GateType.FUNNEL_THROUGHPUT
    assert parse_gate_type("offer_validation") is GateType.OFFER_VALIDATION


def test_grace_period_defaults_to_table():
    assert grace_period_for(GateType.FUNNEL_THROUGHPUT) == timedelta(hours=72)


def test_grace_period_configured_per_gate_type():
    hours = {"deliverability": 48}

    assert grace_period_for("deliverability", hours) == timedelta(hours=48)
    assert grace_period_for(GateType.FUNNEL_THROUGHPUT, hours) == timedelta(hours=72)
