"""Revenue baseline calculation.

Pure domain functions. No DB access, time is injected.

Day-of-week convention: 0 = Sunday .. 6 = Saturday. The comparison uses
the same convention, so stored baselines and lookups always agree.
"""

from collections import defaultdict
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, timedelta
from decimal import Decimal
from typing import Protocol

import numpy as np

DAYS_OF_WEEK = tuple(range(7))

# Scales MAD to be consistent with the standard deviation of a normal sample
MAD_SCALE = 1.4826


def day_of_week(day: date) -> int:
    """Day of week with Sunday as 0."""
    return (day.weekday() + 1) % 7


@dataclass(frozen=True)
class DailyRevenue:
    day: date
    revenue: float

    @property
    def day_of_week(self) -> int:
        return day_of_week(self.day)


def aggregate_daily_revenue(
    history: Iterable[tuple[date | datetime, float | int | Decimal]],
) -> list[DailyRevenue]:
    """Sum (date, revenue) pairs into one total per calendar day, oldest first.

    Datetimes are bucketed by their UTC calendar day.
    """
    totals: dict[date, float] = defaultdict(float)
    for when, revenue in history:
        if isinstance(when, datetime):
            if when.tzinfo is not None:
                when = when.astimezone(UTC)
            when = when.date()
        totals[when] += float(revenue)
    return [DailyRevenue(day=d, revenue=totals[d]) for d in sorted(totals)]


class AnomalyDetector(Protocol):
    """Flags anomalous values within one day-of-week group."""

    def find_anomalies(self, values: Sequence[float]) -> list[bool]:
        ...


class MedianAbsoluteDeviationDetector:
    """Robust z-score test: |x - median| / (1.4826 * MAD) > threshold.

    Robust to single large orders, which inflate a plain stddev. When MAD is
    zero (most points identical) any point off the median is anomalous.
    """

    def __init__(self, threshold: float = 3.5, min_group_size: int = 3):
        self.threshold = threshold
        self.min_group_size = min_group_size

    def find_anomalies(self, values: Sequence[float]) -> list[bool]:
        if len(values) < self.min_group_size:
            return [False] * len(values)

        arr = np.asarray(values, dtype=float)
        median = np.median(arr)
        deviation = np.abs(arr - median)
        mad = np.median(deviation)

        if mad == 0:
            return (~np.isclose(arr, median)).tolist()

        z_scores = deviation / (MAD_SCALE * mad)
        return (z_scores > self.threshold).tolist()


class StandardDeviationDetector:
    """Classic |x - mean| > threshold * stddev test (population stddev)."""

    def __init__(self, threshold: float = 2.0, min_group_size: int = 3):
        self.threshold = threshold
        self.min_group_size = min_group_size

    def find_anomalies(self, values: Sequence[float]) -> list[bool]:
        if len(values) < self.min_group_size:
            return [False] * len(values)

        arr = np.asarray(values, dtype=float)
        std = np.std(arr)
        if std == 0:
            return [False] * len(values)
        return (np.abs(arr - np.mean(arr)) > self.threshold * std).tolist()


@dataclass(frozen=True)
class BaselineResult:
    """A freshly computed baseline, persisted wholesale."""

    baseline_by_dow: dict[int, float]
    lookback_days: int
    data_points_used: int
    anomalies_excluded: int
    is_provisional: bool
    calculated_at: datetime
    points_by_dow: dict[int, int] = field(default_factory=dict)


@dataclass(frozen=True)
class BaselineComparison:
    actual_revenue: float
    expected_revenue: float
    lift_percent: float | None  # None when expected revenue is zero
    is_provisional: bool


def calculate_baseline(
    history: Iterable[tuple[date | datetime, float | int | Decimal]],
    as_of: date | None = None,
    lookback_days: int = 90,
    detector: AnomalyDetector | None = None,
    min_points_per_day: int = 2,
    now: datetime | None = None,
) -> BaselineResult:
    """Compute expected revenue per day of week from order history.

    Pure function -- no side effects, no DB access.

    Args:
        history: (date, revenue) pairs, any granularity (orders or daily totals)
        as_of: Last day of the lookback window (defaults to now's date)
        lookback_days: Window length in days, ending on as_of inclusive
        detector: Anomaly detector applied per day-of-week group
        min_points_per_day: Usable points each weekday needs for a non-provisional baseline
        now: Calculation timestamp (injectable for testing)

    Returns:
        BaselineResult. Empty history yields all zeros and is_provisional=True.
    """
    if now is None:
        now = datetime.now(UTC)
    if as_of is None:
        as_of = now.date()
    detector = detector or MedianAbsoluteDeviationDetector()

    window_start = as_of - timedelta(days=lookback_days - 1)
    daily = [d for d in aggregate_daily_revenue(history) if window_start <= d.day <= as_of]

    groups: dict[int, list[float]] = {dow: [] for dow in DAYS_OF_WEEK}
    for d in daily:
        groups[d.day_of_week].append(d.revenue)

    baseline_by_dow: dict[int, float] = {}
    points_by_dow: dict[int, int] = {}
    anomalies_excluded = 0

    for dow, revenues in groups.items():
        flags = detector.find_anomalies(revenues)
        kept = [r for r, is_anomaly in zip(revenues, flags) if not is_anomaly]
        anomalies_excluded += len(revenues) - len(kept)
        points_by_dow[dow] = len(kept)
        baseline_by_dow[dow] = round(float(np.mean(kept)), 2) if kept else 0.0

    data_points_used = sum(points_by_dow.values())
    is_provisional = any(count < min_points_per_day for count in points_by_dow.values())

    return BaselineResult(
        baseline_by_dow=baseline_by_dow,
        lookback_days=lookback_days,
        data_points_used=data_points_used,
        anomalies_excluded=anomalies_excluded,
        is_provisional=is_provisional,
        calculated_at=now,
        points_by_dow=points_by_dow,
    )


def expected_revenue_for(baseline_by_dow: Mapping[int | str, float], on: date) -> float:
    """Look up expected revenue for a date (accepts int or JSON string keys)."""
    dow = day_of_week(on)
    value = baseline_by_dow.get(dow, baseline_by_dow.get(str(dow), 0.0))
    return float(value or 0.0)


def compare_to_baseline(
    baseline_by_dow: Mapping[int | str, float],
    is_provisional: bool,
    on: date,
    actual_revenue: float,
) -> BaselineComparison:
    """Compare a day's actual revenue against its day-of-week baseline.

    lift = (actual - expected) / expected * 100; None when expected is 0.
    """
    expected = expected_revenue_for(baseline_by_dow, on)
    actual = float(actual_revenue)
    lift = round((actual - expected) * 100 / expected, 2) if expected > 0 else None
    return BaselineComparison(
        actual_revenue=actual,
        expected_revenue=expected,
        lift_percent=lift,
        is_provisional=is_provisional,
    )
