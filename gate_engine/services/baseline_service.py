"""BaselineService: recalculates and serves per-merchant revenue baselines."""

from datetime import UTC, date, datetime, timedelta

import structlog
from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gate_engine.core.config import get_settings
from gate_engine.core.exceptions import BaselineNotFoundError
from gate_engine.db.models.baseline import Baseline
from gate_engine.domain.baseline import (
    AnomalyDetector,
    MedianAbsoluteDeviationDetector,
    aggregate_daily_revenue,
    calculate_baseline,
    compare_to_baseline,
)
from gate_engine.domain.status import ensure_utc
from gate_engine.schemas.baseline import BaselineComparisonResponse, BaselineResponse
from gate_engine.services.order_history import OrderHistoryReader

logger = structlog.get_logger(__name__)


def _to_response(row: Baseline) -> BaselineResponse:
    return BaselineResponse(
        merchant_id=row.merchant_id,
        baseline_by_dow={int(k): float(v) for k, v in (row.baseline_by_dow or {}).items()},
        calculated_at=ensure_utc(row.calculated_at),
        lookback_days=row.lookback_days,
        data_points_used=row.data_points_used,
        anomalies_excluded=row.anomalies_excluded,
        is_provisional=row.is_provisional,
    )


class BaselineService:
    """Service layer for revenue baselines.

    Recalculation replaces the stored row wholesale so a stale baseline is
    never partially mixed with a new one.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        order_history: OrderHistoryReader,
        detector: AnomalyDetector | None = None,
        lookback_days: int | None = None,
        min_points_per_day: int | None = None,
    ):
        settings = get_settings()
        self.session_factory = session_factory
        self.order_history = order_history
        self.detector = detector or MedianAbsoluteDeviationDetector(threshold=settings.baseline_outlier_threshold)
        self.lookback_days = lookback_days or settings.baseline_lookback_days
        self.min_points_per_day = min_points_per_day or settings.baseline_min_points_per_day

    async def recalculate(
        self,
        merchant_id: str,
        now: datetime | None = None,
        lookback_days: int | None = None,
    ) -> BaselineResponse:
        """Recompute and persist the merchant's baseline.

        Zero history is not an error: it yields an all-zero provisional baseline.

        Args:
            merchant_id: Merchant identifier
            now: Calculation time (injectable for testing)
            lookback_days: Window override

        Returns:
            BaselineResponse for the stored baseline
        """
        now = now or datetime.now(UTC)
        lookback = lookback_days or self.lookback_days
        as_of = now.date()
        start = as_of - timedelta(days=lookback - 1)

        logger.info("baseline_calculation_started", merchant_id=merchant_id, lookback_days=lookback)

        history = await self.order_history.fetch(merchant_id, start, as_of)
        result = calculate_baseline(
            history,
            as_of=as_of,
            lookback_days=lookback,
            detector=self.detector,
            min_points_per_day=self.min_points_per_day,
            now=now,
        )

        async with self.session_factory() as session:
            row = await session.get(Baseline, merchant_id)
            if row is None:
                row = Baseline(merchant_id=merchant_id)
                session.add(row)

            row.baseline_by_dow = {str(dow): value for dow, value in result.baseline_by_dow.items()}
            row.calculated_at = result.calculated_at
            row.lookback_days = result.lookback_days
            row.data_points_used = result.data_points_used
            row.anomalies_excluded = result.anomalies_excluded
            row.is_provisional = result.is_provisional
            await session.commit()
            response = _to_response(row)

        if result.data_points_used == 0:
            logger.warning("baseline_no_order_history", merchant_id=merchant_id, lookback_days=lookback)
        logger.info(
            "baseline_calculation_completed",
            merchant_id=merchant_id,
            data_points_used=result.data_points_used,
            anomalies_excluded=result.anomalies_excluded,
            is_provisional=result.is_provisional,
        )
        return response

    async def get_baseline(self, merchant_id: str) -> BaselineResponse | None:
        async with self.session_factory() as session:
            row = await session.get(Baseline, merchant_id)
            return _to_response(row) if row is not None else None

    async def compare(
        self,
        merchant_id: str,
        on: date,
        actual_revenue: float | None = None,
    ) -> BaselineComparisonResponse:
        """Compare a day's revenue with its day-of-week baseline.

        Args:
            merchant_id: Merchant identifier
            on: Day being compared
            actual_revenue: Revenue for that day; summed from order history when omitted

        Raises:
            BaselineNotFoundError: no baseline has been calculated yet
        """
        baseline = await self.get_baseline(merchant_id)
        if baseline is None:
            raise BaselineNotFoundError(merchant_id)

        if actual_revenue is None:
            history = await self.order_history.fetch(merchant_id, on, on)
            actual_revenue = sum(d.revenue for d in aggregate_daily_revenue(history) if d.day == on)

        comparison = compare_to_baseline(baseline.baseline_by_dow, baseline.is_provisional, on, actual_revenue)
        return BaselineComparisonResponse(
            date=on,
            actual_revenue=comparison.actual_revenue,
            expected_revenue=comparison.expected_revenue,
            lift_percent=comparison.lift_percent,
            is_provisional=comparison.is_provisional,
        )

    async def delete_baseline(self, merchant_id: str) -> int:
        """Remove a deleted merchant's baseline."""
        async with self.session_factory() as session:
            result = await session.execute(delete(Baseline).where(Baseline.merchant_id == merchant_id))
            await session.commit()
        logger.info("baseline_deleted", merchant_id=merchant_id, count=result.rowcount)
        return result.rowcount
