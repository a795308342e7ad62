"""Revenue baseline API routes."""

import datetime as dt

from fastapi import APIRouter, Depends, HTTPException, Query

from gate_engine.core.exceptions import BaselineNotFoundError
from gate_engine.db.base import get_session_factory
from gate_engine.schemas.baseline import (
    BaselineComparisonResponse,
    BaselineResponse,
    RecalculateBaselineRequest,
)
from gate_engine.services.baseline_service import BaselineService
from gate_engine.services.order_history import SqlOrderHistoryReader

router = APIRouter()


def get_baseline_service() -> BaselineService:
    """Dependency that provides BaselineService backed by the orders table.

    Override this dependency in tests via app.dependency_overrides.
    """
    session_factory = get_session_factory()
    return BaselineService(session_factory, SqlOrderHistoryReader(session_factory))


@router.get("/{merchant_id}/baseline", response_model=BaselineResponse)
async def get_baseline(merchant_id: str, service: BaselineService = Depends(get_baseline_service)):
    baseline = await service.get_baseline(merchant_id)
    if baseline is None:
        raise HTTPException(status_code=404, detail=f"No baseline found for merchant {merchant_id}")
    return baseline


@router.post("/{merchant_id}/baseline/recalculate", response_model=BaselineResponse)
async def recalculate_baseline(
    merchant_id: str,
    request: RecalculateBaselineRequest | None = None,
    service: BaselineService = Depends(get_baseline_service),
):
    """Recompute the baseline from order history and replace the stored one."""
    lookback_days = request.lookback_days if request else None
    return await service.recalculate(merchant_id, lookback_days=lookback_days)


@router.get("/{merchant_id}/baseline/compare", response_model=BaselineComparisonResponse)
async def compare_to_baseline(
    merchant_id: str,
    date: dt.date = Query(description="Day to compare (YYYY-MM-DD)"),
    actual_revenue: float | None = Query(default=None, ge=0, description="Defaults to revenue from order history"),
    service: BaselineService = Depends(get_baseline_service),
):
    """Actual vs expected revenue for a day, with lift percentage.

    Raises:
        HTTPException(404): No baseline calculated yet
    """
    try:
        return await service.compare(merchant_id, date, actual_revenue)
    except BaselineNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
