"""GateService: orchestrates gate evaluation, persistence and blocking checks."""

from collections.abc import Mapping
from datetime import UTC, datetime, timedelta
from typing import Any

import structlog
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError
from tenacity import retry, retry_if_exception_type, stop_after_attempt

from gate_engine.core.config import get_settings
from gate_engine.core.exceptions import GateEngineError, GateStateConflictError
from gate_engine.db.models.gate_state import GateState
from gate_engine.domain.evaluator import GateEvaluation, evaluate_gate
from gate_engine.domain.grace_period import resolve_on_read
from gate_engine.domain.overrides import override_applies
from gate_engine.domain.status import GateStatus, PriorGateState, ensure_utc
from gate_engine.domain.thresholds import GateType, grace_period_for, parse_gate_type
from gate_engine.schemas.gates import FeatureCheckResponse, GateStateResponse
from gate_engine.services.override_service import fetch_override_times

logger = structlog.get_logger(__name__)


def _prior_state(row: GateState | None) -> PriorGateState | None:
    if row is None:
        return None
    return PriorGateState(
        status=GateStatus(row.status),
        grace_period_ends_at=ensure_utc(row.grace_period_ends_at),
        failed_at=ensure_utc(row.failed_at),
    )


class GateService:
    """Service layer for gate operations.

    Evaluation reads the prior GateState, runs the pure evaluator and writes
    the result back under an optimistic version check. A lost update is
    retried once, then surfaced as GateStateConflictError.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        grace_period_hours: Mapping[str, int] | None = None,
    ):
        """Initialize with dependency injection.

        Args:
            session_factory: SQLAlchemy async session factory
            grace_period_hours: Grace window per gate type value, defaults to settings
        """
        self.session_factory = session_factory
        if grace_period_hours is None:
            grace_period_hours = get_settings().gate_grace_period_hours
        self.grace_period_hours = dict(grace_period_hours)

    def _grace_window(self, gate_type: GateType, override: timedelta | None) -> timedelta:
        if override is not None:
            return override
        return grace_period_for(gate_type, self.grace_period_hours)

    async def evaluate(
        self,
        merchant_id: str,
        gate_type: str | GateType,
        snapshot: Mapping[str, Any],
        now: datetime | None = None,
        grace_period: timedelta | None = None,
    ) -> GateStateResponse:
        """Evaluate a metric snapshot and persist the resulting gate state.

        Args:
            merchant_id: Merchant identifier
            gate_type: Gate type value
            snapshot: Metric snapshot (rates plus display counters)
            now: Evaluation time (injectable for testing)
            grace_period: Merchant-specific grace window

        Returns:
            GateStateResponse for the fresh evaluation

        Raises:
            UnknownGateTypeError: gate type not in the threshold table
            GateStateConflictError: concurrent write won twice in a row
        """
        resolved = parse_gate_type(gate_type)
        now = now or datetime.now(UTC)
        window = self._grace_window(resolved, grace_period)
        return await self._evaluate_once(merchant_id, resolved, dict(snapshot), now, window)

    @retry(
        retry=retry_if_exception_type(GateStateConflictError),
        stop=stop_after_attempt(2),
        reraise=True,
    )
    async def _evaluate_once(
        self,
        merchant_id: str,
        gate_type: GateType,
        snapshot: dict[str, Any],
        now: datetime,
        window: timedelta,
    ) -> GateStateResponse:
        async with self.session_factory() as session:
            row = await session.get(GateState, (merchant_id, gate_type.value))
            previous = _prior_state(row)
            evaluation = evaluate_gate(gate_type, snapshot, previous, now=now, grace_period=window)

            if not evaluation.has_data:
                # The stored row keeps the snapshot and timestamp that produced its status
                logger.info(
                    "gate_evaluation_skipped_no_data",
                    merchant_id=merchant_id,
                    gate_type=gate_type.value,
                    has_history=row is not None,
                )
                if row is None:
                    return self._view_from_evaluation(merchant_id, evaluation, snapshot, now, evaluated=False)
                view = await self._view_from_row(session, row, now)
                return view.model_copy(
                    update={"message": f"{view.message} Latest snapshot had no usable metrics; showing last evaluation."}
                )

            if row is None:
                row = GateState(merchant_id=merchant_id, gate_type=gate_type.value)
                session.add(row)

            row.status = evaluation.status.value
            row.message = evaluation.message
            row.metrics = snapshot
            row.blocked_features = evaluation.blocked_features
            row.grace_period_ends_at = evaluation.grace_period_ends_at
            row.failed_at = evaluation.failed_at
            row.last_evaluated_at = now

            try:
                await session.commit()
            except (StaleDataError, IntegrityError) as e:
                await session.rollback()
                logger.warning(
                    "gate_state_conflict",
                    merchant_id=merchant_id,
                    gate_type=gate_type.value,
                    error_type=type(e).__name__,
                )
                raise GateStateConflictError(merchant_id, gate_type.value) from e

            overridden = False
            if evaluation.status.is_blocking:
                times = await fetch_override_times(session, merchant_id, gate_type, evaluation.failed_at)
                overridden = override_applies(evaluation.status, evaluation.failed_at, times)

        self._log_evaluation(merchant_id, previous, evaluation)
        return self._view_from_evaluation(merchant_id, evaluation, snapshot, now, overridden=overridden)

    def _log_evaluation(
        self,
        merchant_id: str,
        previous: PriorGateState | None,
        evaluation: GateEvaluation,
    ) -> None:
        fields = {
            "merchant_id": merchant_id,
            "gate_type": evaluation.gate_type.value,
            "status": evaluation.status.value,
            "previous_status": previous.status.value if previous else None,
            "incomplete": evaluation.incomplete,
        }
        if evaluation.started_grace:
            logger.warning("gate_grace_period_started", grace_period_ends_at=evaluation.grace_period_ends_at, **fields)
        elif evaluation.expired:
            logger.error("gate_grace_period_expired", **fields)
        elif previous is not None and previous.status.is_blocking and not evaluation.status.is_blocking:
            logger.info("gate_recovered", **fields)
        else:
            logger.info("gate_evaluated", **fields)

    def _view_from_evaluation(
        self,
        merchant_id: str,
        evaluation: GateEvaluation,
        snapshot: dict[str, Any],
        now: datetime,
        evaluated: bool = True,
        overridden: bool = False,
    ) -> GateStateResponse:
        return GateStateResponse(
            merchant_id=merchant_id,
            gate_type=evaluation.gate_type.value,
            status=evaluation.status.value,
            message=evaluation.message,
            metrics=snapshot,
            blocked_features=evaluation.blocked_features,
            grace_period_ends_at=evaluation.grace_period_ends_at,
            last_evaluated_at=now if evaluated else None,
            evaluated=evaluated,
            overridden=overridden,
        )

    async def _view_from_row(self, session: AsyncSession, row: GateState, now: datetime) -> GateStateResponse:
        """Build the read view of a persisted row, applying lazy grace expiry."""
        gate_type = GateType(row.gate_type)
        state = resolve_on_read(_prior_state(row), now)

        message = row.message or ""
        if state.status.value != row.status:
            # Grace window lapsed since the last write; re-render from the stored failing snapshot
            message = evaluate_gate(
                gate_type,
                row.metrics or {},
                _prior_state(row),
                now=now,
                grace_period=self._grace_window(gate_type, None),
            ).message

        overridden = False
        if state.status.is_blocking and state.failed_at is not None:
            times = await fetch_override_times(session, row.merchant_id, gate_type, state.failed_at)
            overridden = override_applies(state.status, state.failed_at, times)

        return GateStateResponse(
            merchant_id=row.merchant_id,
            gate_type=gate_type.value,
            status=state.status.value,
            message=message,
            metrics=row.metrics or {},
            blocked_features=list(row.blocked_features or []) if state.status.is_blocking else [],
            grace_period_ends_at=state.grace_period_ends_at,
            last_evaluated_at=ensure_utc(row.last_evaluated_at),
            overridden=overridden,
        )

    async def get_state(
        self,
        merchant_id: str,
        gate_type: str | GateType,
        now: datetime | None = None,
    ) -> GateStateResponse:
        """Current gate state; an unevaluated gate reads as an implicit pass."""
        resolved = parse_gate_type(gate_type)
        now = now or datetime.now(UTC)

        async with self.session_factory() as session:
            row = await session.get(GateState, (merchant_id, resolved.value))
            if row is None:
                return GateStateResponse(
                    merchant_id=merchant_id,
                    gate_type=resolved.value,
                    status=GateStatus.PASS.value,
                    message="Not yet evaluated.",
                    evaluated=False,
                )
            return await self._view_from_row(session, row, now)

    async def list_states(self, merchant_id: str, now: datetime | None = None) -> list[GateStateResponse]:
        """All persisted gate states for a merchant."""
        now = now or datetime.now(UTC)
        async with self.session_factory() as session:
            result = await session.execute(
                select(GateState).where(GateState.merchant_id == merchant_id).order_by(GateState.gate_type)
            )
            return [await self._view_from_row(session, row, now) for row in result.scalars().all()]

    async def evaluate_or_last_known(
        self,
        merchant_id: str,
        gate_type: str | GateType,
        snapshot: Mapping[str, Any],
        now: datetime | None = None,
        grace_period: timedelta | None = None,
    ) -> GateStateResponse:
        """Evaluate, falling back to the last persisted state on internal errors.

        Configuration errors (unknown gate type) are still raised.
        """
        resolved = parse_gate_type(gate_type)
        try:
            return await self.evaluate(merchant_id, resolved, snapshot, now=now, grace_period=grace_period)
        except (GateEngineError, SQLAlchemyError) as e:
            logger.error(
                "gate_evaluation_failed_serving_last_known",
                merchant_id=merchant_id,
                gate_type=resolved.value,
                error=str(e),
                error_type=type(e).__name__,
            )
            last_known = await self.get_state(merchant_id, resolved, now=now)
            return last_known.model_copy(update={"stale": True})

    async def check_feature(
        self,
        merchant_id: str,
        feature: str,
        now: datetime | None = None,
    ) -> FeatureCheckResponse:
        """Check whether any gate currently blocks a feature.

        Overridden gates do not block.
        """
        for state in await self.list_states(merchant_id, now=now):
            if state.overridden or feature not in state.blocked_features:
                continue
            return FeatureCheckResponse(
                feature=feature,
                allowed=False,
                gate_type=state.gate_type,
                reason=f"Blocked by {state.gate_type} gate ({state.status})",
                can_override=True,
            )
        return FeatureCheckResponse(feature=feature, allowed=True)

    async def delete_merchant_states(self, merchant_id: str) -> int:
        """Remove all gate states for a merchant being deleted. Overrides are kept."""
        async with self.session_factory() as session:
            result = await session.execute(delete(GateState).where(GateState.merchant_id == merchant_id))
            await session.commit()
        logger.info("gate_states_deleted", merchant_id=merchant_id, count=result.rowcount)
        return result.rowcount
