"""Periodic jobs: hourly gate evaluation sweeps and nightly baseline recalculation.

Each merchant/gate pair runs in isolation. One failing or slow evaluation is
logged and counted but never aborts the sweep, and each run is bounded by a
timeout so a hung metric source cannot stall the whole batch.
"""

import asyncio
import uuid
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Protocol

import structlog

from gate_engine.core.config import get_settings
from gate_engine.core.exceptions import GateLockTimeoutError
from gate_engine.core.locking import GateLock
from gate_engine.domain.thresholds import GateType, parse_gate_type
from gate_engine.services.baseline_service import BaselineService
from gate_engine.services.gate_service import GateService

logger = structlog.get_logger(__name__)


class MetricSource(Protocol):
    """Where the sweep gets metric snapshots from (ESP stats, analytics, ...)."""

    async def fetch_snapshot(self, merchant_id: str, gate_type: GateType) -> Mapping[str, Any] | None:
        """Latest snapshot, or None when the source has nothing for this gate."""
        ...


@dataclass
class JobReport:
    """Outcome counters for one sweep."""

    job: str
    started_at: datetime
    processed: int = 0
    skipped: int = 0
    failed: int = 0
    timed_out: int = 0
    errors: dict[str, str] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return self.processed + self.skipped + self.failed + self.timed_out


async def _bounded(semaphore: asyncio.Semaphore, timeout: float, coro):
    async with semaphore:
        async with asyncio.timeout(timeout):
            return await coro


async def _evaluate_one(
    gate_service: GateService,
    metric_source: MetricSource,
    merchant_id: str,
    gate_type: GateType,
    now: datetime,
    gate_lock: GateLock | None,
    owner: str,
    lock_wait: float,
) -> bool:
    """Evaluate one gate. Returns False when the source had no snapshot."""
    snapshot = await metric_source.fetch_snapshot(merchant_id, gate_type)
    if snapshot is None:
        return False

    if gate_lock is None:
        await gate_service.evaluate(merchant_id, gate_type, snapshot, now=now)
        return True

    ttl = get_settings().evaluation_lock_ttl_seconds
    async with gate_lock.lock(merchant_id, gate_type.value, owner, ttl=ttl, wait=True, wait_timeout=lock_wait) as acquired:
        if not acquired:
            raise GateLockTimeoutError(merchant_id, gate_type.value, lock_wait)
        await gate_service.evaluate(merchant_id, gate_type, snapshot, now=now)
    return True


async def run_gate_evaluations(
    gate_service: GateService,
    metric_source: MetricSource,
    merchant_ids: Iterable[str],
    gate_types: Iterable[str | GateType] = (GateType.DELIVERABILITY,),
    now: datetime | None = None,
    gate_lock: GateLock | None = None,
    timeout: float | None = None,
    max_concurrency: int | None = None,
    lock_wait: float | None = None,
) -> JobReport:
    """Evaluate every (merchant, gate) pair from the metric source.

    Args:
        gate_service: Service that persists evaluations
        metric_source: Snapshot provider
        merchant_ids: Merchants to sweep
        gate_types: Gate types to evaluate per merchant
        now: Sweep time shared by all evaluations (injectable for testing)
        gate_lock: Optional per-gate lock; a gate held elsewhere is skipped
        timeout: Per-evaluation timeout in seconds
        max_concurrency: Maximum evaluations in flight
        lock_wait: Seconds to wait for a held gate lock

    Returns:
        JobReport with per-outcome counts
    """
    settings = get_settings()
    now = now or datetime.now(UTC)
    timeout = timeout or settings.job_timeout_seconds
    semaphore = asyncio.Semaphore(max_concurrency or settings.job_max_concurrency)
    owner = f"sweep-{uuid.uuid4()}"
    lock_wait = lock_wait if lock_wait is not None else settings.evaluation_lock_wait_seconds

    resolved_types = [parse_gate_type(g) for g in gate_types]
    pairs = [(m, g) for m in merchant_ids for g in resolved_types]
    report = JobReport(job="gate_evaluations", started_at=now)

    logger.info("gate_sweep_started", pairs=len(pairs), owner=owner)

    results = await asyncio.gather(
        *(
            _bounded(
                semaphore,
                timeout,
                _evaluate_one(gate_service, metric_source, m, g, now, gate_lock, owner, lock_wait),
            )
            for m, g in pairs
        ),
        return_exceptions=True,
    )

    for (merchant_id, gate_type), result in zip(pairs, results):
        key = f"{merchant_id}:{gate_type.value}"
        if result is True:
            report.processed += 1
        elif result is False:
            report.skipped += 1
        elif isinstance(result, TimeoutError):
            report.timed_out += 1
            report.errors[key] = "timeout"
            logger.error("gate_evaluation_timed_out", merchant_id=merchant_id, gate_type=gate_type.value)
        elif isinstance(result, GateLockTimeoutError):
            report.skipped += 1
            logger.warning("gate_evaluation_locked", merchant_id=merchant_id, gate_type=gate_type.value)
        elif isinstance(result, Exception):
            report.failed += 1
            report.errors[key] = str(result)
            logger.error(
                "gate_evaluation_job_failed",
                merchant_id=merchant_id,
                gate_type=gate_type.value,
                error=str(result),
                error_type=type(result).__name__,
            )
        else:
            # CancelledError and other BaseExceptions propagate
            raise result

    logger.info(
        "gate_sweep_completed",
        processed=report.processed,
        skipped=report.skipped,
        failed=report.failed,
        timed_out=report.timed_out,
    )
    return report


async def run_baseline_recalculations(
    baseline_service: BaselineService,
    merchant_ids: Iterable[str],
    now: datetime | None = None,
    timeout: float | None = None,
    max_concurrency: int | None = None,
) -> JobReport:
    """Recalculate baselines for all merchants (nightly)."""
    settings = get_settings()
    now = now or datetime.now(UTC)
    timeout = timeout or settings.job_timeout_seconds
    semaphore = asyncio.Semaphore(max_concurrency or settings.job_max_concurrency)
    merchants = list(merchant_ids)
    report = JobReport(job="baseline_recalculations", started_at=now)

    results = await asyncio.gather(
        *(_bounded(semaphore, timeout, baseline_service.recalculate(m, now=now)) for m in merchants),
        return_exceptions=True,
    )

    for merchant_id, result in zip(merchants, results):
        if isinstance(result, TimeoutError):
            report.timed_out += 1
            report.errors[merchant_id] = "timeout"
            logger.error("baseline_recalculation_timed_out", merchant_id=merchant_id)
        elif isinstance(result, Exception):
            report.failed += 1
            report.errors[merchant_id] = str(result)
            logger.error(
                "baseline_recalculation_failed",
                merchant_id=merchant_id,
                error=str(result),
                error_type=type(result).__name__,
            )
        elif isinstance(result, BaseException):
            raise result
        else:
            report.processed += 1

    logger.info(
        "baseline_sweep_completed",
        processed=report.processed,
        failed=report.failed,
        timed_out=report.timed_out,
    )
    return report


async def purge_merchant(
    merchant_id: str,
    gate_service: GateService,
    baseline_service: BaselineService,
) -> dict[str, int]:
    """Drop gate states and baseline for a deleted merchant. The override audit trail is kept."""
    gates = await gate_service.delete_merchant_states(merchant_id)
    baselines = await baseline_service.delete_baseline(merchant_id)
    logger.info("merchant_purged", merchant_id=merchant_id, gate_states=gates, baselines=baselines)
    return {"gate_states": gates, "baselines": baselines}
