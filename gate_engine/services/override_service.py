"""OverrideService: append-only ledger of manual gate overrides."""

import uuid
from datetime import UTC, datetime

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gate_engine.db.models.gate_override import GateOverride
from gate_engine.domain.status import ensure_utc
from gate_engine.domain.thresholds import GateType, parse_gate_type
from gate_engine.schemas.gates import OverrideAcknowledgement, OverrideRecord

logger = structlog.get_logger(__name__)


async def fetch_override_times(
    session: AsyncSession,
    merchant_id: str,
    gate_type: GateType,
    since: datetime,
) -> list[datetime]:
    """created_at of overrides for a gate recorded at or after `since`."""
    result = await session.execute(
        select(GateOverride.created_at).where(
            GateOverride.merchant_id == merchant_id,
            GateOverride.gate_type == gate_type.value,
            GateOverride.created_at >= since,
        )
    )
    return [ensure_utc(created_at) for created_at in result.scalars().all()]


def _to_record(row: GateOverride) -> OverrideRecord:
    return OverrideRecord(
        override_id=str(row.id),
        merchant_id=row.merchant_id,
        gate_type=row.gate_type,
        actor_id=row.actor_id,
        reason=row.reason,
        created_at=ensure_utc(row.created_at),
    )


class OverrideService:
    """Records and lists overrides. Never updates or deletes them, never touches GateState."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def record_override(
        self,
        merchant_id: str,
        gate_type: str | GateType,
        actor_id: str,
        reason: str,
        now: datetime | None = None,
    ) -> OverrideAcknowledgement:
        """Append an override to the audit trail.

        Args:
            merchant_id: Merchant whose gate is being overridden
            gate_type: Gate type value
            actor_id: Who consciously unblocked the gate
            reason: Free-text justification
            now: Record time (injectable for testing)

        Returns:
            OverrideAcknowledgement (does not include or alter gate state)

        Raises:
            UnknownGateTypeError: gate type not in the threshold table
        """
        resolved = parse_gate_type(gate_type)
        now = now or datetime.now(UTC)

        row = GateOverride(
            id=uuid.uuid4(),
            merchant_id=merchant_id,
            gate_type=resolved.value,
            actor_id=actor_id,
            reason=reason,
            created_at=now,
        )
        async with self.session_factory() as session:
            session.add(row)
            await session.commit()

        logger.warning(
            "gate_override_recorded",
            merchant_id=merchant_id,
            gate_type=resolved.value,
            actor_id=actor_id,
            reason=reason,
            override_id=str(row.id),
        )

        return OverrideAcknowledgement(
            override_id=str(row.id),
            merchant_id=merchant_id,
            gate_type=resolved.value,
            recorded_at=now,
            message="Gate override logged. Proceed with caution.",
        )

    async def list_overrides(
        self,
        merchant_id: str,
        gate_type: str | GateType | None = None,
    ) -> list[OverrideRecord]:
        """Audit trail for a merchant, newest first."""
        stmt = select(GateOverride).where(GateOverride.merchant_id == merchant_id)
        if gate_type is not None:
            stmt = stmt.where(GateOverride.gate_type == parse_gate_type(gate_type).value)
        stmt = stmt.order_by(GateOverride.created_at.desc())

        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return [_to_record(row) for row in result.scalars().all()]
