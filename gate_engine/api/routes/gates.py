"""Gate API routes: evaluation, state reads, feature checks and overrides."""

from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse

from gate_engine.core.exceptions import UnknownGateTypeError
from gate_engine.db.base import get_session_factory
from gate_engine.domain.thresholds import GateType, parse_gate_type
from gate_engine.schemas.gates import (
    EvaluateGateRequest,
    FeatureCheckResponse,
    GateStateResponse,
    OverrideAcknowledgement,
    OverrideRecord,
    OverrideRequest,
)
from gate_engine.services.gate_service import GateService
from gate_engine.services.override_service import OverrideService

router = APIRouter()


def get_gate_service() -> GateService:
    """Dependency that provides GateService.

    Override this dependency in tests via app.dependency_overrides.
    """
    return GateService(get_session_factory())


def get_override_service() -> OverrideService:
    return OverrideService(get_session_factory())


def _resolve_gate_type(gate_type: str) -> GateType:
    try:
        return parse_gate_type(gate_type)
    except UnknownGateTypeError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/{merchant_id}/gates", response_model=list[GateStateResponse])
async def list_gates(merchant_id: str, service: GateService = Depends(get_gate_service)):
    """All persisted gate states for a merchant, lazy expiry applied."""
    return await service.list_states(merchant_id)


@router.get(
    "/{merchant_id}/gates/check/{feature}",
    response_model=FeatureCheckResponse,
    responses={403: {"model": FeatureCheckResponse}},
)
async def check_feature(merchant_id: str, feature: str, service: GateService = Depends(get_gate_service)):
    """Whether a sending feature is allowed.

    Returns 403 with the blocking gate when a non-overridden gate blocks it.
    """
    result = await service.check_feature(merchant_id, feature)
    if not result.allowed:
        return JSONResponse(status_code=403, content=result.model_dump())
    return result


@router.get("/{merchant_id}/gates/{gate_type}", response_model=GateStateResponse)
async def get_gate(merchant_id: str, gate_type: str, service: GateService = Depends(get_gate_service)):
    """Current state of one gate. An unevaluated gate reads as pass with evaluated=false."""
    return await service.get_state(merchant_id, _resolve_gate_type(gate_type))


@router.post("/{merchant_id}/gates/{gate_type}/evaluate", response_model=GateStateResponse)
async def evaluate_gate(
    merchant_id: str,
    gate_type: str,
    request: EvaluateGateRequest,
    service: GateService = Depends(get_gate_service),
):
    """Evaluate a metric snapshot.

    Internal failures return the last persisted state flagged stale=true.

    Raises:
        HTTPException(400): Unknown gate type
    """
    resolved = _resolve_gate_type(gate_type)
    grace_period = timedelta(hours=request.grace_period_hours) if request.grace_period_hours else None
    return await service.evaluate_or_last_known(merchant_id, resolved, request.metrics, grace_period=grace_period)


@router.post("/{merchant_id}/gates/{gate_type}/override", response_model=OverrideAcknowledgement, status_code=201)
async def override_gate(
    merchant_id: str,
    gate_type: str,
    request: OverrideRequest,
    service: OverrideService = Depends(get_override_service),
):
    """Log a manual override. Gate state is left untouched."""
    resolved = _resolve_gate_type(gate_type)
    return await service.record_override(merchant_id, resolved, request.actor_id, request.reason)


@router.get("/{merchant_id}/gates/{gate_type}/overrides", response_model=list[OverrideRecord])
async def list_overrides(
    merchant_id: str,
    gate_type: str,
    service: OverrideService = Depends(get_override_service),
):
    """Override audit trail for one gate, newest first."""
    return await service.list_overrides(merchant_id, _resolve_gate_type(gate_type))


