from fastapi import APIRouter

from gate_engine.api.routes import baseline, gates, health

api_router = APIRouter()

api_router.include_router(health.router, tags=["health"])
api_router.include_router(gates.router, prefix="/merchants", tags=["gates"])
api_router.include_router(baseline.router, prefix="/merchants", tags=["baseline"])
