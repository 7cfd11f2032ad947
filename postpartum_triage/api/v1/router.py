"""API v1 router aggregating all endpoints."""

from fastapi import APIRouter

from postpartum_triage.api.v1 import cases, changes, health, triage

api_router = APIRouter()

# Health check
api_router.include_router(
    health.router,
    prefix="/health",
    tags=["health"],
)

# Triage
api_router.include_router(
    triage.router,
    prefix="/triage",
    tags=["triage"],
)

# Case records
api_router.include_router(
    cases.router,
    prefix="/cases",
    tags=["cases"],
)

# Change ledger
api_router.include_router(
    changes.router,
    prefix="/changes",
    tags=["changes"],
)
