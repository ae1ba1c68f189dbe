"""Router registrations."""

from fastapi import APIRouter

from app.api.routers import audit, health, patients


def get_api_router() -> APIRouter:
    router = APIRouter()
    router.include_router(health.router, tags=["health"])
    router.include_router(patients.router, prefix="/api/v1/patients", tags=["patients"])
    router.include_router(audit.router, prefix="/api/v1/audit", tags=["audit"])
    return router
