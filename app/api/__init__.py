from __future__ import annotations

from fastapi import APIRouter

from app.api.health import router as health_router
from app.api.routes.generation_jobs import router as generation_jobs_router
from app.api.routes.maintenance import router as maintenance_router
from app.api.routes.pipelines import router as pipelines_router
from app.api.routes.provider_callbacks import router as provider_callbacks_router

API_PREFIX = "/api"


def build_router() -> APIRouter:
    r = APIRouter(prefix=API_PREFIX)
    r.include_router(health_router)
    r.include_router(generation_jobs_router)
    r.include_router(pipelines_router)
    r.include_router(maintenance_router)
    r.include_router(provider_callbacks_router)
    return r
