from __future__ import annotations

from fastapi import APIRouter, Depends

from app.api.deps import get_services, require_maintenance_token
from app.domain.models import CleanupOut
from app.services.container import Services

router = APIRouter(prefix="/maintenance", tags=["maintenance"])


@router.post("/cleanup-stuck-jobs", response_model=CleanupOut, dependencies=[Depends(require_maintenance_token)])
async def cleanup_stuck_jobs(services: Services = Depends(get_services)) -> CleanupOut:
    result = await services.reaper.sweep()
    return CleanupOut(
        cleaned_jobs=result.cleaned_jobs,
        cleaned_pipelines=result.cleaned_pipelines,
        message=f"Cleaned up {result.cleaned_jobs} stuck jobs",
    )
