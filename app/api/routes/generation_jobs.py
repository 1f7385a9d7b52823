from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends

from app.api.deps import get_current_user_id, get_services
from app.domain.models import GenerationJobCreate, JobCreatedOut, JobOut, TrackOut
from app.domain.validators import validate_generation_request
from app.services.container import Services
from app.services.generation_service import SubmitOutcome

router = APIRouter(prefix="/generation/jobs", tags=["generation"])


def _created(outcome: SubmitOutcome) -> JobCreatedOut:
    if outcome.deduplicated:
        message = "An identical request is already in progress"
    else:
        message = "Music generation started"
    return JobCreatedOut(
        job_id=outcome.job.id,
        status=outcome.job.status,
        message=message,
        deduplicated=outcome.deduplicated,
    )


@router.post("", response_model=JobCreatedOut)
async def create_job(
    req: GenerationJobCreate,
    user_id: UUID = Depends(get_current_user_id),
    services: Services = Depends(get_services),
) -> JobCreatedOut:
    provider, model, params = validate_generation_request(req)
    outcome = await services.generation.submit(user_id, provider, model, params)
    return _created(outcome)


@router.get("/{job_id}", response_model=JobOut)
async def get_job(
    job_id: UUID,
    user_id: UUID = Depends(get_current_user_id),
    services: Services = Depends(get_services),
) -> JobOut:
    job, track = await services.generation.get_owned(user_id, job_id)
    return JobOut(
        job_id=job.id,
        provider=job.provider,
        model=job.model,
        status=job.status,
        progress=job.progress,
        provider_task_id=job.provider_task_id,
        result_track_id=job.result_track_id,
        error_code=job.error_code,
        error_message=job.error_message,
        created_at=job.created_at,
        updated_at=job.updated_at,
        track=TrackOut.model_validate(track.model_dump()) if track else None,
    )


@router.post("/{job_id}/reset", response_model=JobCreatedOut)
async def reset_job(
    job_id: UUID,
    user_id: UUID = Depends(get_current_user_id),
    services: Services = Depends(get_services),
) -> JobCreatedOut:
    """Cancel the job if it is still running and start it over with the same request."""
    outcome = await services.generation.reset(user_id, job_id)
    out = _created(outcome)
    out.previous_job_id = job_id
    return out
