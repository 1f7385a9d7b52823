from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends

from app.api.deps import get_current_user_id, get_services
from app.domain.models import (
    PipelineCreate,
    PipelineCreatedOut,
    PipelineStatusOut,
    PipelineStepOut,
    StepSummaryOut,
)
from app.domain.validators import validate_pipeline_request
from app.services.container import Services

router = APIRouter(prefix="/pipelines", tags=["pipelines"])


@router.post("", response_model=PipelineCreatedOut)
async def create_pipeline(
    req: PipelineCreate,
    user_id: UUID = Depends(get_current_user_id),
    services: Services = Depends(get_services),
) -> PipelineCreatedOut:
    provider, model, params = validate_pipeline_request(req)
    pipeline = await services.orchestrator.create(user_id, provider, model, params)
    return PipelineCreatedOut(
        pipeline_id=pipeline.id,
        steps=[StepSummaryOut(name=s.name, status=s.status) for s in pipeline.steps],
        message=f"Pipeline started with {len(pipeline.steps)} steps",
    )


@router.get("/{pipeline_id}", response_model=PipelineStatusOut)
async def get_pipeline_status(
    pipeline_id: UUID,
    user_id: UUID = Depends(get_current_user_id),
    services: Services = Depends(get_services),
) -> PipelineStatusOut:
    view = await services.orchestrator.status(user_id, pipeline_id)
    p = view.pipeline
    return PipelineStatusOut(
        pipeline_id=p.id,
        status=p.status,
        current_step_index=p.current_step_index,
        steps=[
            PipelineStepOut(
                name=s.name,
                status=s.status,
                progress=s.progress,
                provider_task_id=s.provider_task_id,
                result=s.result,
                error_message=s.error_message,
            )
            for s in p.steps
        ],
        aggregate_progress=view.aggregate_progress,
        estimated_time_remaining=view.estimated_time_remaining,
        final_result=p.final_result,
        error_message=p.error_message,
    )
