from __future__ import annotations

from datetime import datetime
from typing import Any, List, Mapping, Optional, Sequence
from uuid import UUID

import asyncpg

from app.domain.enums import JobStatus
from app.domain.models import PipelineJob, PipelineParams, PipelineStep
from app.repos.base_repo import as_json, jsonb_param, status_values

_COLUMNS = """
  id, user_id, provider, model, status, current_step_index, steps, request_params,
  final_result, error_message, revision, created_at, updated_at
"""


def _to_pipeline(row: Mapping[str, Any]) -> PipelineJob:
    return PipelineJob(
        id=row["id"],
        owner_id=row["user_id"],
        provider=row["provider"],
        model=row["model"],
        status=row["status"],
        current_step_index=row["current_step_index"],
        steps=[PipelineStep.model_validate(s) for s in as_json(row["steps"])],
        request_params=PipelineParams.model_validate(as_json(row["request_params"])),
        final_result=as_json(row["final_result"]),
        error_message=row["error_message"],
        revision=row["revision"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _steps_param(pipeline: PipelineJob) -> Optional[str]:
    return jsonb_param([s.model_dump(mode="json") for s in pipeline.steps])


class PipelineJobsRepo:
    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    async def insert(self, pipeline: PipelineJob) -> PipelineJob:
        sql = f"""
        INSERT INTO pipeline_jobs (
          id, user_id, provider, model, status, current_step_index, steps, request_params, revision
        )
        VALUES ($1::uuid, $2::uuid, $3, $4, $5, $6, $7::jsonb, $8::jsonb, 0)
        RETURNING {_COLUMNS}
        """
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                sql,
                pipeline.id,
                pipeline.owner_id,
                pipeline.provider.value,
                pipeline.model,
                pipeline.status.value,
                pipeline.current_step_index,
                _steps_param(pipeline),
                jsonb_param(pipeline.request_params.model_dump()),
            )
        return _to_pipeline(row)

    async def get(self, pipeline_id: UUID) -> Optional[PipelineJob]:
        sql = f"SELECT {_COLUMNS} FROM pipeline_jobs WHERE id = $1::uuid"
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(sql, pipeline_id)
        return _to_pipeline(row) if row else None

    async def update(self, pipeline: PipelineJob, *, expected_revision: int) -> Optional[PipelineJob]:
        sql = f"""
        UPDATE pipeline_jobs
        SET status = $3,
            current_step_index = $4,
            steps = $5::jsonb,
            final_result = $6::jsonb,
            error_message = $7,
            revision = revision + 1,
            updated_at = now()
        WHERE id = $1::uuid
          AND revision = $2
        RETURNING {_COLUMNS}
        """
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                sql,
                pipeline.id,
                expected_revision,
                pipeline.status.value,
                pipeline.current_step_index,
                _steps_param(pipeline),
                jsonb_param(pipeline.final_result),
                pipeline.error_message,
            )
        return _to_pipeline(row) if row else None

    async def list_stale(self, statuses: Sequence[JobStatus], older_than: datetime) -> List[PipelineJob]:
        sql = f"""
        SELECT {_COLUMNS}
        FROM pipeline_jobs
        WHERE status = ANY($1::text[])
          AND updated_at < $2
        ORDER BY updated_at
        """
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(sql, status_values(statuses), older_than)
        return [_to_pipeline(r) for r in rows]
