from __future__ import annotations

from datetime import datetime
from typing import Any, List, Mapping, Optional, Sequence
from uuid import UUID

import asyncpg

from app.domain.enums import ACTIVE_STATUSES, JobStatus
from app.domain.models import GenerationJob, GenerationParams
from app.repos.base_repo import as_json, jsonb_param, status_values

_COLUMNS = """
  id, user_id, provider, model, status, progress, request_params, request_hash,
  provider_task_id, track_id, response_data, error_code, error_message,
  revision, created_at, updated_at
"""


def _to_job(row: Mapping[str, Any]) -> GenerationJob:
    return GenerationJob(
        id=row["id"],
        owner_id=row["user_id"],
        provider=row["provider"],
        model=row["model"],
        status=row["status"],
        progress=row["progress"],
        request_params=GenerationParams.model_validate(as_json(row["request_params"])),
        request_hash=row["request_hash"],
        provider_task_id=row["provider_task_id"],
        result_track_id=row["track_id"],
        response_data=as_json(row["response_data"]),
        error_code=row["error_code"],
        error_message=row["error_message"],
        revision=row["revision"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class GenerationJobsRepo:
    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    async def insert(self, job: GenerationJob) -> GenerationJob:
        sql = f"""
        INSERT INTO generation_jobs (
          id, user_id, provider, model, status, progress, request_params, request_hash, revision
        )
        VALUES ($1::uuid, $2::uuid, $3, $4, $5, $6, $7::jsonb, $8, 0)
        RETURNING {_COLUMNS}
        """
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                sql,
                job.id,
                job.owner_id,
                job.provider.value,
                job.model,
                job.status.value,
                job.progress,
                jsonb_param(job.request_params.model_dump()),
                job.request_hash,
            )
        return _to_job(row)

    async def get(self, job_id: UUID) -> Optional[GenerationJob]:
        sql = f"SELECT {_COLUMNS} FROM generation_jobs WHERE id = $1::uuid"
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(sql, job_id)
        return _to_job(row) if row else None

    async def update(self, job: GenerationJob, *, expected_revision: int) -> Optional[GenerationJob]:
        sql = f"""
        UPDATE generation_jobs
        SET status = $3,
            progress = $4,
            provider_task_id = $5,
            track_id = $6::uuid,
            response_data = $7::jsonb,
            error_code = $8,
            error_message = $9,
            revision = revision + 1,
            updated_at = now()
        WHERE id = $1::uuid
          AND revision = $2
        RETURNING {_COLUMNS}
        """
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                sql,
                job.id,
                expected_revision,
                job.status.value,
                job.progress,
                job.provider_task_id,
                job.result_track_id,
                jsonb_param(job.response_data),
                job.error_code,
                job.error_message,
            )
        return _to_job(row) if row else None

    async def find_active_by_hash(self, owner_id: UUID, request_hash: str) -> Optional[GenerationJob]:
        sql = f"""
        SELECT {_COLUMNS}
        FROM generation_jobs
        WHERE user_id = $1::uuid
          AND request_hash = $2
          AND status = ANY($3::text[])
        ORDER BY created_at DESC
        LIMIT 1
        """
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(sql, owner_id, request_hash, status_values(ACTIVE_STATUSES))
        return _to_job(row) if row else None

    async def list_stale(self, statuses: Sequence[JobStatus], older_than: datetime) -> List[GenerationJob]:
        sql = f"""
        SELECT {_COLUMNS}
        FROM generation_jobs
        WHERE status = ANY($1::text[])
          AND updated_at < $2
        ORDER BY updated_at
        """
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(sql, status_values(statuses), older_than)
        return [_to_job(r) for r in rows]
