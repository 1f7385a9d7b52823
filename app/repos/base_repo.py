from __future__ import annotations

import json
from datetime import datetime
from typing import Any, List, Optional, Protocol, Sequence
from uuid import UUID

from app.domain.enums import JobStatus
from app.domain.models import GenerationJob, PipelineJob, Track


def jsonb_param(value: Any) -> Optional[str]:
    """asyncpg takes jsonb parameters as JSON text."""
    if value is None:
        return None
    return json.dumps(value, default=str)


def as_json(value: Any) -> Any:
    if isinstance(value, (str, bytes)):
        return json.loads(value)
    return value


class GenerationJobsStore(Protocol):
    async def insert(self, job: GenerationJob) -> GenerationJob: ...

    async def get(self, job_id: UUID) -> Optional[GenerationJob]: ...

    async def update(self, job: GenerationJob, *, expected_revision: int) -> Optional[GenerationJob]:
        """Write every mutable field iff the stored revision still equals expected_revision.

        Returns the stored row (revision bumped, updated_at refreshed) or None on conflict.
        """
        ...

    async def find_active_by_hash(self, owner_id: UUID, request_hash: str) -> Optional[GenerationJob]: ...

    async def list_stale(self, statuses: Sequence[JobStatus], older_than: datetime) -> List[GenerationJob]: ...


class TracksStore(Protocol):
    async def insert(self, track: Track) -> Track: ...

    async def get(self, track_id: UUID) -> Optional[Track]: ...

    async def get_by_generation_job(self, job_id: UUID) -> Optional[Track]: ...


class PipelineJobsStore(Protocol):
    async def insert(self, pipeline: PipelineJob) -> PipelineJob: ...

    async def get(self, pipeline_id: UUID) -> Optional[PipelineJob]: ...

    async def update(self, pipeline: PipelineJob, *, expected_revision: int) -> Optional[PipelineJob]: ...

    async def list_stale(self, statuses: Sequence[JobStatus], older_than: datetime) -> List[PipelineJob]: ...


def status_values(statuses: Sequence[JobStatus]) -> List[str]:
    return [JobStatus(s).value for s in statuses]
