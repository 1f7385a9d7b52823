"""
In-process implementations of the store contracts.

Used with STORE_BACKEND=memory and by the test-suite. Each method finishes
without awaiting, so a single event loop sees every read-check-write as atomic.
"""
from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional, Sequence
from uuid import UUID

from app.domain.enums import ACTIVE_STATUSES, JobStatus
from app.domain.models import GenerationJob, PipelineJob, Track, utcnow
from app.services.change_feed import ChangeFeed


class InMemoryGenerationJobsRepo:
    def __init__(self, feed: Optional[ChangeFeed] = None):
        self.feed = feed
        self._rows: Dict[UUID, GenerationJob] = {}

    def _emit(self, op: str, job: GenerationJob) -> None:
        if self.feed is not None:
            self.feed.publish("generation_jobs", op, job.id, job.status.value, {"progress": job.progress})

    async def insert(self, job: GenerationJob) -> GenerationJob:
        if job.id in self._rows:
            raise KeyError(f"duplicate generation job {job.id}")
        now = utcnow()
        stored = job.model_copy(update={"revision": 0, "created_at": now, "updated_at": now}, deep=True)
        self._rows[stored.id] = stored
        self._emit("INSERT", stored)
        return stored.model_copy(deep=True)

    async def get(self, job_id: UUID) -> Optional[GenerationJob]:
        row = self._rows.get(job_id)
        return row.model_copy(deep=True) if row else None

    async def update(self, job: GenerationJob, *, expected_revision: int) -> Optional[GenerationJob]:
        current = self._rows.get(job.id)
        if current is None or current.revision != expected_revision:
            return None
        stored = job.model_copy(
            update={
                # immutable columns always come from the stored row
                "owner_id": current.owner_id,
                "provider": current.provider,
                "model": current.model,
                "request_params": current.request_params,
                "request_hash": current.request_hash,
                "created_at": current.created_at,
                "revision": current.revision + 1,
                "updated_at": utcnow(),
            },
            deep=True,
        )
        self._rows[job.id] = stored
        self._emit("UPDATE", stored)
        return stored.model_copy(deep=True)

    async def find_active_by_hash(self, owner_id: UUID, request_hash: str) -> Optional[GenerationJob]:
        matches = [
            j
            for j in self._rows.values()
            if j.owner_id == owner_id and j.request_hash == request_hash and j.status in ACTIVE_STATUSES
        ]
        if not matches:
            return None
        return max(matches, key=lambda j: j.created_at).model_copy(deep=True)

    async def list_stale(self, statuses: Sequence[JobStatus], older_than: datetime) -> List[GenerationJob]:
        rows = [j for j in self._rows.values() if j.status in statuses and j.updated_at < older_than]
        return [j.model_copy(deep=True) for j in sorted(rows, key=lambda j: j.updated_at)]


class InMemoryTracksRepo:
    def __init__(self):
        self._rows: Dict[UUID, Track] = {}

    async def insert(self, track: Track) -> Track:
        if track.generation_job_id is not None:
            existing = await self.get_by_generation_job(track.generation_job_id)
            if existing is not None:
                return existing
        stored = track.model_copy(update={"created_at": utcnow()}, deep=True)
        self._rows[stored.id] = stored
        return stored.model_copy(deep=True)

    async def get(self, track_id: UUID) -> Optional[Track]:
        row = self._rows.get(track_id)
        return row.model_copy(deep=True) if row else None

    async def get_by_generation_job(self, job_id: UUID) -> Optional[Track]:
        for t in self._rows.values():
            if t.generation_job_id == job_id:
                return t.model_copy(deep=True)
        return None


class InMemoryPipelineJobsRepo:
    def __init__(self, feed: Optional[ChangeFeed] = None):
        self.feed = feed
        self._rows: Dict[UUID, PipelineJob] = {}

    def _emit(self, op: str, pipeline: PipelineJob) -> None:
        if self.feed is not None:
            self.feed.publish(
                "pipeline_jobs", op, pipeline.id, pipeline.status.value,
                {"currentStepIndex": pipeline.current_step_index},
            )

    async def insert(self, pipeline: PipelineJob) -> PipelineJob:
        if pipeline.id in self._rows:
            raise KeyError(f"duplicate pipeline {pipeline.id}")
        now = utcnow()
        stored = pipeline.model_copy(update={"revision": 0, "created_at": now, "updated_at": now}, deep=True)
        self._rows[stored.id] = stored
        self._emit("INSERT", stored)
        return stored.model_copy(deep=True)

    async def get(self, pipeline_id: UUID) -> Optional[PipelineJob]:
        row = self._rows.get(pipeline_id)
        return row.model_copy(deep=True) if row else None

    async def update(self, pipeline: PipelineJob, *, expected_revision: int) -> Optional[PipelineJob]:
        current = self._rows.get(pipeline.id)
        if current is None or current.revision != expected_revision:
            return None
        stored = pipeline.model_copy(
            update={
                "owner_id": current.owner_id,
                "provider": current.provider,
                "model": current.model,
                "request_params": current.request_params,
                "created_at": current.created_at,
                "revision": current.revision + 1,
                "updated_at": utcnow(),
            },
            deep=True,
        )
        self._rows[pipeline.id] = stored
        self._emit("UPDATE", stored)
        return stored.model_copy(deep=True)

    async def list_stale(self, statuses: Sequence[JobStatus], older_than: datetime) -> List[PipelineJob]:
        rows = [p for p in self._rows.values() if p.status in statuses and p.updated_at < older_than]
        return [p.model_copy(deep=True) for p in sorted(rows, key=lambda p: p.updated_at)]
