from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Optional
from uuid import UUID

from app.domain.enums import Checkpoint, JobStatus, ProviderName
from app.domain.errors import (
    ArtifactNotPersistedError,
    JobStateError,
    NotFoundError,
    RevisionConflictError,
)
from app.domain.models import GenerationJob, GenerationParams
from app.repos.base_repo import GenerationJobsStore, TracksStore

logger = logging.getLogger("job_lifecycle")

# progress while processing stays below 100; only finalize_success reaches it
MAX_PROCESSING_PROGRESS = 99


class JobLifecycleManager:
    """
    The only writer of GenerationJob rows, apart from the stuck-job reaper.

    Every transition is read -> check -> conditional write on `revision`.
    A lost race re-reads and re-applies, so a concurrent terminal write
    (reaper, cancel) is observed instead of overwritten.
    """

    def __init__(self, jobs: GenerationJobsStore, tracks: TracksStore, *, max_write_attempts: int = 5):
        self.jobs = jobs
        self.tracks = tracks
        self.max_write_attempts = max_write_attempts

    async def create(
        self,
        *,
        owner_id: UUID,
        provider: ProviderName,
        model: str,
        params: GenerationParams,
        request_hash: str = "",
    ) -> GenerationJob:
        job = await self.jobs.insert(
            GenerationJob(
                owner_id=owner_id,
                provider=provider,
                model=model,
                request_params=params,
                request_hash=request_hash,
            )
        )
        logger.info("generation_job_created", extra={"job_id": str(job.id), "provider": provider.value})
        return job

    async def get(self, job_id: UUID) -> GenerationJob:
        job = await self.jobs.get(job_id)
        if job is None:
            raise NotFoundError(f"Generation job {job_id} not found")
        return job

    async def mark_processing(self, job_id: UUID, progress: int) -> GenerationJob:
        target = max(0, min(MAX_PROCESSING_PROGRESS, int(progress)))

        def apply(job: GenerationJob) -> Optional[Dict[str, Any]]:
            changes: Dict[str, Any] = {}
            if job.status == JobStatus.pending:
                changes["status"] = JobStatus.processing
            if target > job.progress:
                changes["progress"] = target
            return changes or None

        return await self._transition(job_id, apply)

    async def record_provider_task(self, job_id: UUID, task_id: str) -> GenerationJob:
        def apply(job: GenerationJob) -> Optional[Dict[str, Any]]:
            changes: Dict[str, Any] = {"provider_task_id": task_id}
            if job.status == JobStatus.pending:
                changes["status"] = JobStatus.processing
            return changes

        return await self._transition(job_id, apply)

    async def finalize_success(
        self,
        job_id: UUID,
        track_id: UUID,
        response_data: Optional[Dict[str, Any]] = None,
    ) -> GenerationJob:
        job = await self.get(job_id)
        track = await self.tracks.get(track_id)
        if track is None or not track.audio_location:
            raise ArtifactNotPersistedError(f"Track {track_id} is missing or has no audio")
        if track.owner_id != job.owner_id:
            raise ArtifactNotPersistedError(f"Track {track_id} does not belong to the job owner")

        def apply(_: GenerationJob) -> Dict[str, Any]:
            return {
                "status": JobStatus.completed,
                "progress": int(Checkpoint.finalize),
                "result_track_id": track_id,
                "response_data": response_data,
            }

        done = await self._transition(job_id, apply)
        logger.info("generation_job_completed", extra={"job_id": str(job_id), "track_id": str(track_id)})
        return done

    async def finalize_failure(self, job_id: UUID, reason: str, error_code: str = "GENERATION_FAILED") -> GenerationJob:
        def apply(_: GenerationJob) -> Dict[str, Any]:
            return {"status": JobStatus.failed, "error_code": error_code, "error_message": reason}

        failed = await self._transition(job_id, apply)
        logger.warning(
            "generation_job_failed",
            extra={"job_id": str(job_id), "error_code": error_code, "error": reason},
        )
        return failed

    async def _transition(
        self,
        job_id: UUID,
        apply: Callable[[GenerationJob], Optional[Dict[str, Any]]],
    ) -> GenerationJob:
        for _ in range(self.max_write_attempts):
            job = await self.get(job_id)
            if job.status.is_terminal:
                raise JobStateError(f"Generation job {job_id} is already {job.status.value}")

            changes = apply(job)
            if not changes:
                return job

            written = await self.jobs.update(job.model_copy(update=changes), expected_revision=job.revision)
            if written is not None:
                return written

            logger.info("generation_job_revision_conflict", extra={"job_id": str(job_id), "revision": job.revision})

        raise RevisionConflictError(f"Generation job {job_id} kept changing underneath us")
