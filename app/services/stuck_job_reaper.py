from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from app.domain.enums import ACTIVE_STATUSES, JobStatus
from app.domain.models import GenerationJob, PipelineJob, utcnow
from app.repos.base_repo import GenerationJobsStore, PipelineJobsStore
from app.services.task_registry import TaskRegistry

logger = logging.getLogger("stuck_job_reaper")

STALLED_CODE = "STALLED"


@dataclass(frozen=True)
class ReapResult:
    cleaned_jobs: int
    cleaned_pipelines: int


def _stall_message(threshold_seconds: int) -> str:
    minutes = max(1, threshold_seconds // 60)
    return f"Task stalled: no progress for {minutes} minutes and was automatically cleaned up"


class StuckJobReaper:
    """
    Fails jobs and pipelines that have not been written to within a threshold.

    A row is only failed if it is unchanged since the scan (same revision) and
    no background unit in this process owns it.
    """

    def __init__(
        self,
        *,
        jobs: GenerationJobsStore,
        pipelines: PipelineJobsStore,
        registry: Optional[TaskRegistry] = None,
        job_threshold_seconds: int = 900,
        pipeline_threshold_seconds: int = 1800,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.jobs = jobs
        self.pipelines = pipelines
        self.registry = registry
        self.job_threshold_seconds = job_threshold_seconds
        self.pipeline_threshold_seconds = pipeline_threshold_seconds
        self.clock = clock

    async def sweep(self) -> ReapResult:
        now = self.clock()
        cleaned_jobs = 0
        for job in await self.jobs.list_stale(ACTIVE_STATUSES, now - timedelta(seconds=self.job_threshold_seconds)):
            if await self._reap_job(job):
                cleaned_jobs += 1

        cleaned_pipelines = 0
        cutoff = now - timedelta(seconds=self.pipeline_threshold_seconds)
        for pipeline in await self.pipelines.list_stale(ACTIVE_STATUSES, cutoff):
            if await self._reap_pipeline(pipeline):
                cleaned_pipelines += 1

        if cleaned_jobs or cleaned_pipelines:
            logger.info(
                "stuck_jobs_cleaned",
                extra={"cleaned_jobs": cleaned_jobs, "cleaned_pipelines": cleaned_pipelines},
            )
        return ReapResult(cleaned_jobs=cleaned_jobs, cleaned_pipelines=cleaned_pipelines)

    def _owned_here(self, key) -> bool:
        return self.registry is not None and self.registry.is_active(key)

    async def _reap_job(self, job: GenerationJob) -> bool:
        if self._owned_here(job.id):
            logger.info("stuck_job_skipped_live", extra={"job_id": str(job.id)})
            return False

        failed = job.model_copy(
            update={
                "status": JobStatus.failed,
                "error_code": STALLED_CODE,
                "error_message": _stall_message(self.job_threshold_seconds),
            }
        )
        written = await self.jobs.update(failed, expected_revision=job.revision)
        if written is None:
            logger.info("stuck_job_changed_since_scan", extra={"job_id": str(job.id)})
            return False

        logger.warning(
            "stuck_job_reaped",
            extra={"job_id": str(job.id), "status": job.status.value, "updated_at": job.updated_at.isoformat()},
        )
        return True

    async def _reap_pipeline(self, pipeline: PipelineJob) -> bool:
        if self._owned_here(pipeline.id):
            return False

        message = _stall_message(self.pipeline_threshold_seconds)
        draft = pipeline.model_copy(deep=True)
        for step in draft.steps:
            if step.status == JobStatus.processing:
                step.status = JobStatus.failed
                step.error_message = message
                step.finished_at = self.clock()
        draft.status = JobStatus.failed
        draft.error_message = message

        written = await self.pipelines.update(draft, expected_revision=pipeline.revision)
        if written is None:
            return False

        logger.warning("stuck_pipeline_reaped", extra={"pipeline_id": str(pipeline.id)})
        return True
