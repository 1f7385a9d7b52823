from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import asyncpg

from app.config import Settings
from app.repos.base_repo import GenerationJobsStore, PipelineJobsStore, TracksStore
from app.repos.generation_jobs_repo import GenerationJobsRepo
from app.repos.memory_repos import InMemoryGenerationJobsRepo, InMemoryPipelineJobsRepo, InMemoryTracksRepo
from app.repos.pipeline_jobs_repo import PipelineJobsRepo
from app.repos.tracks_repo import TracksRepo
from app.services.change_feed import ChangeFeed
from app.services.generation_service import GenerationService
from app.services.job_lifecycle import JobLifecycleManager
from app.services.pipeline_orchestrator import PipelineOrchestrator
from app.services.providers.registry import ProviderRegistry, build_provider_registry
from app.services.stuck_job_reaper import StuckJobReaper
from app.services.task_registry import TaskRegistry


@dataclass
class Services:
    settings: Settings
    jobs: GenerationJobsStore
    tracks: TracksStore
    pipelines: PipelineJobsStore
    feed: Optional[ChangeFeed]
    registry: TaskRegistry
    providers: ProviderRegistry
    lifecycle: JobLifecycleManager
    generation: GenerationService
    orchestrator: PipelineOrchestrator
    reaper: StuckJobReaper


def build_services(
    settings: Settings,
    *,
    pool: Optional[asyncpg.Pool] = None,
    providers: Optional[ProviderRegistry] = None,
) -> Services:
    """Wire everything. Without a pool the in-memory store is used."""
    feed: Optional[ChangeFeed] = None
    if pool is None:
        feed = ChangeFeed()
        jobs: GenerationJobsStore = InMemoryGenerationJobsRepo(feed)
        tracks: TracksStore = InMemoryTracksRepo()
        pipelines: PipelineJobsStore = InMemoryPipelineJobsRepo(feed)
    else:
        jobs = GenerationJobsRepo(pool)
        tracks = TracksRepo(pool)
        pipelines = PipelineJobsRepo(pool)

    registry = TaskRegistry(max_active_per_owner=settings.MAX_ACTIVE_JOBS_PER_OWNER)
    providers = providers or build_provider_registry(settings)
    lifecycle = JobLifecycleManager(jobs, tracks)
    generation = GenerationService(
        lifecycle=lifecycle,
        tracks=tracks,
        providers=providers,
        registry=registry,
        settings=settings,
    )
    orchestrator = PipelineOrchestrator(
        pipelines=pipelines,
        generation=generation,
        providers=providers,
        registry=registry,
        settings=settings,
    )
    reaper = StuckJobReaper(
        jobs=jobs,
        pipelines=pipelines,
        registry=registry,
        job_threshold_seconds=settings.STUCK_JOB_THRESHOLD_SECONDS,
        pipeline_threshold_seconds=settings.STUCK_PIPELINE_THRESHOLD_SECONDS,
    )
    return Services(
        settings=settings,
        jobs=jobs,
        tracks=tracks,
        pipelines=pipelines,
        feed=feed,
        registry=registry,
        providers=providers,
        lifecycle=lifecycle,
        generation=generation,
        orchestrator=orchestrator,
        reaper=reaper,
    )
