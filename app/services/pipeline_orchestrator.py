"""
Multi-stage pipeline: style refinement -> base generation -> optional
extension / vocal separation / WAV conversion.

The pipeline is not transactional. When a stage fails the chain stops, the
pipeline is marked failed and later steps stay pending; tracks and provider
artifacts produced by earlier steps are kept and stay referenced from the
completed steps' results.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional
from uuid import UUID

from app.config import Settings
from app.domain.enums import STAGE_KINDS, JobStatus, ProviderName, RequestKind, StepName
from app.domain.errors import (
    GenerationError,
    InvalidRequestError,
    JobStateError,
    NotFoundError,
    PipelineStageFailure,
    RevisionConflictError,
)
from app.domain.models import PipelineJob, PipelineParams, PipelineStep, Track, utcnow
from app.repos.base_repo import PipelineJobsStore
from app.services.generation_service import GenerationService
from app.services.polling_loop import poll_until_done
from app.services.providers.base import ProviderAdapter, ProviderRequest
from app.services.providers.registry import ProviderRegistry
from app.services.style_enhancer import StyleEnhancer
from app.services.task_registry import TaskHandle, TaskRegistry

logger = logging.getLogger("pipeline_orchestrator")

MIN_CONTINUE_AT_SECONDS = 30

STEP_ESTIMATE_SECONDS = {
    StepName.style_refinement: 10,
    StepName.extension: 120,
    StepName.vocal_separation: 90,
    StepName.wav_conversion: 60,
}


def build_steps(params: PipelineParams) -> List[PipelineStep]:
    names = [StepName.style_refinement, StepName.base_generation]
    if params.enable_extension:
        names.append(StepName.extension)
    if params.enable_vocal_separation:
        names.append(StepName.vocal_separation)
    if params.enable_wav_conversion:
        names.append(StepName.wav_conversion)
    return [PipelineStep(name=n) for n in names]


def continue_at(track_duration: int, extend_at_seconds: int) -> int:
    return max(track_duration - extend_at_seconds, MIN_CONTINUE_AT_SECONDS)


@dataclass(frozen=True)
class PipelineProgress:
    pipeline: PipelineJob
    aggregate_progress: float
    estimated_time_remaining: int


@dataclass
class _RunContext:
    style: str
    base_track: Optional[Track] = None
    base_task_id: Optional[str] = None


class PipelineOrchestrator:
    def __init__(
        self,
        *,
        pipelines: PipelineJobsStore,
        generation: GenerationService,
        providers: ProviderRegistry,
        registry: TaskRegistry,
        settings: Settings,
        style_enhancer: Optional[StyleEnhancer] = None,
        max_write_attempts: int = 5,
    ):
        self.pipelines = pipelines
        self.generation = generation
        self.providers = providers
        self.registry = registry
        self.settings = settings
        self.style_enhancer = style_enhancer or StyleEnhancer()
        self.max_write_attempts = max_write_attempts

    # -----------------------------
    # create / read
    # -----------------------------

    async def create(
        self,
        owner_id: UUID,
        provider: ProviderName,
        model: Optional[str],
        params: PipelineParams,
    ) -> PipelineJob:
        adapter = self.providers.get(provider)
        steps = build_steps(params)

        unsupported = [s.name.value for s in steps if s.name in STAGE_KINDS and STAGE_KINDS[s.name] not in adapter.capabilities]
        if unsupported:
            raise InvalidRequestError(f"Provider '{provider.value}' does not support: {', '.join(unsupported)}")

        pipeline = await self.pipelines.insert(
            PipelineJob(
                owner_id=owner_id,
                provider=provider,
                model=model or adapter.default_model,
                steps=steps,
                request_params=params,
            )
        )
        logger.info(
            "pipeline_created",
            extra={"pipeline_id": str(pipeline.id), "steps": [s.name.value for s in steps]},
        )

        pipeline_id = pipeline.id
        self.registry.spawn(pipeline_id, owner_id, lambda handle: self.run(pipeline_id, handle), kind="pipeline")
        return pipeline

    async def get_owned(self, owner_id: UUID, pipeline_id: UUID) -> PipelineJob:
        pipeline = await self.pipelines.get(pipeline_id)
        if pipeline is None or pipeline.owner_id != owner_id:
            raise NotFoundError("Pipeline not found")
        return pipeline

    async def status(self, owner_id: UUID, pipeline_id: UUID) -> PipelineProgress:
        pipeline = await self.get_owned(owner_id, pipeline_id)
        fractions = [await self._step_fraction(s) for s in pipeline.steps]
        n = len(pipeline.steps)

        if pipeline.status == JobStatus.completed:
            return PipelineProgress(pipeline, 1.0, 0)

        aggregate = sum(fractions) / n if n else 0.0
        if pipeline.status.is_terminal:
            return PipelineProgress(pipeline, round(aggregate, 4), 0)

        adapter = self.providers.get(pipeline.provider)
        remaining = 0.0
        for step, fraction in zip(pipeline.steps, fractions):
            remaining += self._step_estimate(step.name, adapter, pipeline.request_params) * (1.0 - fraction)
        return PipelineProgress(pipeline, round(min(aggregate, 1.0), 4), int(round(remaining)))

    async def _step_fraction(self, step: PipelineStep) -> float:
        if step.status == JobStatus.completed:
            return 1.0
        if step.status != JobStatus.processing:
            return 0.0
        if step.name == StepName.base_generation and step.result and step.result.get("generationJobId"):
            job = await self.generation.lifecycle.jobs.get(UUID(str(step.result["generationJobId"])))
            if job is not None:
                return min(job.progress, 99) / 100.0
        return min(step.progress, 99) / 100.0

    @staticmethod
    def _step_estimate(name: StepName, adapter: ProviderAdapter, params: PipelineParams) -> int:
        if name == StepName.base_generation:
            return adapter.estimated_seconds(params.duration_seconds)
        return STEP_ESTIMATE_SECONDS[name]

    # -----------------------------
    # background unit
    # -----------------------------

    async def run(self, pipeline_id: UUID, handle: TaskHandle) -> None:
        try:
            await self._run_steps(pipeline_id, handle)
        except JobStateError as e:
            logger.info("pipeline_finalized_elsewhere", extra={"pipeline_id": str(pipeline_id), "error": str(e)})

    async def _run_steps(self, pipeline_id: UUID, handle: TaskHandle) -> None:
        pipeline = await self.pipelines.get(pipeline_id)
        if pipeline is None or pipeline.status.is_terminal:
            return

        adapter = self.providers.get(pipeline.provider)
        ctx = _RunContext(style=pipeline.request_params.style)

        def start(p: PipelineJob) -> None:
            p.status = JobStatus.processing

        await self._mutate(pipeline_id, start)

        for idx, step in enumerate(pipeline.steps):

            def begin(p: PipelineJob, idx: int = idx) -> None:
                p.current_step_index = idx
                p.steps[idx].status = JobStatus.processing
                p.steps[idx].started_at = utcnow()

            pipeline = await self._mutate(pipeline_id, begin)

            try:
                handle.raise_if_cancelled()
                result = await self._run_step(pipeline, idx, adapter, ctx, handle)
            except JobStateError:
                raise
            except Exception as e:
                await self._fail_step(pipeline_id, idx, e)
                return

            def complete(p: PipelineJob, idx: int = idx, result: Dict[str, Any] = result) -> None:
                p.steps[idx].status = JobStatus.completed
                p.steps[idx].progress = 100
                p.steps[idx].result = result
                p.steps[idx].finished_at = utcnow()

            await self._mutate(pipeline_id, complete)
            logger.info("pipeline_step_completed", extra={"pipeline_id": str(pipeline_id), "step": step.name.value})

        def finish(p: PipelineJob) -> None:
            p.status = JobStatus.completed
            p.final_result = {
                "trackId": str(ctx.base_track.id) if ctx.base_track else None,
                "audioUrl": ctx.base_track.audio_location if ctx.base_track else None,
                "style": ctx.style,
                "stages": {s.name.value: s.result for s in p.steps},
            }

        await self._mutate(pipeline_id, finish)
        logger.info("pipeline_completed", extra={"pipeline_id": str(pipeline_id)})

    async def _run_step(
        self,
        pipeline: PipelineJob,
        idx: int,
        adapter: ProviderAdapter,
        ctx: _RunContext,
        handle: TaskHandle,
    ) -> Dict[str, Any]:
        name = pipeline.steps[idx].name
        params = pipeline.request_params

        if name == StepName.style_refinement:
            refined = await self.style_enhancer.enhance(adapter, params.style, params.prompt)
            ctx.style = refined.style
            return {"style": refined.style, "method": refined.method}

        if name == StepName.base_generation:
            return await self._run_base_generation(pipeline, idx, ctx, handle)

        return await self._run_stage(pipeline, idx, STAGE_KINDS[name], adapter, ctx, handle)

    async def _run_base_generation(
        self,
        pipeline: PipelineJob,
        idx: int,
        ctx: _RunContext,
        handle: TaskHandle,
    ) -> Dict[str, Any]:
        outcome = await self.generation.create_job(
            pipeline.owner_id,
            pipeline.provider,
            pipeline.model,
            pipeline.request_params.generation_params(style=ctx.style),
            dedupe=False,
        )
        job_id = outcome.job.id
        self.registry.attach(handle, job_id)

        def link(p: PipelineJob) -> None:
            p.steps[idx].result = {"generationJobId": str(job_id)}

        await self._mutate(pipeline.id, link)

        try:
            job = await self.generation.run(job_id, handle, max_poll_attempts=self.settings.PIPELINE_MAX_POLL_ATTEMPTS)
        finally:
            self.registry.detach(handle, job_id)
        if job.status != JobStatus.completed or job.result_track_id is None:
            raise PipelineStageFailure(StepName.base_generation.value, job.error_message or "Base generation failed")

        track = await self.generation.tracks.get(job.result_track_id)
        if track is None:
            raise PipelineStageFailure(StepName.base_generation.value, "Base generation track is missing")

        ctx.base_track = track
        ctx.base_task_id = job.provider_task_id

        def record_task(p: PipelineJob) -> None:
            p.steps[idx].provider_task_id = job.provider_task_id

        await self._mutate(pipeline.id, record_task)
        return {
            "generationJobId": str(job.id),
            "trackId": str(track.id),
            "providerNativeId": track.provider_native_id,
            "audioUrl": track.audio_location,
            "durationSeconds": track.duration_seconds,
        }

    async def _run_stage(
        self,
        pipeline: PipelineJob,
        idx: int,
        kind: RequestKind,
        adapter: ProviderAdapter,
        ctx: _RunContext,
        handle: TaskHandle,
    ) -> Dict[str, Any]:
        track = ctx.base_track
        if track is None:
            raise PipelineStageFailure(pipeline.steps[idx].name.value, "No base track to work on")

        params = pipeline.request_params
        is_extension = kind == RequestKind.extend
        request = ProviderRequest(
            kind=kind,
            model=pipeline.model,
            prompt=params.extend_prompt if is_extension else params.prompt,
            style=ctx.style,
            title=track.title,
            duration_seconds=track.duration_seconds,
            instrumental=params.instrumental,
            audio_id=track.provider_native_id,
            parent_task_id=ctx.base_task_id,
            continue_at=continue_at(track.duration_seconds, params.extend_at_seconds) if is_extension else None,
        )

        task_id = await adapter.submit(request)
        self.registry.bind_provider_task(handle, task_id)

        def record_task(p: PipelineJob) -> None:
            p.steps[idx].provider_task_id = task_id

        await self._mutate(pipeline.id, record_task)

        async def on_attempt(attempt: int, max_attempts: int) -> None:
            pct = min(99, (100 * attempt) // max_attempts)

            def bump(p: PipelineJob) -> None:
                p.steps[idx].progress = max(p.steps[idx].progress, pct)

            await self._mutate(pipeline.id, bump)

        artifact = await poll_until_done(
            adapter,
            task_id,
            kind=kind,
            max_attempts=self.settings.PIPELINE_MAX_POLL_ATTEMPTS,
            interval_seconds=self.settings.JOB_POLL_INTERVAL_SECONDS,
            handle=handle,
            on_attempt=on_attempt,
        )
        result = {"providerTaskId": task_id, **artifact.summary()}
        if is_extension:
            result["continueAt"] = request.continue_at
        return result

    async def _fail_step(self, pipeline_id: UUID, idx: int, e: Exception) -> None:
        message = str(e) or type(e).__name__
        if isinstance(e, GenerationError):
            logger.warning(
                "pipeline_step_failed",
                extra={"pipeline_id": str(pipeline_id), "step_index": idx, "error_code": e.code, "error": message},
            )
        else:
            logger.exception("pipeline_step_crashed", extra={"pipeline_id": str(pipeline_id), "step_index": idx})

        def fail(p: PipelineJob) -> None:
            p.steps[idx].status = JobStatus.failed
            p.steps[idx].error_message = message
            p.steps[idx].finished_at = utcnow()
            p.status = JobStatus.failed
            p.error_message = message

        await self._mutate(pipeline_id, fail)

    async def _mutate(self, pipeline_id: UUID, apply: Callable[[PipelineJob], None]) -> PipelineJob:
        for _ in range(self.max_write_attempts):
            current = await self.pipelines.get(pipeline_id)
            if current is None:
                raise NotFoundError(f"Pipeline {pipeline_id} not found")
            if current.status.is_terminal:
                raise JobStateError(f"Pipeline {pipeline_id} is already {current.status.value}")

            draft = current.model_copy(deep=True)
            apply(draft)
            written = await self.pipelines.update(draft, expected_revision=current.revision)
            if written is not None:
                return written

        raise RevisionConflictError(f"Pipeline {pipeline_id} kept changing underneath us")
