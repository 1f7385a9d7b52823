from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Tuple
from uuid import UUID

from app.config import Settings
from app.domain.enums import Checkpoint, ProviderName, RequestKind
from app.domain.errors import (
    ArtifactNotPersistedError,
    GenerationError,
    JobCancelledError,
    JobStateError,
    NotFoundError,
    error_code,
)
from app.domain.models import GenerationJob, GenerationParams, Track
from app.domain.validators import default_title
from app.repos.base_repo import TracksStore
from app.services.idempotency_service import generation_request_hash
from app.services.job_lifecycle import JobLifecycleManager
from app.services.polling_loop import band_progress, poll_until_done
from app.services.providers.base import ProviderRequest
from app.services.providers.registry import ProviderRegistry
from app.services.style_enhancer import compose_style, refine_prompt
from app.services.task_registry import TaskHandle, TaskRegistry

logger = logging.getLogger("generation_service")


@dataclass(frozen=True)
class SubmitOutcome:
    job: GenerationJob
    deduplicated: bool = False


def _failure_message(e: BaseException) -> str:
    msg = str(e).strip()
    if isinstance(e, GenerationError):
        return msg or e.code
    return f"Unexpected error: {type(e).__name__}: {msg}" if msg else f"Unexpected error: {type(e).__name__}"


class GenerationService:
    """
    Owns the background unit for one GenerationJob:

      entitlement (5) -> prompt (15) -> lyrics (30) -> style (45)
      -> submit + poll (70..85) -> persist track (85) -> completed (100)

    Any failure finalizes the job as failed with the error's code and message.
    """

    def __init__(
        self,
        *,
        lifecycle: JobLifecycleManager,
        tracks: TracksStore,
        providers: ProviderRegistry,
        registry: TaskRegistry,
        settings: Settings,
    ):
        self.lifecycle = lifecycle
        self.tracks = tracks
        self.providers = providers
        self.registry = registry
        self.settings = settings

    # -----------------------------
    # create / read / reset
    # -----------------------------

    async def create_job(
        self,
        owner_id: UUID,
        provider: ProviderName,
        model: Optional[str],
        params: GenerationParams,
        *,
        dedupe: bool = True,
    ) -> SubmitOutcome:
        """Create (or coalesce onto) a job without starting it."""
        resolved_model = self.providers.resolve_model(provider, model)
        fingerprint = generation_request_hash(owner_id, provider, resolved_model, params)

        existing = await self.lifecycle.jobs.find_active_by_hash(owner_id, fingerprint) if dedupe else None
        if existing is not None:
            logger.info("generation_job_deduplicated", extra={"job_id": str(existing.id), "owner_id": str(owner_id)})
            return SubmitOutcome(job=existing, deduplicated=True)

        job = await self.lifecycle.create(
            owner_id=owner_id,
            provider=provider,
            model=resolved_model,
            params=params,
            request_hash=fingerprint,
        )
        job = await self.lifecycle.mark_processing(job.id, Checkpoint.entitlement_check)
        return SubmitOutcome(job=job)

    async def submit(
        self,
        owner_id: UUID,
        provider: ProviderName,
        model: Optional[str],
        params: GenerationParams,
    ) -> SubmitOutcome:
        outcome = await self.create_job(owner_id, provider, model, params)
        if not outcome.deduplicated:
            job_id = outcome.job.id
            self.registry.spawn(job_id, owner_id, lambda handle: self.run(job_id, handle))
        return outcome

    async def get_owned(self, owner_id: UUID, job_id: UUID) -> Tuple[GenerationJob, Optional[Track]]:
        job = await self.lifecycle.jobs.get(job_id)
        if job is None or job.owner_id != owner_id:
            raise NotFoundError("Generation job not found")
        track = await self.tracks.get(job.result_track_id) if job.result_track_id else None
        return job, track

    async def reset(self, owner_id: UUID, job_id: UUID) -> SubmitOutcome:
        """Cancel the job's running unit (if any) and start a fresh job with the same request."""
        old, _ = await self.get_owned(owner_id, job_id)
        reason = "Cancelled by reset"

        if not old.status.is_terminal and await self.registry.cancel(job_id, reason):
            logger.info("generation_job_unit_cancelled", extra={"job_id": str(job_id)})

        old = await self.lifecycle.get(job_id)
        if not old.status.is_terminal:
            # no live unit in this process (e.g. after a restart)
            try:
                old = await self.lifecycle.finalize_failure(job_id, reason, JobCancelledError.code)
            except JobStateError:
                old = await self.lifecycle.get(job_id)

        return await self.submit(owner_id, old.provider, old.model, old.request_params)

    # -----------------------------
    # background unit
    # -----------------------------

    async def run(
        self,
        job_id: UUID,
        handle: TaskHandle,
        *,
        max_poll_attempts: Optional[int] = None,
    ) -> GenerationJob:
        try:
            return await self._run_steps(job_id, handle, max_poll_attempts)
        except JobStateError as e:
            # someone else (reaper, reset) already finalized the row
            logger.info("generation_job_finalized_elsewhere", extra={"job_id": str(job_id), "error": str(e)})
            return await self.lifecycle.get(job_id)
        except Exception as e:
            if isinstance(e, GenerationError):
                logger.warning(
                    "generation_job_error",
                    extra={"job_id": str(job_id), "error_code": e.code, "error": str(e)},
                )
            else:
                logger.exception("generation_job_crashed", extra={"job_id": str(job_id), "error": str(e)})
            try:
                return await self.lifecycle.finalize_failure(job_id, _failure_message(e), error_code(e))
            except JobStateError:
                return await self.lifecycle.get(job_id)

    async def _run_steps(self, job_id: UUID, handle: TaskHandle, max_poll_attempts: Optional[int]) -> GenerationJob:
        job = await self.lifecycle.get(job_id)
        if job.status.is_terminal:
            return job

        adapter = self.providers.get(job.provider)
        params = job.request_params

        handle.raise_if_cancelled()
        await self.lifecycle.mark_processing(job_id, Checkpoint.prompt_refinement)
        prompt = refine_prompt(params.prompt)

        lyrics = params.lyrics
        if not params.instrumental and not lyrics:
            handle.raise_if_cancelled()
            await self.lifecycle.mark_processing(job_id, Checkpoint.lyric_generation)
            lyrics = await adapter.generate_lyrics(prompt, params.style)

        handle.raise_if_cancelled()
        await self.lifecycle.mark_processing(job_id, Checkpoint.style_refinement)
        style = compose_style(params.style, params.instrumental)

        handle.raise_if_cancelled()
        await self.lifecycle.mark_processing(job_id, Checkpoint.provider_generation)
        request = ProviderRequest(
            kind=RequestKind.generate,
            model=job.model,
            prompt=prompt,
            style=style,
            title=params.title or default_title(prompt),
            duration_seconds=params.duration_seconds,
            instrumental=params.instrumental,
            lyrics=lyrics,
        )

        task_id = job.provider_task_id
        if not task_id:
            task_id = await adapter.submit(request)
            await self.lifecycle.record_provider_task(job_id, task_id)
        self.registry.bind_provider_task(handle, task_id)
        logger.info(
            "generation_job_submitted",
            extra={"job_id": str(job_id), "provider": job.provider.value, "task_id": task_id},
        )

        async def on_attempt(attempt: int, max_attempts: int) -> None:
            await self.lifecycle.mark_processing(
                job_id,
                band_progress(Checkpoint.provider_generation, Checkpoint.artifact_persistence, attempt, max_attempts),
            )

        artifact = await poll_until_done(
            adapter,
            task_id,
            kind=RequestKind.generate,
            max_attempts=max_poll_attempts or adapter.max_poll_attempts,
            interval_seconds=self.settings.JOB_POLL_INTERVAL_SECONDS,
            handle=handle,
            on_attempt=on_attempt,
        )

        handle.raise_if_cancelled()
        await self.lifecycle.mark_processing(job_id, Checkpoint.artifact_persistence)
        if not artifact.audio_url:
            raise ArtifactNotPersistedError("Provider returned no audio location")

        track = await self.tracks.insert(
            Track(
                owner_id=job.owner_id,
                title=artifact.title or request.title,
                duration_seconds=artifact.duration_seconds or params.duration_seconds,
                audio_location=artifact.audio_url,
                artwork_location=artifact.artwork_url,
                genre=params.style,
                provider=job.provider,
                provider_native_id=artifact.provider_native_id,
                lyrics=artifact.lyrics or lyrics,
                generation_job_id=job.id,
            )
        )

        return await self.lifecycle.finalize_success(
            job_id,
            track.id,
            response_data={"providerTaskId": task_id, **artifact.summary()},
        )
