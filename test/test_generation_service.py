from __future__ import annotations

import asyncio
import uuid

import httpx
import pytest

from app.domain.enums import JobStatus, PollState, ProviderName
from app.domain.errors import NotFoundError
from app.domain.models import GenerationParams
from app.services.container import build_services
from app.services.providers.base import PollResult
from app.services.providers.registry import build_provider_registry
from app.services.providers.test_provider import CANNED_LYRICS
from app.services.task_registry import TaskHandle

from conftest import PENDING, ScriptedProvider, build_with, make_settings, succeeded


def _params(**kw) -> GenerationParams:
    values = dict(prompt="a happy song about summer", style="pop", duration_seconds=60)
    values.update(kw)
    return GenerationParams(**values)


@pytest.mark.asyncio
async def test_test_provider_job_completes_with_track(services, owner_id):
    outcome = await services.generation.submit(owner_id, ProviderName.test, None, _params())

    assert outcome.deduplicated is False
    assert outcome.job.status == JobStatus.processing
    assert outcome.job.progress == 5

    await services.registry.drain()
    job, track = await services.generation.get_owned(owner_id, outcome.job.id)

    assert job.status == JobStatus.completed
    assert job.progress == 100
    assert job.model == "test"
    assert job.provider_task_id.startswith("test_")
    assert job.response_data["providerTaskId"] == job.provider_task_id
    assert track is not None
    assert track.duration_seconds == 60
    assert track.owner_id == owner_id
    assert track.generation_job_id == job.id
    assert track.lyrics == CANNED_LYRICS


@pytest.mark.asyncio
async def test_progress_only_moves_forward(services, owner_id):
    events = services.feed.subscribe()

    outcome = await services.generation.submit(owner_id, ProviderName.test, None, _params())
    await services.registry.drain()

    seen = []
    while not events.empty():
        e = events.get_nowait()
        if e.table == "generation_jobs" and e.id == str(outcome.job.id):
            seen.append((e.status, e.payload["progress"]))

    progress = [p for _, p in seen]
    assert progress == sorted(progress)
    assert seen[0] == ("pending", 0)
    assert seen[-1] == ("completed", 100)
    assert {5, 15, 30, 45, 70, 85}.issubset(set(progress))
    assert all(p < 100 for s, p in seen if s != "completed")


@pytest.mark.asyncio
async def test_submission_failure_after_three_attempts(owner_id):
    posts = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            posts.append(request.url.path)
        return httpx.Response(500, text="upstream exploded")

    settings = make_settings()
    providers = build_provider_registry(settings, transport=httpx.MockTransport(handler))
    services = build_services(settings, providers=providers)

    outcome = await services.generation.submit(owner_id, ProviderName.suno, None, _params(instrumental=True))
    await services.registry.drain()
    job, track = await services.generation.get_owned(owner_id, outcome.job.id)

    assert posts == ["/api/v1/generate"] * 3
    assert job.status == JobStatus.failed
    assert job.error_code == "SUBMISSION_FAILED"
    assert "500" in job.error_message
    assert job.progress == 70
    assert track is None


@pytest.mark.asyncio
async def test_provider_failure_fails_job(settings, owner_id):
    provider = ScriptedProvider(polls=[PENDING, PollResult(state=PollState.failed, reason="GENERATE_AUDIO_FAILED")])
    services = build_with(settings, provider)

    outcome = await services.generation.submit(owner_id, ProviderName.suno, None, _params(instrumental=True))
    await services.registry.drain()
    job = await services.lifecycle.get(outcome.job.id)

    assert job.status == JobStatus.failed
    assert job.error_code == "PROVIDER_FAILED"
    assert job.error_message == "GENERATE_AUDIO_FAILED"
    assert 70 <= job.progress < 85


@pytest.mark.asyncio
async def test_poll_budget_exhaustion_times_out(settings, owner_id):
    provider = ScriptedProvider(polls=[PENDING], max_poll_attempts=3)
    services = build_with(settings, provider)

    outcome = await services.generation.submit(owner_id, ProviderName.suno, None, _params(instrumental=True))
    await services.registry.drain()
    job = await services.lifecycle.get(outcome.job.id)

    assert job.status == JobStatus.failed
    assert job.error_code == "TIMEOUT"
    assert len(provider.polled) == 3


@pytest.mark.asyncio
async def test_lyrics_generated_only_when_needed(settings, owner_id):
    provider = ScriptedProvider(lyrics="[Verse]\nsunlight on the water")
    services = build_with(settings, provider)

    await services.generation.submit(owner_id, ProviderName.suno, None, _params())
    await services.generation.submit(owner_id, ProviderName.suno, None, _params(prompt="beat", instrumental=True))
    await services.generation.submit(owner_id, ProviderName.suno, None, _params(prompt="own words", lyrics="mine"))
    await services.registry.drain()

    assert provider.lyrics_calls == 1
    by_prompt = {r.prompt: r for r in provider.submitted}
    assert by_prompt["a happy song about summer"].lyrics == "[Verse]\nsunlight on the water"
    assert by_prompt["beat"].lyrics is None
    assert by_prompt["beat"].style == "pop, instrumental"
    assert by_prompt["own words"].lyrics == "mine"


@pytest.mark.asyncio
async def test_missing_lyrics_do_not_fail_the_job(settings, owner_id):
    provider = ScriptedProvider(lyrics=None)
    services = build_with(settings, provider)

    outcome = await services.generation.submit(owner_id, ProviderName.suno, None, _params())
    await services.registry.drain()

    assert (await services.lifecycle.get(outcome.job.id)).status == JobStatus.completed
    assert provider.submitted[0].lyrics is None


@pytest.mark.asyncio
async def test_identical_active_request_is_coalesced(services, owner_id):
    first = await services.generation.submit(owner_id, ProviderName.test, None, _params())
    second = await services.generation.submit(owner_id, ProviderName.test, None, _params())
    other_owner = await services.generation.submit(uuid.uuid4(), ProviderName.test, None, _params())

    assert second.deduplicated is True
    assert second.job.id == first.job.id
    assert other_owner.deduplicated is False
    assert other_owner.job.id != first.job.id

    await services.registry.drain()
    third = await services.generation.submit(owner_id, ProviderName.test, None, _params())

    assert third.deduplicated is False
    assert third.job.id != first.job.id
    await services.registry.drain()


@pytest.mark.asyncio
async def test_reset_cancels_running_job_and_starts_over(owner_id):
    settings = make_settings(JOB_POLL_INTERVAL_SECONDS=0.01)
    provider = ScriptedProvider(polls=[PENDING], max_poll_attempts=10_000)
    services = build_with(settings, provider)

    original = await services.generation.submit(owner_id, ProviderName.suno, "chirp-x", _params(instrumental=True))
    await asyncio.sleep(0.05)

    fresh = await services.generation.reset(owner_id, original.job.id)
    old = await services.lifecycle.get(original.job.id)

    assert old.status == JobStatus.failed
    assert old.error_code == "CANCELLED"
    assert old.error_message == "Cancelled by reset"
    assert fresh.job.id != original.job.id
    assert fresh.job.model == "chirp-x"
    assert fresh.job.request_params == original.job.request_params
    assert services.registry.is_active(fresh.job.id)

    await services.registry.shutdown()


@pytest.mark.asyncio
async def test_reset_of_finished_job_resubmits(services, owner_id):
    original = await services.generation.submit(owner_id, ProviderName.test, None, _params())
    await services.registry.drain()

    fresh = await services.generation.reset(owner_id, original.job.id)
    await services.registry.drain()

    assert (await services.lifecycle.get(original.job.id)).status == JobStatus.completed
    assert (await services.lifecycle.get(fresh.job.id)).status == JobStatus.completed


@pytest.mark.asyncio
async def test_reset_of_orphaned_job_fails_it_directly(services, owner_id):
    outcome = await services.generation.create_job(owner_id, ProviderName.test, None, _params())

    fresh = await services.generation.reset(owner_id, outcome.job.id)
    await services.registry.drain()

    old = await services.lifecycle.get(outcome.job.id)
    assert old.status == JobStatus.failed
    assert old.error_code == "CANCELLED"
    assert (await services.lifecycle.get(fresh.job.id)).status == JobStatus.completed


@pytest.mark.asyncio
async def test_owner_admission_limit_queues_extra_jobs(owner_id):
    settings = make_settings(JOB_POLL_INTERVAL_SECONDS=0.01, MAX_ACTIVE_JOBS_PER_OWNER=1)
    provider = ScriptedProvider(polls=[PENDING], max_poll_attempts=10_000)
    services = build_with(settings, provider)

    first = await services.generation.submit(owner_id, ProviderName.suno, None, _params(prompt="one", instrumental=True))
    second = await services.generation.submit(owner_id, ProviderName.suno, None, _params(prompt="two", instrumental=True))
    await asyncio.sleep(0.05)

    assert (await services.lifecycle.get(first.job.id)).progress >= 70
    assert (await services.lifecycle.get(second.job.id)).progress == 5
    assert len(provider.submitted) == 1

    await services.registry.shutdown()


@pytest.mark.asyncio
async def test_run_resumes_without_resubmitting(settings, owner_id):
    provider = ScriptedProvider(polls=[succeeded(native_id="resumed")])
    services = build_with(settings, provider)

    outcome = await services.generation.create_job(owner_id, ProviderName.suno, None, _params(instrumental=True))
    await services.lifecycle.record_provider_task(outcome.job.id, "task-existing")

    job = await services.generation.run(outcome.job.id, TaskHandle(key=outcome.job.id, owner_id=owner_id))

    assert job.status == JobStatus.completed
    assert provider.submitted == []
    assert provider.polled[0][0] == "task-existing"


@pytest.mark.asyncio
async def test_jobs_are_private_to_their_owner(services, owner_id):
    outcome = await services.generation.submit(owner_id, ProviderName.test, None, _params())
    await services.registry.drain()

    with pytest.raises(NotFoundError):
        await services.generation.get_owned(uuid.uuid4(), outcome.job.id)
    with pytest.raises(NotFoundError):
        await services.generation.get_owned(owner_id, uuid.uuid4())
