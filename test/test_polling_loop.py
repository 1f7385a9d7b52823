from __future__ import annotations

import asyncio
import uuid

import pytest

from app.domain.enums import PollState
from app.domain.errors import (
    JobCancelledError,
    PollTimeoutError,
    ProviderPollError,
    ProviderTerminalFailure,
)
from app.services.polling_loop import band_progress, poll_until_done
from app.services.providers.base import PollResult
from app.services.task_registry import TaskHandle, TaskRegistry

from conftest import PENDING, ScriptedProvider, succeeded


def test_band_progress_stays_inside_band():
    assert band_progress(70, 85, 0, 10) == 70
    assert band_progress(70, 85, 5, 10) == 77
    assert band_progress(70, 85, 10, 10) == 84
    assert band_progress(70, 85, 50, 10) == 84
    assert band_progress(70, 85, 3, 0) == 70


@pytest.mark.asyncio
async def test_returns_artifact_after_pending_polls():
    provider = ScriptedProvider(polls=[PENDING, PENDING, succeeded(native_id="clip-7")])
    seen = []

    async def on_attempt(attempt, max_attempts):
        seen.append((attempt, max_attempts))

    artifact = await poll_until_done(provider, "task-1", max_attempts=5, interval_seconds=0, on_attempt=on_attempt)

    assert artifact.provider_native_id == "clip-7"
    assert len(provider.polled) == 3
    assert seen == [(1, 5), (2, 5)]


@pytest.mark.asyncio
async def test_transient_poll_errors_count_as_attempts():
    provider = ScriptedProvider(polls=[ProviderPollError("503"), ProviderPollError("503"), succeeded()])

    artifact = await poll_until_done(provider, "task-1", max_attempts=3, interval_seconds=0)

    assert artifact.audio_url
    assert len(provider.polled) == 3


@pytest.mark.asyncio
async def test_provider_failure_is_terminal():
    provider = ScriptedProvider(polls=[PENDING, PollResult(state=PollState.failed, reason="GENERATE_AUDIO_FAILED")])

    with pytest.raises(ProviderTerminalFailure, match="GENERATE_AUDIO_FAILED"):
        await poll_until_done(provider, "task-1", max_attempts=5, interval_seconds=0)

    assert len(provider.polled) == 2


@pytest.mark.asyncio
async def test_times_out_after_exactly_max_attempts():
    provider = ScriptedProvider(polls=[PENDING])

    with pytest.raises(PollTimeoutError):
        await poll_until_done(provider, "task-1", max_attempts=4, interval_seconds=0)

    assert len(provider.polled) == 4


@pytest.mark.asyncio
async def test_cancel_interrupts_the_wait():
    provider = ScriptedProvider(polls=[PENDING])
    handle = TaskHandle(key=uuid.uuid4(), owner_id=uuid.uuid4())

    task = asyncio.create_task(poll_until_done(provider, "task-1", max_attempts=100, interval_seconds=30, handle=handle))
    await asyncio.sleep(0.01)
    handle.cancel_reason = "stop"
    handle.cancel_event.set()
    handle.wake_event.set()

    with pytest.raises(JobCancelledError, match="stop"):
        await asyncio.wait_for(task, 1)
    assert provider.polled == []


@pytest.mark.asyncio
async def test_nudge_wakes_poll_early():
    registry = TaskRegistry()
    provider = ScriptedProvider(polls=[succeeded()])

    async def unit(handle):
        registry.bind_provider_task(handle, "task-1")
        return await poll_until_done(provider, "task-1", max_attempts=3, interval_seconds=30, handle=handle)

    handle = registry.spawn(uuid.uuid4(), uuid.uuid4(), unit)
    await asyncio.sleep(0.01)

    assert registry.nudge("task-1") is True
    await asyncio.wait_for(handle.task, 1)
    assert len(provider.polled) == 1
    assert registry.nudge("task-1") is False


@pytest.mark.asyncio
async def test_registry_limits_active_units_per_owner():
    registry = TaskRegistry(max_active_per_owner=1)
    owner = uuid.uuid4()
    release = asyncio.Event()
    started = []

    async def unit(handle):
        started.append(handle.key)
        await release.wait()

    first = registry.spawn(uuid.uuid4(), owner, unit)
    second = registry.spawn(uuid.uuid4(), owner, unit)
    other = registry.spawn(uuid.uuid4(), uuid.uuid4(), unit)
    await asyncio.sleep(0.01)

    assert started == [first.key, other.key]

    release.set()
    await registry.drain()
    assert second.key in started
    assert registry.active_keys() == []


@pytest.mark.asyncio
async def test_registry_cancel_waits_for_unit():
    registry = TaskRegistry()
    finished = []

    async def unit(handle):
        try:
            await handle.wait(30)
        except JobCancelledError as e:
            finished.append(str(e))

    handle = registry.spawn(uuid.uuid4(), uuid.uuid4(), unit)
    await asyncio.sleep(0.01)

    assert await registry.cancel(handle.key, "Cancelled by reset") is True
    assert finished == ["Cancelled by reset"]
    assert await registry.cancel(handle.key, "again") is False
