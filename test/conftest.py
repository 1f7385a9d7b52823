from __future__ import annotations

import uuid
from datetime import timedelta
from typing import Dict, List, Optional, Union

import pytest

from app.config import Settings
from app.domain.enums import PollState, ProviderName, RequestKind
from app.domain.errors import ProviderError, ProviderSubmissionError
from app.domain.models import utcnow
from app.services.container import Services, build_services
from app.services.providers.base import PollResult, ProviderArtifact, ProviderRequest
from app.services.providers.registry import ProviderRegistry
from app.services.providers.test_provider import TestProvider

JWT_SECRET = "test-secret"


def make_settings(**overrides) -> Settings:
    values = dict(
        STORE_BACKEND="memory",
        JOB_POLL_INTERVAL_SECONDS=0.0,
        SUBMIT_RETRY_BASE_SECONDS=0.0,
        TEST_PROVIDER_DELAY_SECONDS=0.0,
        REAPER_INTERVAL_SECONDS=0.0,
        JWT_SECRET=JWT_SECRET,
        ALLOW_X_USER_ID=True,
        SUNO_API_KEY="suno-key",
        MUREKA_API_KEY="mureka-key",
        MAX_ACTIVE_JOBS_PER_OWNER=4,
        MAINTENANCE_TOKEN=None,
        PROVIDER_CALLBACK_TOKEN=None,
    )
    values.update(overrides)
    return Settings(**values)


def succeeded(native_id: str = "clip-1", audio_url: str = "https://cdn.example.com/clip-1.mp3", duration: int = 60) -> PollResult:
    return PollResult(
        state=PollState.succeeded,
        artifact=ProviderArtifact(
            provider_native_id=native_id,
            audio_url=audio_url,
            title="Scripted track",
            artwork_url="https://cdn.example.com/clip-1.jpg",
            duration_seconds=duration,
        ),
    )


PENDING = PollResult(state=PollState.pending)

ScriptItem = Union[PollResult, Exception]


class ScriptedProvider:
    """
    Provider double driven by a script of poll results per request kind.
    The last item of a script repeats forever.
    """

    default_model = "scripted-v1"
    capabilities = frozenset(RequestKind)

    def __init__(
        self,
        *,
        name: ProviderName = ProviderName.suno,
        polls: Optional[List[ScriptItem]] = None,
        stage_polls: Optional[Dict[RequestKind, List[ScriptItem]]] = None,
        submit_failures: int = 0,
        lyrics: Optional[str] = None,
        style_error: bool = False,
        max_poll_attempts: int = 5,
    ):
        self.name = name
        self.polls = list(polls or [succeeded()])
        self.stage_polls = {k: list(v) for k, v in (stage_polls or {}).items()}
        self.submit_failures = submit_failures
        self.lyrics = lyrics
        self.style_error = style_error
        self.max_poll_attempts = max_poll_attempts
        self.submitted: List[ProviderRequest] = []
        self.polled: List[tuple] = []
        self.lyrics_calls = 0

    def estimated_seconds(self, duration_seconds: int) -> int:
        return 60

    async def submit(self, request: ProviderRequest) -> str:
        self.submitted.append(request)
        if self.submit_failures > 0:
            self.submit_failures -= 1
            raise ProviderSubmissionError("Scripted API error 500 Internal Server Error: boom")
        return f"task-{len(self.submitted)}"

    async def poll(self, task_id: str, *, kind: RequestKind = RequestKind.generate) -> PollResult:
        self.polled.append((task_id, kind))
        if kind == RequestKind.generate:
            script = self.polls
        else:
            script = self.stage_polls.setdefault(kind, [succeeded(native_id=f"{kind.value}-1")])
        item = script.pop(0) if len(script) > 1 else script[0]
        if isinstance(item, Exception):
            raise item
        return item

    async def generate_lyrics(self, prompt: str, style: str) -> Optional[str]:
        self.lyrics_calls += 1
        return self.lyrics

    async def enhance_style(self, content: str) -> str:
        if self.style_error:
            raise ProviderError("style endpoint down")
        return f"{content}, enhanced"


def build_with(settings: Settings, *adapters) -> Services:
    registry = ProviderRegistry([*adapters, TestProvider(settings)])
    return build_services(settings, providers=registry)


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def services(settings) -> Services:
    return build_services(settings)


@pytest.fixture
def owner_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
def backdate():
    """Age a row in one of the in-memory stores so it looks `minutes` stale."""

    def _backdate(store, row_id: uuid.UUID, minutes: float) -> None:
        store._rows[row_id] = store._rows[row_id].model_copy(
            update={"updated_at": utcnow() - timedelta(minutes=minutes)}
        )

    return _backdate
