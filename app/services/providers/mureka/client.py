from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Tuple

import httpx

from app.config import Settings
from app.domain.enums import PollState, ProviderName, RequestKind
from app.domain.errors import (
    ProviderError,
    ProviderPollError,
    ProviderResponseError,
    UnsupportedStageError,
)
from app.services.providers.base import PollResult, ProviderArtifact, ProviderRequest, parse_schema
from app.services.providers.http_client import HttpProviderClient
from app.services.providers.mureka.schemas import FAILED, PENDING, SUCCEEDED, MurekaLyrics, MurekaTask

logger = logging.getLogger("mureka")

# Mureka splits songs and instrumentals into two endpoint families; the task
# handle we hand out is "<family>:<id>" so poll knows where to look.
_SONG = "song"
_INSTRUMENTAL = "instrumental"


def _split_handle(task_id: str) -> Tuple[str, str]:
    family, sep, raw_id = task_id.partition(":")
    if not sep or family not in (_SONG, _INSTRUMENTAL) or not raw_id:
        raise ProviderPollError(f"Malformed Mureka task handle {task_id!r}")
    return family, raw_id


class MurekaClient(HttpProviderClient):
    name = ProviderName.mureka
    capabilities = frozenset({RequestKind.generate})

    def __init__(self, settings: Settings, *, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        super().__init__(
            api_key=settings.MUREKA_API_KEY,
            base_url=settings.MUREKA_BASE_URL,
            timeout=settings.MUREKA_TIMEOUT_SECONDS,
            submit_attempts=settings.SUBMIT_RETRY_ATTEMPTS,
            submit_retry_base_seconds=settings.SUBMIT_RETRY_BASE_SECONDS,
            transport=transport,
        )
        self.default_model = settings.MUREKA_DEFAULT_MODEL
        self.max_poll_attempts = settings.MUREKA_MAX_POLL_ATTEMPTS

    def estimated_seconds(self, duration_seconds: int) -> int:
        return max(90, int(duration_seconds * 2.5))

    async def submit(self, request: ProviderRequest) -> str:
        if request.kind not in self.capabilities:
            raise UnsupportedStageError(f"Mureka does not support {request.kind.value}")

        def _task(data: Dict[str, Any]) -> str:
            return parse_schema(MurekaTask, data, what="Mureka submit response").id

        if request.instrumental:
            family = _INSTRUMENTAL
            payload = {"prompt": f"{request.style}, {request.prompt}", "model": request.model}
        else:
            family = _SONG
            payload = {
                "lyrics": request.lyrics or request.prompt,
                "prompt": request.style,
                "model": request.model,
            }

        raw_id = await self._post_with_retry(f"/v1/{family}/generate", payload, _task)
        logger.info("mureka_task_submitted", extra={"family": family, "task_id": raw_id})
        return f"{family}:{raw_id}"

    async def poll(self, task_id: str, *, kind: RequestKind = RequestKind.generate) -> PollResult:
        family, raw_id = _split_handle(task_id)
        data = await self._get_json(f"/v1/{family}/query/{raw_id}")
        try:
            task = parse_schema(MurekaTask, data, what="Mureka query response")
        except ProviderResponseError as e:
            raise ProviderPollError(str(e)) from e

        if task.status in PENDING:
            return PollResult(state=PollState.pending, raw_response=data)
        if task.status in FAILED:
            return PollResult(state=PollState.failed, reason=task.failed_reason or task.status, raw_response=data)
        if task.status not in SUCCEEDED:
            raise ProviderPollError(f"Unknown Mureka status {task.status!r}")

        choice = next((c for c in task.choices if c.url), None)
        if choice is None:
            return PollResult(state=PollState.failed, reason="Mureka reported success without audio", raw_response=data)

        return PollResult(
            state=PollState.succeeded,
            artifact=ProviderArtifact(
                provider_native_id=choice.id or task.id,
                audio_url=choice.url or "",
                duration_seconds=int(round((choice.duration or 0) / 1000)),
                extra={"flacUrl": choice.flac_url} if choice.flac_url else {},
            ),
            raw_response=data,
        )

    async def generate_lyrics(self, prompt: str, style: str) -> Optional[str]:
        def _lyrics(data: Dict[str, Any]) -> str:
            return parse_schema(MurekaLyrics, data, what="Mureka lyrics response").lyrics

        try:
            text = await self._post_with_retry("/v1/lyrics/generate", {"prompt": f"{prompt} ({style})"}, _lyrics)
        except ProviderError as e:
            logger.warning("mureka_lyrics_failed", extra={"error": str(e)})
            return None
        return text.strip() or None

    async def enhance_style(self, content: str) -> str:
        raise UnsupportedStageError("Mureka has no style enhancement endpoint")
