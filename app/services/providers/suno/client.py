from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

import httpx

from app.config import Settings
from app.domain.enums import PollState, ProviderName, RequestKind
from app.domain.errors import (
    ProviderError,
    ProviderPollError,
    ProviderResponseError,
    ProviderSubmissionError,
    UnsupportedStageError,
)
from app.services.providers.base import PollResult, ProviderArtifact, ProviderRequest, parse_schema
from app.services.providers.http_client import HttpProviderClient
from app.services.providers.suno.schemas import (
    GENERATE_FAILED,
    GENERATE_PENDING,
    GENERATE_SUCCEEDED,
    SUCCESS_CODE,
    TASK_FAILED,
    TASK_PENDING,
    TASK_SUCCEEDED,
    SunoGenerateRecordEnvelope,
    SunoLyricsRecordEnvelope,
    SunoStyleEnvelope,
    SunoSubmitEnvelope,
    SunoVocalRecordEnvelope,
    SunoWavRecordEnvelope,
)

logger = logging.getLogger("suno")

# Custom-mode limits on sunoapi.org
MAX_STYLE_CHARS = 200
MAX_DESCRIPTION_CHARS = 500

_SUBMIT_PATHS = {
    RequestKind.generate: "/api/v1/generate",
    RequestKind.extend: "/api/v1/generate/extend",
    RequestKind.separate_vocals: "/api/v1/vocal-removal/generate",
    RequestKind.convert_wav: "/api/v1/wav/generate",
}

_RECORD_PATHS = {
    RequestKind.generate: "/api/v1/generate/record-info",
    RequestKind.extend: "/api/v1/generate/record-info",
    RequestKind.separate_vocals: "/api/v1/vocal-removal/record-info",
    RequestKind.convert_wav: "/api/v1/wav/record-info",
}


def _task_id(data: Dict[str, Any]) -> str:
    env = parse_schema(SunoSubmitEnvelope, data, what="Suno submit response")
    if env.code != SUCCESS_CODE:
        raise ProviderResponseError(f"code {env.code}: {env.msg}")
    return env.data.taskId


def _check_code(code: int, msg: str) -> None:
    if code != SUCCESS_CODE:
        raise ProviderPollError(f"Suno record-info returned code {code}: {msg}")


class SunoClient(HttpProviderClient):
    name = ProviderName.suno
    capabilities = frozenset(RequestKind)

    def __init__(self, settings: Settings, *, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        super().__init__(
            api_key=settings.SUNO_API_KEY,
            base_url=settings.SUNO_BASE_URL,
            timeout=settings.SUNO_TIMEOUT_SECONDS,
            submit_attempts=settings.SUBMIT_RETRY_ATTEMPTS,
            submit_retry_base_seconds=settings.SUBMIT_RETRY_BASE_SECONDS,
            transport=transport,
        )
        self.default_model = settings.SUNO_DEFAULT_MODEL
        self.max_poll_attempts = settings.SUNO_MAX_POLL_ATTEMPTS
        self.lyrics_max_poll_attempts = settings.SUNO_LYRICS_MAX_POLL_ATTEMPTS
        self.poll_interval = settings.JOB_POLL_INTERVAL_SECONDS
        self.callback_url = settings.callback_url(self.name.value)

    def estimated_seconds(self, duration_seconds: int) -> int:
        return max(60, duration_seconds * 2)

    # -----------------------------
    # submit
    # -----------------------------

    def build_payload(self, request: ProviderRequest) -> Dict[str, Any]:
        kind = request.kind
        if kind == RequestKind.generate:
            payload: Dict[str, Any] = {
                "prompt": request.prompt,
                "style": request.style[:MAX_STYLE_CHARS],
                "title": request.title,
                "customMode": True,
                "instrumental": request.instrumental,
                "model": request.model,
                "callBackUrl": self.callback_url,
            }
            # vocal tracks only
            if request.lyrics and not request.instrumental:
                payload["lyrics"] = request.lyrics
            return payload

        if not request.audio_id:
            raise ProviderSubmissionError(f"Suno {kind.value} requires audio_id")

        if kind == RequestKind.extend:
            return {
                "audioId": request.audio_id,
                "defaultParamFlag": True,
                "prompt": request.prompt,
                "style": request.style[:MAX_STYLE_CHARS],
                "title": request.title,
                "continueAt": request.continue_at or 30,
                "model": request.model,
                "callBackUrl": self.callback_url,
            }

        # vocal separation and wav conversion address the parent task + clip
        return {
            "taskId": request.parent_task_id,
            "audioId": request.audio_id,
            "callBackUrl": self.callback_url,
        }

    async def submit(self, request: ProviderRequest) -> str:
        if request.kind not in self.capabilities:
            raise UnsupportedStageError(f"Suno does not support {request.kind.value}")
        payload = self.build_payload(request)
        task_id = await self._post_with_retry(_SUBMIT_PATHS[request.kind], payload, _task_id)
        logger.info("suno_task_submitted", extra={"kind": request.kind.value, "task_id": task_id})
        return task_id

    # -----------------------------
    # poll
    # -----------------------------

    async def poll(self, task_id: str, *, kind: RequestKind = RequestKind.generate) -> PollResult:
        data = await self._get_json(_RECORD_PATHS[kind], params={"taskId": task_id})
        try:
            if kind in (RequestKind.generate, RequestKind.extend):
                return self._map_generate_record(data)
            if kind == RequestKind.separate_vocals:
                return self._map_vocal_record(data)
            return self._map_wav_record(data)
        except ProviderResponseError as e:
            raise ProviderPollError(str(e)) from e

    def _map_generate_record(self, data: Dict[str, Any]) -> PollResult:
        env = parse_schema(SunoGenerateRecordEnvelope, data, what="Suno record-info")
        _check_code(env.code, env.msg)
        rec = env.data

        if rec.status in GENERATE_PENDING:
            return PollResult(state=PollState.pending, raw_response=data)
        if rec.status in GENERATE_FAILED:
            return PollResult(state=PollState.failed, reason=rec.errorMessage or rec.status, raw_response=data)
        if rec.status not in GENERATE_SUCCEEDED:
            raise ProviderResponseError(f"Unknown Suno status {rec.status!r}")

        items = rec.response.sunoData if rec.response else []
        item = next((i for i in items if i.audioUrl), None)
        if item is None:
            return PollResult(state=PollState.failed, reason="Suno reported success without audio", raw_response=data)

        return PollResult(
            state=PollState.succeeded,
            artifact=ProviderArtifact(
                provider_native_id=item.id,
                audio_url=item.audioUrl,
                title=item.title,
                artwork_url=item.imageUrl,
                duration_seconds=int(round(item.duration or 0)),
                lyrics=item.prompt,
                extra={"tags": item.tags} if item.tags else {},
            ),
            raw_response=data,
        )

    def _map_vocal_record(self, data: Dict[str, Any]) -> PollResult:
        env = parse_schema(SunoVocalRecordEnvelope, data, what="Suno vocal-removal record-info")
        _check_code(env.code, env.msg)
        rec = env.data

        state = self._task_state(rec.successFlag)
        if state != PollState.succeeded:
            return PollResult(state=state, reason=rec.errorMessage or rec.successFlag, raw_response=data)

        resp = rec.response
        if resp is None or not (resp.instrumentalUrl or resp.vocalUrl):
            return PollResult(state=PollState.failed, reason="Suno vocal separation returned no stems", raw_response=data)

        return PollResult(
            state=PollState.succeeded,
            artifact=ProviderArtifact(
                provider_native_id=rec.taskId,
                audio_url=resp.instrumentalUrl or resp.vocalUrl or "",
                extra={
                    "vocalUrl": resp.vocalUrl,
                    "instrumentalUrl": resp.instrumentalUrl,
                    "originUrl": resp.originUrl,
                },
            ),
            raw_response=data,
        )

    def _map_wav_record(self, data: Dict[str, Any]) -> PollResult:
        env = parse_schema(SunoWavRecordEnvelope, data, what="Suno wav record-info")
        _check_code(env.code, env.msg)
        rec = env.data

        state = self._task_state(rec.successFlag)
        if state != PollState.succeeded:
            return PollResult(state=state, reason=rec.errorMessage or rec.successFlag, raw_response=data)

        if rec.response is None or not rec.response.audioWavUrl:
            return PollResult(state=PollState.failed, reason="Suno wav conversion returned no file", raw_response=data)

        return PollResult(
            state=PollState.succeeded,
            artifact=ProviderArtifact(
                provider_native_id=rec.taskId,
                audio_url=rec.response.audioWavUrl,
                extra={"wavUrl": rec.response.audioWavUrl},
            ),
            raw_response=data,
        )

    @staticmethod
    def _task_state(flag: str) -> PollState:
        if flag in TASK_PENDING:
            return PollState.pending
        if flag in TASK_SUCCEEDED:
            return PollState.succeeded
        if flag in TASK_FAILED:
            return PollState.failed
        raise ProviderResponseError(f"Unknown Suno successFlag {flag!r}")

    # -----------------------------
    # lyrics / style
    # -----------------------------

    async def generate_lyrics(self, prompt: str, style: str) -> Optional[str]:
        """Best effort. Returns None when lyrics could not be produced in time."""
        try:
            task_id = await self._post_with_retry(
                "/api/v1/lyrics",
                {"prompt": f"{prompt} ({style})"[:MAX_DESCRIPTION_CHARS], "callBackUrl": self.callback_url},
                _task_id,
            )
        except ProviderError as e:
            logger.warning("suno_lyrics_submit_failed", extra={"error": str(e)})
            return None

        for _ in range(self.lyrics_max_poll_attempts):
            await asyncio.sleep(self.poll_interval)
            try:
                data = await self._get_json("/api/v1/lyrics/record-info", params={"taskId": task_id})
                env = parse_schema(SunoLyricsRecordEnvelope, data, what="Suno lyrics record-info")
            except (ProviderPollError, ProviderResponseError) as e:
                logger.warning("suno_lyrics_poll_failed", extra={"task_id": task_id, "error": str(e)})
                continue

            rec = env.data
            if rec.status == "SUCCESS":
                items = rec.response.data if rec.response else []
                text = next((i.text for i in items if i.text.strip()), None)
                return text
            if rec.status in GENERATE_FAILED:
                logger.warning("suno_lyrics_failed", extra={"task_id": task_id, "reason": rec.errorMessage})
                return None

        logger.warning("suno_lyrics_timeout", extra={"task_id": task_id})
        return None

    async def enhance_style(self, content: str) -> str:
        def _result(data: Dict[str, Any]) -> str:
            env = parse_schema(SunoStyleEnvelope, data, what="Suno style response")
            if env.code != SUCCESS_CODE:
                raise ProviderResponseError(f"code {env.code}: {env.msg}")
            return env.data.result

        return await self._post_once("/api/v1/style/generate", {"content": content}, _result)
