from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Optional, Protocol, Type, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from app.domain.enums import PollState, ProviderName, RequestKind
from app.domain.errors import ProviderResponseError

SchemaT = TypeVar("SchemaT", bound=BaseModel)


@dataclass(frozen=True)
class ProviderRequest:
    kind: RequestKind
    model: str
    prompt: str = ""
    style: str = ""
    title: str = ""
    duration_seconds: int = 60
    instrumental: bool = False
    lyrics: Optional[str] = None
    # Stage requests point at an artifact produced earlier
    audio_id: Optional[str] = None
    parent_task_id: Optional[str] = None
    continue_at: Optional[int] = None


@dataclass(frozen=True)
class ProviderArtifact:
    provider_native_id: str
    audio_url: str
    title: Optional[str] = None
    artwork_url: Optional[str] = None
    duration_seconds: int = 0
    lyrics: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def summary(self) -> Dict[str, Any]:
        return {
            "providerNativeId": self.provider_native_id,
            "audioUrl": self.audio_url,
            "artworkUrl": self.artwork_url,
            "durationSeconds": self.duration_seconds,
            **self.extra,
        }


@dataclass(frozen=True)
class PollResult:
    state: PollState
    artifact: Optional[ProviderArtifact] = None
    reason: Optional[str] = None
    raw_response: Dict[str, Any] = field(default_factory=dict)


class ProviderAdapter(Protocol):
    name: ProviderName
    default_model: str
    max_poll_attempts: int
    capabilities: FrozenSet[RequestKind]

    def estimated_seconds(self, duration_seconds: int) -> int: ...

    async def submit(self, request: ProviderRequest) -> str: ...

    async def poll(self, task_id: str, *, kind: RequestKind = RequestKind.generate) -> PollResult: ...

    async def generate_lyrics(self, prompt: str, style: str) -> Optional[str]: ...

    async def enhance_style(self, content: str) -> str: ...


def safe_json(resp: httpx.Response) -> Dict[str, Any]:
    """Empty bodies and non-object JSON are schema violations, not successes."""
    text = (resp.text or "").strip()
    if not text:
        raise ProviderResponseError(f"HTTP {resp.status_code} but EMPTY_BODY")
    try:
        obj = resp.json()
    except json.JSONDecodeError as e:
        raise ProviderResponseError(f"INVALID_JSON: {e} body={text[:200]}") from e
    if not isinstance(obj, dict):
        raise ProviderResponseError(f"UNEXPECTED_JSON_TYPE: {type(obj).__name__}")
    return obj


def parse_schema(schema: Type[SchemaT], data: Dict[str, Any], *, what: str) -> SchemaT:
    try:
        return schema.model_validate(data)
    except ValidationError as e:
        raise ProviderResponseError(f"{what} did not match {schema.__name__}: {e.errors(include_url=False)}") from e
