from __future__ import annotations

from typing import Optional, Tuple

from app.domain.enums import ProviderName
from app.domain.errors import InvalidRequestError
from app.domain.models import GenerationJobCreate, GenerationParams, PipelineCreate, PipelineParams

MAX_PROMPT_CHARS = 3000
MAX_TITLE_CHARS = 80
MIN_DURATION_SECONDS = 10
MAX_DURATION_SECONDS = 480

DEFAULT_STYLE = "pop"
DEFAULT_DURATION_SECONDS = 60


def parse_provider(raw: Optional[str]) -> ProviderName:
    s = (raw or "").strip().lower()
    if not s:
        raise InvalidRequestError("Provider is required")
    try:
        return ProviderName(s)
    except ValueError:
        allowed = ", ".join(p.value for p in ProviderName)
        raise InvalidRequestError(f"Invalid provider '{raw}'. Expected one of: {allowed}")


def default_title(prompt: str) -> str:
    words = prompt.split()[:5]
    return " ".join(words)[:MAX_TITLE_CHARS] or "Untitled"


def _params_kwargs(req: GenerationJobCreate) -> dict:
    prompt = (req.prompt or "").strip()
    if not prompt:
        raise InvalidRequestError("Prompt is required")
    if len(prompt) > MAX_PROMPT_CHARS:
        raise InvalidRequestError(f"Prompt must be at most {MAX_PROMPT_CHARS} characters")

    duration = req.duration_seconds if req.duration_seconds is not None else DEFAULT_DURATION_SECONDS
    if not MIN_DURATION_SECONDS <= duration <= MAX_DURATION_SECONDS:
        raise InvalidRequestError(
            f"Duration must be between {MIN_DURATION_SECONDS} and {MAX_DURATION_SECONDS} seconds"
        )

    title = (req.title or "").strip()[:MAX_TITLE_CHARS] or default_title(prompt)
    lyrics = (req.lyrics or "").strip() or None

    return {
        "prompt": prompt,
        "style": (req.style or "").strip() or DEFAULT_STYLE,
        "duration_seconds": duration,
        "instrumental": bool(req.instrumental),
        "lyrics": None if req.instrumental else lyrics,
        "title": title,
    }


def validate_generation_request(req: GenerationJobCreate) -> Tuple[ProviderName, Optional[str], GenerationParams]:
    """Prompt is checked first, then provider. Raises before anything is persisted."""
    kwargs = _params_kwargs(req)
    provider = parse_provider(req.provider)
    model = (req.model or "").strip() or None
    return provider, model, GenerationParams(**kwargs)


def validate_pipeline_request(req: PipelineCreate) -> Tuple[ProviderName, Optional[str], PipelineParams]:
    kwargs = _params_kwargs(req)
    provider = parse_provider(req.provider)
    model = (req.model or "").strip() or None

    extend_at = req.extend_at_seconds if req.extend_at_seconds is not None else 30
    if extend_at < 0:
        raise InvalidRequestError("extendAtSeconds must be >= 0")

    params = PipelineParams(
        **kwargs,
        enable_extension=req.enable_extension,
        enable_vocal_separation=req.enable_vocal_separation,
        enable_wav_conversion=req.enable_wav_conversion,
        extend_at_seconds=extend_at,
        **({"extend_prompt": req.extend_prompt.strip()} if (req.extend_prompt or "").strip() else {}),
    )
    return provider, model, params
