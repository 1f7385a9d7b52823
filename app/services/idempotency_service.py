from __future__ import annotations

import hashlib
import json
from typing import Any, Dict
from uuid import UUID

from app.domain.enums import ProviderName
from app.domain.models import GenerationParams


def _canonicalize(obj: Any) -> Any:
    if isinstance(obj, dict):
        return {k: _canonicalize(obj[k]) for k in sorted(obj.keys())}
    if isinstance(obj, list):
        return [_canonicalize(x) for x in obj]
    return obj


def request_hash(stable_fields: Dict[str, Any]) -> str:
    canon = _canonicalize(stable_fields)
    raw = json.dumps(canon, separators=(",", ":"), ensure_ascii=False, default=str).encode("utf-8")
    return hashlib.sha256(raw).hexdigest()


def generation_request_hash(owner_id: UUID, provider: ProviderName, model: str, params: GenerationParams) -> str:
    """Two submissions with the same fingerprint are the same request."""
    return request_hash(
        {
            "owner_id": str(owner_id),
            "provider": provider.value,
            "model": model,
            "params": params.model_dump(),
        }
    )
