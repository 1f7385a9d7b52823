from __future__ import annotations

import hashlib
import logging
import re
from dataclasses import dataclass

from app.domain.errors import ProviderError
from app.services.providers.base import ProviderAdapter

logger = logging.getLogger("style_enhancer")

MAX_STYLE_CHARS = 200

LOCAL_ENHANCEMENTS = (
    "professional studio quality",
    "rich layered arrangement",
    "emotional delivery with dynamic transitions",
    "modern production with spatial effects",
    "memorable melodic hook",
    "deep bass and a tight rhythm section",
    "atmospheric pads and reverb",
    "cinematic sound",
)

_WS = re.compile(r"\s+")


def refine_prompt(prompt: str) -> str:
    return _WS.sub(" ", prompt).strip()


def compose_style(style: str, instrumental: bool) -> str:
    s = _WS.sub(" ", style).strip(" ,")
    if instrumental and "instrumental" not in s.lower():
        s = f"{s}, instrumental" if s else "instrumental"
    return s[:MAX_STYLE_CHARS]


def local_enhancement(style: str) -> str:
    """Stable pick of two production descriptors for a given style."""
    digest = hashlib.sha256(style.encode("utf-8")).digest()
    first = digest[0] % len(LOCAL_ENHANCEMENTS)
    second = (first + 1 + digest[1] % (len(LOCAL_ENHANCEMENTS) - 1)) % len(LOCAL_ENHANCEMENTS)
    return f"{style}, {LOCAL_ENHANCEMENTS[first]}, {LOCAL_ENHANCEMENTS[second]}"[:MAX_STYLE_CHARS]


@dataclass(frozen=True)
class StyleResult:
    style: str
    method: str  # provider | local_fallback


class StyleEnhancer:
    async def enhance(self, adapter: ProviderAdapter, style: str, prompt: str) -> StyleResult:
        content = f"{style}, {prompt}"
        try:
            enhanced = (await adapter.enhance_style(content)).strip()
        except ProviderError as e:
            logger.warning("style_enhance_fallback", extra={"provider": adapter.name.value, "error": str(e)})
            return StyleResult(style=local_enhancement(style), method="local_fallback")

        if not enhanced:
            return StyleResult(style=local_enhancement(style), method="local_fallback")
        return StyleResult(style=enhanced[:MAX_STYLE_CHARS], method="provider")
