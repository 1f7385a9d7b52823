from __future__ import annotations

from typing import Dict, Iterable, Optional

import httpx

from app.config import Settings
from app.domain.enums import ProviderName
from app.domain.errors import InvalidRequestError
from app.services.providers.base import ProviderAdapter
from app.services.providers.mureka.client import MurekaClient
from app.services.providers.suno.client import SunoClient
from app.services.providers.test_provider import TestProvider


class ProviderRegistry:
    def __init__(self, adapters: Iterable[ProviderAdapter]):
        self._adapters: Dict[ProviderName, ProviderAdapter] = {a.name: a for a in adapters}

    def get(self, name: ProviderName) -> ProviderAdapter:
        adapter = self._adapters.get(name)
        if adapter is None:
            raise InvalidRequestError(f"Provider '{name.value}' is not available")
        return adapter

    def resolve_model(self, name: ProviderName, model: Optional[str]) -> str:
        return model or self.get(name).default_model

    def __contains__(self, name: ProviderName) -> bool:
        return name in self._adapters


def build_provider_registry(
    settings: Settings,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ProviderRegistry:
    return ProviderRegistry(
        [
            SunoClient(settings, transport=transport),
            MurekaClient(settings, transport=transport),
            TestProvider(settings),
        ]
    )
