from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Optional, TypeVar

import httpx
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_incrementing,
)

from app.domain.enums import ProviderName
from app.domain.errors import (
    ProviderConfigurationError,
    ProviderPollError,
    ProviderResponseError,
    ProviderSubmissionError,
)
from app.services.providers.base import safe_json

T = TypeVar("T")

logger = logging.getLogger("provider_http")


class HttpProviderClient:
    """
    Shared plumbing for HTTP providers.

    Submissions retry on any ProviderSubmissionError (transport error, non-2xx,
    malformed envelope) with a linear backoff: base * attempt number.
    Poll GETs never retry here; the polling loop owns that budget.
    """

    name: ProviderName

    def __init__(
        self,
        *,
        api_key: str,
        base_url: str,
        timeout: float,
        submit_attempts: int = 3,
        submit_retry_base_seconds: float = 2.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.api_key = (api_key or "").strip()
        self.base = base_url.rstrip("/")
        self.timeout = timeout
        self.submit_attempts = max(1, submit_attempts)
        self.submit_retry_base_seconds = max(0.0, submit_retry_base_seconds)
        self.transport = transport

    @property
    def label(self) -> str:
        return self.name.value.capitalize()

    def _headers(self) -> Dict[str, str]:
        if not self.api_key:
            raise ProviderConfigurationError(f"{self.name.value.upper()}_API_KEY is not set.")
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self.transport)

    async def _post_once(self, path: str, payload: Dict[str, Any], parse: Callable[[Dict[str, Any]], T]) -> T:
        url = f"{self.base}{path}"
        headers = self._headers()
        try:
            async with self._client() as client:
                r = await client.post(url, headers=headers, json=payload)
        except httpx.HTTPError as e:
            raise ProviderSubmissionError(f"{self.label} request to {path} failed: {e!r}") from e

        if r.status_code >= 400:
            raise ProviderSubmissionError(f"{self.label} API error {r.status_code} {r.reason_phrase}: {r.text}")

        try:
            return parse(safe_json(r))
        except ProviderResponseError as e:
            raise ProviderSubmissionError(f"{self.label} returned an unexpected response: {e}") from e

    async def _post_with_retry(self, path: str, payload: Dict[str, Any], parse: Callable[[Dict[str, Any]], T]) -> T:
        base = self.submit_retry_base_seconds
        retrying = AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(self.submit_attempts),
            wait=wait_incrementing(start=base, increment=base),
            retry=retry_if_exception_type(ProviderSubmissionError),
            before_sleep=before_sleep_log(logger, logging.WARNING),
        )
        async for attempt in retrying:
            with attempt:
                return await self._post_once(path, payload, parse)
        raise AssertionError("unreachable")

    async def _get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        url = f"{self.base}{path}"
        headers = self._headers()
        try:
            async with self._client() as client:
                r = await client.get(url, headers=headers, params=params)
        except httpx.HTTPError as e:
            raise ProviderPollError(f"{self.label} poll {path} failed: {e!r}") from e

        if r.status_code >= 400:
            raise ProviderPollError(f"{self.label} poll {path} failed {r.status_code}: {r.text}")

        try:
            return safe_json(r)
        except ProviderResponseError as e:
            raise ProviderPollError(str(e)) from e
