"""Async chat-model provider base with a shared retry loop."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod

import httpx

from ..types import LLMProvider, LLMProviderError, ModelOptions

logger = logging.getLogger(__name__)

MAX_RETRIES = 3
RETRY_BACKOFF = [1.0, 2.0, 4.0]


class BaseProvider(ABC):
    """Base for chat-model providers. Subclasses supply the URL, headers,
    payload and text extraction; ``respond()`` retries 429 and 5xx."""

    _timeout: float = 60.0
    retry_backoff: list[float] = RETRY_BACKOFF

    def __init__(self, client: httpx.AsyncClient | None = None) -> None:
        self.last_usage: dict = {}
        self._client = client
        self._owns_client = client is None

    # -- hook methods subclasses must implement --

    @abstractmethod
    def _provider_name(self) -> str: ...

    @abstractmethod
    def _get_url(self) -> str: ...

    @abstractmethod
    def _get_headers(self) -> dict: ...

    @abstractmethod
    def _build_payload(self, messages: list[dict], options: ModelOptions) -> dict: ...

    @abstractmethod
    def _extract_text(self, data: dict) -> str: ...

    # -- shared retry logic --

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    async def respond(self, messages: list[dict], options: ModelOptions) -> str:
        """Send a chat request with automatic retry on transient errors."""
        url = self._get_url()
        headers = self._get_headers()
        payload = self._build_payload(messages, options)

        last_error: Exception | None = None

        for attempt in range(MAX_RETRIES):
            try:
                response = await self.client.post(url, headers=headers, json=payload)

                if response.status_code == 200:
                    data = response.json()
                    self.last_usage = data.get("usage", {})
                    return self._extract_text(data)

                if response.status_code == 429 or response.status_code >= 500:
                    last_error = LLMProviderError(
                        f"HTTP {response.status_code}: {response.text}",
                        provider=self._provider_name(),
                        status_code=response.status_code,
                    )
                    if attempt < MAX_RETRIES - 1:
                        logger.debug("%s returned %d, retrying", self._provider_name(), response.status_code)
                        await asyncio.sleep(self.retry_backoff[attempt])
                    continue

                raise LLMProviderError(
                    f"HTTP {response.status_code}: {response.text}",
                    provider=self._provider_name(),
                    status_code=response.status_code,
                )

            except httpx.HTTPError as e:
                last_error = LLMProviderError(
                    f"HTTP error: {e}",
                    provider=self._provider_name(),
                )
                if attempt < MAX_RETRIES - 1:
                    await asyncio.sleep(self.retry_backoff[attempt])
                continue

            except ValueError as e:
                raise LLMProviderError(
                    f"Invalid response body: {e}", provider=self._provider_name(),
                ) from e

        raise last_error or LLMProviderError(
            "Max retries exceeded", provider=self._provider_name()
        )

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None


__all__ = ["BaseProvider", "LLMProvider", "LLMProviderError"]
