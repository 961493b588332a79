"""GenericOpenAIProvider: OpenAI-compatible endpoint via httpx.

Works with LM Studio, Ollama, vLLM, or any server exposing /v1/chat/completions.
"""

from __future__ import annotations

import os

import httpx

from ..types import ModelOptions
from .base import BaseProvider


class GenericOpenAIProvider(BaseProvider):
    """LLM provider using any OpenAI-compatible chat completions API."""

    _timeout = 120.0

    def __init__(
        self,
        base_url: str = "http://127.0.0.1:1234/v1",
        model: str = "local-model",
        api_key: str | None = None,
        api_key_env: str = "",
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(client)
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.api_key = api_key or (os.environ.get(api_key_env, "") if api_key_env else "") or "not-needed"

    def _provider_name(self) -> str:
        return "generic_openai"

    def _get_url(self) -> str:
        return f"{self.base_url}/chat/completions"

    def _get_headers(self) -> dict:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }

    def _build_payload(self, messages: list[dict], options: ModelOptions) -> dict:
        return {
            "model": self.model,
            "messages": messages,
            "max_tokens": options.max_tokens,
            "temperature": options.temperature,
        }

    def _extract_text(self, data: dict) -> str:
        choices = data.get("choices", [])
        if choices:
            return choices[0].get("message", {}).get("content") or ""
        return ""
