"""Google Programmable Search Engine client and query/result helpers."""

from __future__ import annotations

import logging
import os
import re

import httpx

from ..types import ConfigurationError, ProviderError, SearchResult

logger = logging.getLogger(__name__)

API_URL = "https://www.googleapis.com/customsearch/v1"

_QUERY_LABEL_RE = re.compile(
    r"^(?:추천|검색어|쿼리|검색 쿼리|효과적인 검색 쿼리|PSE 검색 쿼리|search query|query)\s*:\s*",
    re.IGNORECASE,
)


def clean_search_query(query: str | None) -> str:
    """Reduce a model-written search query to the bare query string."""
    if not query:
        return ""
    cleaned = query.strip()
    cleaned = _QUERY_LABEL_RE.sub("", cleaned)
    if "\n" in cleaned:
        cleaned = cleaned.split("\n", 1)[0].strip()
    cleaned = re.sub(r"^\*\*|\*\*$", "", cleaned)
    cleaned = re.sub(r"^#+ ", "", cleaned)
    cleaned = _QUERY_LABEL_RE.sub("", cleaned.strip())
    # Wrapping quotes only; inner quoted phrases are kept
    if len(cleaned) >= 2 and cleaned[0] == cleaned[-1] == '"' and cleaned.count('"') == 2:
        cleaned = cleaned[1:-1]
    return cleaned.strip()


def format_search_results(results: list[SearchResult]) -> str:
    return "\n".join(
        f"[{i}] {r.title}\n{r.snippet}\n" for i, r in enumerate(results, start=1)
    )


class GooglePSEProvider:
    """Custom Search JSON API over ``httpx.AsyncClient``."""

    def __init__(
        self,
        api_key: str | None = None,
        engine_id: str | None = None,
        api_key_env: str = "GOOGLE_PSE_API_KEY",
        engine_id_env: str = "GOOGLE_PSE_ENGINE_ID",
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_key = api_key or os.environ.get(api_key_env, "")
        self.engine_id = engine_id or os.environ.get(engine_id_env, "")
        self.api_key_env = api_key_env
        self.engine_id_env = engine_id_env
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None

    async def search(self, query: str, count: int = 5) -> list[SearchResult]:
        if not self.api_key or not self.engine_id:
            raise ConfigurationError(
                f"Google PSE credentials missing. Set {self.api_key_env} and {self.engine_id_env}."
            )

        params = {
            "key": self.api_key,
            "cx": self.engine_id,
            "q": query,
            "num": max(1, min(10, count)),
        }
        try:
            response = await self._client.get(API_URL, params=params)
        except httpx.HTTPError as e:
            raise ProviderError(f"HTTP error: {e}", provider="google_pse") from e

        if response.status_code != 200:
            raise ProviderError(
                f"HTTP {response.status_code}: {response.text}",
                provider="google_pse",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise ProviderError(f"Invalid JSON: {e}", provider="google_pse") from e

        items = data.get("items") or []
        results = [
            SearchResult(
                title=str(item.get("title", "")),
                snippet=str(item.get("snippet", "")),
                link=str(item.get("link", "")),
            )
            for item in items
            if isinstance(item, dict)
        ]
        logger.debug("Search %r returned %d results", query, len(results))
        return results

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
