from __future__ import annotations

from typing import Any

import httpx

from research_engine.config import settings
from research_engine.tools.tavily_search import SearchResult

BRAVE_SEARCH_URL = "https://api.search.brave.com/res/v1/web/search"
BRAVE_MAX_COUNT = 20


def _params(query: str, max_results: int, language: str | None) -> dict[str, Any]:
    # Brave splits a locale like de-DE into search_lang=de and country=DE.
    params: dict[str, Any] = {"q": query, "count": min(max_results, BRAVE_MAX_COUNT)}
    if language:
        lang, _, region = language.partition("-")
        params["search_lang"] = lang.lower()
        if region:
            params["country"] = region.upper()
    return params


def _to_result(item: dict[str, Any]) -> SearchResult:
    description = (item.get("description") or "").strip()
    if not description:
        description = " ".join(item.get("extra_snippets") or []).strip()
    # No relevance score in Brave responses; rank decides.
    return SearchResult(
        title=item.get("title", ""),
        url=item.get("url", ""),
        content=description,
        score=0.0,
    )


async def search(
    query: str,
    *,
    max_results: int = 10,
    language: str | None = None,
) -> list[SearchResult]:
    """Brave web search for one query."""
    if not settings.brave_api_key:
        raise RuntimeError("BRAVE_API_KEY is not configured")

    headers = {"Accept": "application/json", "X-Subscription-Token": settings.brave_api_key}
    async with httpx.AsyncClient(timeout=30.0) as client:
        response = await client.get(
            BRAVE_SEARCH_URL, params=_params(query, max_results, language), headers=headers
        )
        response.raise_for_status()
        payload = response.json()

    return [_to_result(item) for item in payload.get("web", {}).get("results", [])]
