from __future__ import annotations

from typing import Any

import httpx

from research_engine.config import settings
from research_engine.tools.tavily_search import SearchResult


async def search(
    query: str,
    *,
    max_results: int = 10,
    language: str | None = None,
) -> list[SearchResult]:
    """Query a self-hosted SearXNG instance through its JSON API."""
    base_url = settings.searxng_base_url.strip().rstrip("/")
    if not base_url:
        raise RuntimeError("SEARXNG_BASE_URL is not configured")

    params: dict[str, Any] = {
        "q": query,
        "format": "json",
        "categories": "general",
        "safesearch": 0,
        "pageno": 1,
    }
    if language:
        params["language"] = language

    async with httpx.AsyncClient(timeout=30.0) as client:
        response = await client.get(f"{base_url}/search", params=params)
        response.raise_for_status()
        payload = response.json()

    results: list[SearchResult] = []
    for item in payload.get("results", [])[:max_results]:
        url = item.get("url")
        if not url:
            continue
        results.append(
            SearchResult(
                title=item.get("title", "") or "",
                url=url,
                content=(item.get("content", "") or "").strip(),
                score=float(item.get("score", 0.0) or 0.0),
            )
        )
    return results
