from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from tavily import AsyncTavilyClient

from research_engine.config import settings

# Tavily targets by country name rather than by language code.
COUNTRY_BY_LANGUAGE = {
    "de": "germany",
    "at": "austria",
    "ch": "switzerland",
}


@dataclass
class SearchResult:
    title: str
    url: str
    content: str
    score: float


async def search(
    query: str,
    *,
    max_results: int = 10,
    language: str | None = None,
    search_depth: str = "advanced",
) -> list[SearchResult]:
    """Execute a Tavily web search and return structured results."""
    client = AsyncTavilyClient(api_key=settings.tavily_api_key)

    kwargs: dict[str, Any] = {
        "query": query,
        "search_depth": search_depth,
        "max_results": max_results,
        "topic": "general",
    }
    if language:
        region = language.split("-")[-1].lower()
        country = COUNTRY_BY_LANGUAGE.get(region)
        if country:
            kwargs["country"] = country

    response = await client.search(**kwargs)

    return [
        SearchResult(
            title=r.get("title", ""),
            url=r.get("url", ""),
            content=r.get("content", ""),
            score=float(r.get("score", 0.0) or 0.0),
        )
        for r in response.get("results", [])
    ]
