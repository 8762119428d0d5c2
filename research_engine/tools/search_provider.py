from __future__ import annotations

from dataclasses import dataclass

from research_engine.config import settings
from research_engine.tools import brave_search, searxng_search, tavily_search
from research_engine.tools.tavily_search import SearchResult


@dataclass
class SearchResponse:
    results: list[SearchResult]
    provider: str
    fallback_from: str | None = None
    fallback_reason: str | None = None


async def _with_tavily_fallback(
    provider: str,
    query: str,
    *,
    max_results: int,
    language: str | None,
) -> SearchResponse:
    primary = brave_search.search if provider == "brave" else searxng_search.search
    use_fallback = settings.search_fallback_to_tavily
    try:
        results = await primary(query=query, max_results=max_results, language=language)
        if results or not use_fallback:
            return SearchResponse(results=results, provider=provider)
        reason = f"{provider} returned zero results"
    except Exception as e:
        if not use_fallback:
            raise
        reason = str(e)

    fallback_results = await tavily_search.search(
        query=query,
        max_results=max_results,
        language=language,
    )
    return SearchResponse(
        results=fallback_results,
        provider="tavily",
        fallback_from=provider,
        fallback_reason=reason,
    )


async def search(
    query: str,
    *,
    max_results: int = 10,
    language: str | None = None,
) -> SearchResponse:
    provider = settings.search_provider.lower().strip()

    if provider == "tavily":
        results = await tavily_search.search(
            query=query,
            max_results=max_results,
            language=language,
        )
        return SearchResponse(results=results, provider="tavily")

    if provider in ("brave", "searxng"):
        return await _with_tavily_fallback(
            provider, query, max_results=max_results, language=language
        )

    raise ValueError(f"Unsupported SEARCH_PROVIDER: {settings.search_provider}")
