from __future__ import annotations

import hashlib
import re
from typing import Awaitable, Callable

from research_engine.config import settings
from research_engine.errors import GatherError
from research_engine.models.execution import SourceType
from research_engine.models.research import EvidenceSource, ResearchQuestion, SourceOrigin
from research_engine.services.logger import logger
from research_engine.tools import search_provider
from research_engine.tools.search_provider import SearchResponse

SearchFn = Callable[..., Awaitable[SearchResponse]]

_WHITESPACE = re.compile(r"\s+")


def optimize_query(text: str, max_chars: int | None = None) -> str:
    """Collapse whitespace and clip to the provider's query length at a word boundary."""
    limit = max_chars or settings.search_max_query_chars
    query = _WHITESPACE.sub(" ", text).strip()
    if len(query) <= limit:
        return query
    clipped = query[:limit]
    cut = clipped.rfind(" ")
    if cut > limit // 2:
        clipped = clipped[:cut]
    return clipped.rstrip()


def source_id_for_url(url: str) -> str:
    return hashlib.sha1(url.strip().encode("utf-8")).hexdigest()[:16]


class WebGatherer:
    """Runs one web search per research question and maps hits to evidence."""

    def __init__(self, search: SearchFn | None = None):
        self._search = search or search_provider.search

    async def gather(
        self,
        question: ResearchQuestion,
        *,
        max_results: int,
        language: str,
    ) -> list[EvidenceSource]:
        query = optimize_query(question.question)
        if not query:
            return []
        try:
            response = await self._search(query, max_results=max_results, language=language)
        except Exception as e:
            raise GatherError(
                f"web search failed: {e}",
                source_type=SourceType.WEB.value,
                question=question.question,
            ) from e

        if response.fallback_from:
            logger.info(
                f"Web search for '{query[:80]}' fell back from {response.fallback_from} "
                f"to {response.provider}: {response.fallback_reason}"
            )

        results = [r for r in response.results if r.url][:max_results]
        total = len(results)
        sources: list[EvidenceSource] = []
        for idx, result in enumerate(results):
            score = result.score if result.score > 0 else 1.0 - (idx / total)
            sources.append(
                EvidenceSource(
                    id=source_id_for_url(result.url),
                    origin=SourceOrigin.WEB,
                    title=result.title or result.url,
                    snippet=result.content,
                    score=min(max(float(score), 0.0), 1.0),
                    url=result.url,
                    category=question.category,
                    questions=[question.question],
                )
            )
        return sources
