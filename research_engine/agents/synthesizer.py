from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Iterable

from research_engine.agents.base import BaseAgent
from research_engine.config import settings
from research_engine.errors import SynthesisError
from research_engine.models.research import EvidenceSource, ResearchQuestion, SourceOrigin
from research_engine.services.citations import CitationTracker, normalize_markers
from research_engine.services.logger import logger
from research_engine.services.prompt_store import render_prompt

# Party programme collections; their hits form the "official position" block.
OFFICIAL_COLLECTIONS: frozenset[str] = frozenset({"grundsatz_documents"})

NO_SOURCES = "Keine Quellen verfügbar."


class DossierSynthesizer(BaseAgent):
    """Writes the normal-mode summary or the deep-mode dossier.

    Sources are cited through the tracker as they enter the prompt, so the
    citation list is complete even when the LLM call fails afterwards.
    """

    name = "synthesizer"

    def __init__(
        self,
        model: str | None = None,
        *,
        official_collections: Iterable[str] | None = None,
        **kwargs: Any,
    ):
        super().__init__(model, **kwargs)
        self.official_collections = frozenset(official_collections or OFFICIAL_COLLECTIONS)

    def _format_source(self, index: int, source: EvidenceSource) -> str:
        snippet = source.snippet.strip().replace("\n", " ")
        limit = settings.synthesis_snippet_chars
        if len(snippet) > limit:
            snippet = snippet[:limit].rstrip() + "..."
        lines = [f"[{index}] {source.title}", snippet]
        if source.url:
            lines.append(f"URL: {source.url}")
        return "\n".join(line for line in lines if line)

    def _cite_block(self, sources: list[EvidenceSource], tracker: CitationTracker) -> str:
        if not sources:
            return NO_SOURCES
        return "\n\n".join(self._format_source(tracker.cite(s), s) for s in sources)

    def _finalize(self, text: str, tracker: CitationTracker) -> str:
        if not text.strip():
            raise SynthesisError("synthesis returned empty text")
        text = normalize_markers(text)
        _, invalid = tracker.used_indices(text)
        if invalid:
            logger.warning(f"Synthesis referenced unknown citation indices: {invalid}")
        return text

    async def summarize(
        self,
        query: str,
        sources: list[EvidenceSource],
        tracker: CitationTracker,
    ) -> str:
        context = self._cite_block(sources[: settings.summary_max_sources], tracker)
        try:
            text = await self._complete(
                system=render_prompt("synthesizer.summary_system"),
                user=render_prompt("synthesizer.summary_user", query=query, sources=context),
                max_tokens=settings.summary_max_tokens,
            )
        except Exception as e:
            raise SynthesisError(f"summary call failed: {str(e) or type(e).__name__}") from e
        return self._finalize(text, tracker)

    def select_dossier_sources(
        self,
        sources: list[EvidenceSource],
        categories: dict[str, list[EvidenceSource]],
    ) -> tuple[list[EvidenceSource], dict[str, list[EvidenceSource]]]:
        """Official sources first, then the top sources of each category."""
        official = [s for s in sources if s.collection in self.official_collections]
        official = official[: settings.dossier_official_sources]
        used = {s.id for s in official}
        per_category: dict[str, list[EvidenceSource]] = {}
        for label, bucket in categories.items():
            picks = [s for s in bucket if s.id not in used][: settings.dossier_sources_per_category]
            if picks:
                per_category[label] = picks
                used.update(s.id for s in picks)
        return official, per_category

    async def write_dossier(
        self,
        query: str,
        questions: list[ResearchQuestion],
        sources: list[EvidenceSource],
        categories: dict[str, list[EvidenceSource]],
        tracker: CitationTracker,
    ) -> str:
        official, per_category = self.select_dossier_sources(sources, categories)
        official_block = self._cite_block(official, tracker)
        category_blocks = [
            f"### {label}\n{self._cite_block(picks, tracker)}" for label, picks in per_category.items()
        ]
        question_lines = "\n".join(
            f"- {q.question}" + (f" ({q.category})" if q.category else "") for q in questions
        )

        try:
            text = await self._complete(
                system=render_prompt("synthesizer.dossier_system"),
                user=render_prompt(
                    "synthesizer.dossier_user",
                    query=query,
                    questions=question_lines,
                    official_sources=official_block,
                    category_sources="\n\n".join(category_blocks) or NO_SOURCES,
                ),
                max_tokens=settings.dossier_max_tokens,
            )
        except Exception as e:
            raise SynthesisError(f"dossier call failed: {str(e) or type(e).__name__}") from e

        body = self._finalize(text, tracker)
        return f"{body.rstrip()}\n\n{self.methodology(questions, sources, categories, tracker)}"

    @staticmethod
    def methodology(
        questions: list[ResearchQuestion],
        sources: list[EvidenceSource],
        categories: dict[str, list[EvidenceSource]],
        tracker: CitationTracker,
    ) -> str:
        web_count = sum(1 for s in sources if s.origin == SourceOrigin.WEB)
        return render_prompt(
            "synthesizer.methodology",
            question_count=len(questions),
            source_count=len(sources),
            web_count=web_count,
            vector_count=len(sources) - web_count,
            categories=", ".join(categories) or "-",
            citation_count=len(tracker),
            date=datetime.now(timezone.utc).date().isoformat(),
        )
