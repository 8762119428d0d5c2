"""Research orchestration: plan, gather, merge, categorize, synthesize.

Each request owns a ``ResearchRun`` state machine. Gathering fans out one
task per (question x source type) and joins them at a single barrier; task
results are only combined after every task has finished.
"""
from __future__ import annotations

import asyncio
from typing import Callable
from uuid import uuid4

from research_engine.agents.planner import ResearchPlanner
from research_engine.agents.synthesizer import DossierSynthesizer
from research_engine.config import settings
from research_engine.errors import GatherError, PlanningError, SynthesisError
from research_engine.models.execution import (
    GatherOutcome,
    ResearchRun,
    ResearchState,
    SourceType,
    terminal_state,
)
from research_engine.models.research import (
    EvidenceSource,
    ResearchMode,
    ResearchOptions,
    ResearchQuestion,
    ResultEnvelope,
    ResultMetadata,
    SourceOrigin,
)
from research_engine.services import limits
from research_engine.services import logger as log_service
from research_engine.services.categorizer import SourceCategorizer, collection_label
from research_engine.services.citations import CitationTracker
from research_engine.services.collection_registry import CollectionRegistry, get_registry
from research_engine.services.embeddings_local import get_embedder
from research_engine.services.limits import BackendLimiter
from research_engine.services.logger import logger
from research_engine.services.vector_gatherer import VectorGatherer
from research_engine.services.vector_store import VectorStore, get_vector_store
from research_engine.services.web_gatherer import WebGatherer

RankStrategy = Callable[[list[EvidenceSource]], list[EvidenceSource]]

NO_EVIDENCE_MESSAGE = "No evidence was found and no text could be synthesized."


def rank_by_score(sources: list[EvidenceSource]) -> list[EvidenceSource]:
    """Stable sort by score; ties keep first-seen order."""
    return sorted(sources, key=lambda s: -s.score)


def _url_key(url: str) -> str:
    return url.strip().lower().rstrip("/")


def merge_outcomes(outcomes: list[GatherOutcome]) -> list[EvidenceSource]:
    """Deduplicate sources across tasks in first-seen order.

    Web sources are keyed by URL, vector sources by id. A duplicate keeps the
    higher score and records every question that surfaced it.
    """
    merged: dict[str, EvidenceSource] = {}
    for outcome in outcomes:
        for source in outcome.sources:
            if source.origin == SourceOrigin.WEB and source.url:
                key = f"web:{_url_key(source.url)}"
            else:
                key = f"vector:{source.id}"
            existing = merged.get(key)
            if existing is None:
                merged[key] = source.model_copy(update={"questions": list(source.questions)})
                continue
            questions = existing.questions + [q for q in source.questions if q not in existing.questions]
            merged[key] = existing.model_copy(
                update={"score": max(existing.score, source.score), "questions": questions}
            )
    return list(merged.values())


class ResearchOrchestrator:
    """Runs one research request end to end and always returns an envelope."""

    def __init__(
        self,
        registry: CollectionRegistry | None = None,
        *,
        web: WebGatherer | None = None,
        vector: VectorGatherer | None = None,
        planner: ResearchPlanner | None = None,
        synthesizer: DossierSynthesizer | None = None,
        categorizer: SourceCategorizer | None = None,
        limiter: BackendLimiter | None = None,
        rank: RankStrategy | None = None,
    ):
        self.registry = registry or get_registry()
        self.limiter = limiter or BackendLimiter.from_settings()
        self.web = web or WebGatherer()
        self.vector = vector or VectorGatherer(
            self.registry, get_vector_store(), get_embedder(), limiter=self.limiter
        )
        self.planner = planner or ResearchPlanner(limiter=self.limiter)
        self.synthesizer = synthesizer or DossierSynthesizer(limiter=self.limiter)
        self.categorizer = categorizer or SourceCategorizer(collection_label(self.registry))
        self.rank = rank or rank_by_score

    async def run_research(
        self,
        query: str,
        mode: ResearchMode | str = ResearchMode.NORMAL,
        options: ResearchOptions | None = None,
        tenant_id: str | None = None,
    ) -> ResultEnvelope:
        mode = ResearchMode(mode)
        options = options or ResearchOptions()
        run = ResearchRun(request_id=uuid4().hex[:12])
        tracker = CitationTracker()

        log_service.log_event(
            event_type="research_started",
            message="Research started",
            request_id=run.request_id,
            mode=mode.value,
            query=query[:100],
        )

        # PLAN
        run.advance(ResearchState.PLAN)
        try:
            questions = await self.planner.plan(query, mode)
        except PlanningError as e:
            run.mark_degraded("plan", str(e))
            questions = [ResearchQuestion(question=query)]
        run.counts["questions"] = len(questions)
        log_service.log_research_step(
            run.request_id,
            "plan",
            "degraded" if run.degraded["plan"] else "completed",
            {"questions": [q.question for q in questions]},
        )

        # GATHER
        run.advance(ResearchState.GATHER)
        outcomes = await self._gather(questions, options, tenant_id)
        failed = [o for o in outcomes if o.failed]
        for outcome in outcomes:
            label = f"{outcome.source_type.value}[q{outcome.question_index}]"
            if outcome.failed:
                run.mark_degraded("gather", f"{label}: {outcome.error}")
            for error in outcome.partial_errors:
                run.mark_degraded("gather", f"{label}: {error}")
        unknown_collections = list(
            dict.fromkeys(ref for o in outcomes for ref in o.unknown_collections)
        )
        skipped_collections = list(
            dict.fromkeys(ref for o in outcomes for ref in o.skipped_collections)
        )
        run.counts["gather_tasks"] = len(outcomes)
        run.counts["gather_failed"] = len(failed)
        run.counts["web_hits"] = sum(len(o.sources) for o in outcomes if o.source_type == SourceType.WEB)
        run.counts["vector_hits"] = sum(
            len(o.sources) for o in outcomes if o.source_type == SourceType.VECTOR
        )
        log_service.log_research_step(
            run.request_id,
            "gather",
            "degraded" if run.degraded["gather"] else "completed",
            {"tasks": len(outcomes), "failed": len(failed)},
        )

        # MERGE
        run.advance(ResearchState.MERGE)
        sources = self.rank(merge_outcomes(outcomes))
        run.counts["sources"] = len(sources)

        # CATEGORIZE
        run.advance(ResearchState.CATEGORIZE)
        if mode == ResearchMode.DEEP:
            categories = self.categorizer.categorize(sources)
        else:
            categories = SourceCategorizer.single_bucket(sources)
        run.counts["categories"] = len(categories)

        # SYNTHESIZE
        summary: str | None = None
        dossier: str | None = None
        if options.include_summary:
            run.advance(ResearchState.SYNTHESIZE)
            try:
                if mode == ResearchMode.DEEP:
                    dossier = await self.synthesizer.write_dossier(
                        query, questions, sources, categories, tracker
                    )
                else:
                    summary = await self.synthesizer.summarize(query, sources, tracker)
            except SynthesisError as e:
                run.mark_degraded("synthesize", str(e))
            log_service.log_research_step(
                run.request_id,
                "synthesize",
                "degraded" if run.degraded["synthesize"] else "completed",
                {"citations": len(tracker)},
            )
        run.counts["citations"] = len(tracker)

        final_state = terminal_state(source_count=len(sources), has_text=bool(summary or dossier))
        run.advance(final_state)
        if final_state == ResearchState.ERROR:
            log_service.log_research_step(run.request_id, "research", "error", {"errors": run.errors})

        envelope = ResultEnvelope(
            status="error" if final_state == ResearchState.ERROR else "success",
            query=query,
            mode=mode,
            research_questions=questions,
            sources=sources,
            citations=tracker.citations(),
            categories=categories,
            summary=summary,
            dossier=dossier,
            message=NO_EVIDENCE_MESSAGE if final_state == ResearchState.ERROR else None,
            metadata=ResultMetadata(
                duration_ms=run.duration_ms,
                counts=dict(run.counts),
                degraded=dict(run.degraded),
                outcome=run.outcome(),
                states=[s.value for s in run.history],
                errors=list(run.errors),
                unknown_collections=unknown_collections,
                skipped_collections=skipped_collections,
            ),
        )
        log_service.log_event(
            event_type="research_completed",
            message="Research completed",
            request_id=run.request_id,
            outcome=envelope.metadata.outcome,
            duration_ms=envelope.metadata.duration_ms,
            sources=len(sources),
        )
        return envelope

    async def _gather(
        self,
        questions: list[ResearchQuestion],
        options: ResearchOptions,
        tenant_id: str | None,
    ) -> list[GatherOutcome]:
        tasks = []
        for idx, question in enumerate(questions):
            if options.include_web:
                tasks.append(self._gather_web(idx, question, options))
            if options.include_vector:
                tasks.append(self._gather_vector(idx, question, options, tenant_id))
        if not tasks:
            return []
        return list(await asyncio.gather(*tasks))

    async def _gather_web(
        self, idx: int, question: ResearchQuestion, options: ResearchOptions
    ) -> GatherOutcome:
        try:
            sources = await self.limiter.run(
                limits.SEARCH,
                lambda: self.web.gather(
                    question, max_results=options.max_results, language=options.language
                ),
            )
        except Exception as e:
            logger.warning(f"Web gather failed for '{question.question[:80]}': {e!r}")
            return GatherOutcome(idx, SourceType.WEB, error=_describe(e))
        return GatherOutcome(idx, SourceType.WEB, sources=sources)

    async def _gather_vector(
        self,
        idx: int,
        question: ResearchQuestion,
        options: ResearchOptions,
        tenant_id: str | None,
    ) -> GatherOutcome:
        try:
            result = await self.vector.gather(
                question,
                tenant_id=tenant_id,
                collections=options.collections,
                filters=options.filters,
                subcategories=options.subcategories,
            )
        except Exception as e:
            logger.warning(f"Vector gather failed for '{question.question[:80]}': {e!r}")
            unknown = [ref for ref in options.collections or [] if not self.registry.is_known(ref)]
            return GatherOutcome(
                idx, SourceType.VECTOR, error=_describe(e), unknown_collections=unknown
            )
        return GatherOutcome(
            idx,
            SourceType.VECTOR,
            sources=result.sources,
            partial_errors=list(result.errors),
            unknown_collections=result.unknown_collections,
            skipped_collections=result.skipped_collections,
        )


def _describe(error: Exception) -> str:
    if isinstance(error, GatherError):
        return str(error)
    if isinstance(error, (TimeoutError, asyncio.TimeoutError)):
        return "timed out"
    return str(error) or type(error).__name__


async def ensure_collections(
    registry: CollectionRegistry,
    store: VectorStore,
    vector_size: int | None = None,
) -> list[str]:
    """Create every registered collection with its merged index configuration."""
    size = vector_size or settings.embedding_dimensions
    created: list[str] = []
    for name, config in registry.index_configs(size).items():
        await store.ensure_collection(name, config)
        created.append(name)
    return created


_orchestrator: ResearchOrchestrator | None = None


def get_orchestrator() -> ResearchOrchestrator:
    """Get or create the process-wide orchestrator."""
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = ResearchOrchestrator()
    return _orchestrator
