"""Tenant-aware retrieval across one or more vector collections."""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Callable

from research_engine.config import settings
from research_engine.errors import GatherError
from research_engine.models.execution import SourceType
from research_engine.models.filters import QueryFilter
from research_engine.models.research import EvidenceSource, ResearchQuestion, SourceOrigin
from research_engine.services import limits
from research_engine.services.collection_registry import (
    SYSTEM_OWNER,
    CollectionRegistry,
    CollectionTarget,
)
from research_engine.services.filter_builder import (
    FilterRequest,
    apply_default_filter,
    build_filter,
    build_subcategory_filter,
    merge_filters,
    tenant_filter,
)
from research_engine.services.limits import BackendLimiter
from research_engine.services.logger import logger
from research_engine.services.vector_store import Embedder, VectorHit, VectorStore

# Per-collection ranked lists, in collection order -> one ranked list.
MergeStrategy = Callable[[list[list[EvidenceSource]]], list[EvidenceSource]]


def score_merge(ranked_lists: list[list[EvidenceSource]]) -> list[EvidenceSource]:
    """Stable sort by score; ties keep per-collection rank, then collection order."""
    combined = [source for ranked in ranked_lists for source in ranked]
    return sorted(combined, key=lambda s: -s.score)


@dataclass(slots=True)
class VectorGatherResult:
    sources: list[EvidenceSource] = field(default_factory=list)
    unknown_collections: list[str] = field(default_factory=list)
    skipped_collections: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


class VectorGatherer:
    def __init__(
        self,
        registry: CollectionRegistry,
        store: VectorStore,
        embedder: Embedder,
        *,
        limiter: BackendLimiter | None = None,
        merge: MergeStrategy | None = None,
        max_results: int | None = None,
    ):
        self.registry = registry
        self.store = store
        self.embedder = embedder
        self.limiter = limiter or BackendLimiter.from_settings()
        self.merge = merge or score_merge
        self.max_results = max_results or settings.vector_max_results_per_question

    def build_target_filter(
        self,
        target: CollectionTarget,
        tenant_id: str | None,
        filters: FilterRequest | None = None,
        subcategories: dict[str, Any] | None = None,
    ) -> QueryFilter | None:
        """Caller filters restricted to the collection's fields, plus access rules."""
        allowed = self.registry.filterable_fields(target.ref)
        caller = merge_filters(
            build_filter(filters, allowed),
            build_subcategory_filter(subcategories, allowed),
        )
        if target.owner_mode == "system":
            return apply_default_filter(target.system, caller)
        if target.owner_mode == "tenant":
            return merge_filters(tenant_filter(target.tenant_field, tenant_id), caller)
        return caller

    def resolve_targets(
        self, refs: list[str] | None, tenant_id: str | None
    ) -> tuple[list[CollectionTarget], list[str], list[str]]:
        """Returns (targets, unknown refs, skipped refs)."""
        targets: list[CollectionTarget] = []
        unknown: list[str] = []
        skipped: list[str] = []
        for ref in dict.fromkeys(refs or self.registry.default_collection_ids):
            if not self.registry.is_known(ref):
                unknown.append(ref)
                continue
            target = self.registry.resolve(ref)
            if target.owner_mode == "tenant" and not tenant_id:
                # Tenant-scoped rows are never queried without a tenant clause.
                skipped.append(ref)
                continue
            targets.append(target)
        return targets, unknown, skipped

    async def gather(
        self,
        question: ResearchQuestion,
        *,
        tenant_id: str | None = None,
        collections: list[str] | None = None,
        filters: FilterRequest | None = None,
        subcategories: dict[str, Any] | None = None,
    ) -> VectorGatherResult:
        targets, unknown, skipped = self.resolve_targets(collections, tenant_id)
        result = VectorGatherResult(unknown_collections=unknown, skipped_collections=skipped)
        if unknown:
            logger.warning(f"Ignoring unknown collections: {unknown}")
        if skipped:
            logger.info(f"Skipping tenant collections without tenant id: {skipped}")
        if not targets:
            return result

        try:
            vector = await self.embedder.embed_text(question.question)
        except Exception as e:
            raise GatherError(
                f"embedding failed: {e}",
                source_type=SourceType.VECTOR.value,
                question=question.question,
            ) from e

        async def _query(target: CollectionTarget) -> list[VectorHit]:
            query_filter = self.build_target_filter(target, tenant_id, filters, subcategories)
            return await self.limiter.run(
                limits.VECTOR,
                lambda: self.store.query(target.collection, vector, query_filter, target.recall_limit),
            )

        outcomes = await asyncio.gather(
            *(_query(target) for target in targets), return_exceptions=True
        )

        ranked_lists: list[list[EvidenceSource]] = []
        for target, outcome in zip(targets, outcomes):
            if isinstance(outcome, BaseException):
                if isinstance(outcome, asyncio.CancelledError):
                    raise outcome
                message = str(outcome) or type(outcome).__name__
                result.errors.append(f"{target.collection}: {message}")
                logger.warning(f"Vector query on {target.collection} failed: {message}")
                continue
            ranked_lists.append(
                [
                    self._to_source(target, hit, question, tenant_id)
                    for hit in outcome[: target.recall_limit]
                    if hit.score >= target.min_quality
                ]
            )

        if not ranked_lists:
            raise GatherError(
                "all vector collections failed: " + "; ".join(result.errors),
                source_type=SourceType.VECTOR.value,
                question=question.question,
            )

        result.sources = self.merge(ranked_lists)[: self.max_results]
        return result

    @staticmethod
    def _to_source(
        target: CollectionTarget,
        hit: VectorHit,
        question: ResearchQuestion,
        tenant_id: str | None,
    ) -> EvidenceSource:
        payload = hit.payload
        if target.owner_mode == "system":
            tenant = SYSTEM_OWNER
        elif target.owner_mode == "tenant":
            tenant = tenant_id
        else:
            tenant = None
        title = payload.get("title") or payload.get("filename") or payload.get("source_url") or target.collection
        return EvidenceSource(
            id=f"{target.collection}:{hit.id}",
            origin=SourceOrigin.VECTOR,
            collection=target.collection,
            title=str(title),
            snippet=hit.text or str(payload.get("chunk_text", "")),
            score=min(max(float(hit.score), 0.0), 1.0),
            url=payload.get("source_url") or payload.get("url"),
            document_id=payload.get("document_id"),
            tenant=tenant,
            category=question.category,
            questions=[question.question],
        )
