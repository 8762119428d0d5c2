from __future__ import annotations

from typing import Callable

from research_engine.models.research import EvidenceSource, SourceOrigin
from research_engine.services.collection_registry import CollectionRegistry

SINGLE_BUCKET = "sources"
WEB_BUCKET = "Web"

LabelFn = Callable[[EvidenceSource], str]


def collection_label(registry: CollectionRegistry) -> LabelFn:
    """Default labelling: system collection display name, collection name, or question category."""
    display_names = {
        system.collection: system.name for system in registry.system_collections.values()
    }

    def label(source: EvidenceSource) -> str:
        if source.origin == SourceOrigin.VECTOR and source.collection:
            return display_names.get(source.collection, source.collection)
        return source.category or WEB_BUCKET

    return label


class SourceCategorizer:
    """Stable partition of ranked sources into category buckets."""

    def __init__(self, label_fn: LabelFn):
        self.label_fn = label_fn

    def categorize(self, sources: list[EvidenceSource]) -> dict[str, list[EvidenceSource]]:
        buckets: dict[str, list[EvidenceSource]] = {}
        for source in sources:
            buckets.setdefault(self.label_fn(source), []).append(source)
        return buckets

    @staticmethod
    def single_bucket(sources: list[EvidenceSource]) -> dict[str, list[EvidenceSource]]:
        return {SINGLE_BUCKET: list(sources)} if sources else {}
