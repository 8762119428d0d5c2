from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

from research_engine.models.filters import QueryFilter


@dataclass(slots=True)
class VectorHit:
    id: str
    score: float
    payload: dict[str, Any] = field(default_factory=dict)
    text: str = ""


@dataclass(slots=True)
class VectorPoint:
    id: str
    vector: list[float]
    payload: dict[str, Any] = field(default_factory=dict)
    text: str = ""


class VectorStore(Protocol):
    """Boundary to the vector database. Scores are similarities in [0, 1]."""

    async def query(
        self,
        collection: str,
        vector: list[float],
        filter: QueryFilter | None,
        limit: int,
    ) -> list[VectorHit]: ...

    async def ensure_collection(self, name: str, index_config: dict[str, Any]) -> None: ...

    async def upsert(self, collection: str, points: list[VectorPoint]) -> int: ...


class Embedder(Protocol):
    async def embed_text(self, text: str) -> list[float]: ...

    async def embed_texts(self, texts: list[str]) -> list[list[float]]: ...


_store: VectorStore | None = None


def get_vector_store() -> VectorStore:
    """Get or create the process-wide vector store."""
    global _store
    if _store is None:
        from research_engine.services.vector_chroma import ChromaVectorStore
        from research_engine.config import settings

        _store = ChromaVectorStore(
            persist_dir=settings.chroma_persist_dir,
            host=settings.chroma_host or None,
            port=settings.chroma_port,
        )
    return _store
