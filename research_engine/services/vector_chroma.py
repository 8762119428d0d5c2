"""Chroma implementation of the vector store boundary.

Collections are created in cosine space, so Chroma distances lie in [0, 2]
and are reported as similarity ``1 - distance`` clamped to [0, 1].
Normalized filters are translated to Chroma ``where`` / ``where_document``
clauses; text clauses always match against the stored chunk text.
"""
from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

import chromadb

from research_engine.models.filters import (
    AnyClause,
    ExactClause,
    FilterClause,
    QueryFilter,
    RangeClause,
    TextClause,
)
from research_engine.services.logger import logger
from research_engine.services.vector_store import VectorHit, VectorPoint

_DISTANCE_SPACES = {"cosine": "cosine", "euclid": "l2", "dot": "ip"}


class ChromaVectorStore:
    def __init__(
        self,
        persist_dir: str | None = None,
        *,
        host: str | None = None,
        port: int = 8000,
        client: Any | None = None,
    ):
        self.persist_dir = Path(persist_dir) if persist_dir else None
        self.host = host
        self.port = port
        self._client: Any | None = client
        self._client_lock = asyncio.Lock()

    async def query(
        self,
        collection: str,
        vector: list[float],
        filter: QueryFilter | None,
        limit: int,
    ) -> list[VectorHit]:
        client = await self._get_client()
        where, where_document = translate_filter(filter)

        def _sync_query() -> list[VectorHit]:
            target = client.get_collection(name=collection)
            kwargs: dict[str, Any] = {
                "query_embeddings": [vector],
                "n_results": max(int(limit), 1),
                "include": ["documents", "metadatas", "distances"],
            }
            if where:
                kwargs["where"] = where
            if where_document:
                kwargs["where_document"] = where_document
            result = target.query(**kwargs)

            docs = (result.get("documents") or [[]])[0]
            metas = (result.get("metadatas") or [[]])[0]
            distances = (result.get("distances") or [[]])[0]
            ids = (result.get("ids") or [[]])[0]
            hits: list[VectorHit] = []
            for idx, hit_id in enumerate(ids):
                metadata = metas[idx] if idx < len(metas) and isinstance(metas[idx], dict) else {}
                doc = docs[idx] if idx < len(docs) and isinstance(docs[idx], str) else ""
                distance = float(distances[idx]) if idx < len(distances) else 1.0
                score = min(max(1.0 - distance, 0.0), 1.0)
                hits.append(VectorHit(id=str(hit_id), score=score, payload=dict(metadata), text=doc))
            return hits

        return await asyncio.to_thread(_sync_query)

    async def ensure_collection(self, name: str, index_config: dict[str, Any]) -> None:
        client = await self._get_client()
        metadata = collection_metadata(index_config)

        def _sync_ensure() -> None:
            client.get_or_create_collection(name=name, metadata=metadata)

        await asyncio.to_thread(_sync_ensure)
        logger.debug(f"Ensured Chroma collection {name}: {metadata}")

    async def upsert(self, collection: str, points: list[VectorPoint]) -> int:
        if not points:
            return 0
        client = await self._get_client()

        def _sync_upsert() -> None:
            target = client.get_collection(name=collection)
            target.upsert(
                ids=[p.id for p in points],
                embeddings=[p.vector for p in points],
                documents=[p.text for p in points],
                metadatas=[_metadata_for_point(p) for p in points],
            )

        await asyncio.to_thread(_sync_upsert)
        return len(points)

    async def _get_client(self) -> Any:
        async with self._client_lock:
            if self._client is not None:
                return self._client
            if self.host:
                self._client = chromadb.HttpClient(host=self.host, port=self.port)
            else:
                persist_dir = self.persist_dir or Path(".cache/chroma")
                persist_dir.mkdir(parents=True, exist_ok=True)
                self._client = chromadb.PersistentClient(path=str(persist_dir))
            return self._client


def collection_metadata(index_config: dict[str, Any]) -> dict[str, Any]:
    """Map an index configuration onto Chroma collection metadata."""
    vectors = index_config.get("vectors", {})
    distance = str(vectors.get("distance", "Cosine")).lower()
    metadata: dict[str, Any] = {"hnsw:space": _DISTANCE_SPACES.get(distance, "cosine")}
    if vectors.get("size"):
        metadata["dimension"] = int(vectors["size"])
    hnsw = index_config.get("hnsw_config") or {}
    if "m" in hnsw:
        metadata["hnsw:M"] = int(hnsw["m"])
    if "ef_construct" in hnsw:
        metadata["hnsw:construction_ef"] = int(hnsw["ef_construct"])
    return metadata


def _metadata_for_point(point: VectorPoint) -> dict[str, Any]:
    metadata: dict[str, Any] = {}
    for key, value in point.payload.items():
        if value is None:
            continue
        if isinstance(value, (list, tuple)):
            # Chroma metadata values are scalars.
            value = ",".join(str(v) for v in value)
        metadata[key] = value
    return metadata


def _combine(op: str, parts: list[dict[str, Any]]) -> dict[str, Any] | None:
    if not parts:
        return None
    if len(parts) == 1:
        return parts[0]
    return {op: parts}


def _positive(clause: FilterClause) -> dict[str, Any] | None:
    if isinstance(clause, ExactClause):
        return {clause.field: {"$eq": clause.value}}
    if isinstance(clause, AnyClause):
        return {clause.field: {"$in": list(clause.values)}}
    if isinstance(clause, RangeClause):
        bounds = [{clause.field: {f"${op}": value}} for op, value in clause.bounds().items()]
        return _combine("$and", bounds)
    return None


def _negative(clause: FilterClause) -> dict[str, Any] | None:
    if isinstance(clause, ExactClause):
        return {clause.field: {"$ne": clause.value}}
    if isinstance(clause, AnyClause):
        return {clause.field: {"$nin": list(clause.values)}}
    if isinstance(clause, RangeClause):
        inverse = {"gt": "$lte", "gte": "$lt", "lt": "$gte", "lte": "$gt"}
        bounds = [{clause.field: {inverse[op]: value}} for op, value in clause.bounds().items()]
        return _combine("$or", bounds)
    return None


def translate_filter(
    filter: QueryFilter | None,
) -> tuple[dict[str, Any] | None, dict[str, Any] | None]:
    """Translate a normalized filter into Chroma (where, where_document)."""
    if filter is None or filter.is_empty:
        return None, None

    where_parts: list[dict[str, Any]] = []
    document_parts: list[dict[str, Any]] = []

    for clause in filter.must:
        if isinstance(clause, TextClause):
            document_parts.append({"$contains": clause.text})
        elif (translated := _positive(clause)) is not None:
            where_parts.append(translated)

    should_where = [t for c in filter.should if (t := _positive(c)) is not None]
    should_docs = [{"$contains": c.text} for c in filter.should if isinstance(c, TextClause)]
    if should_where and should_docs:
        logger.warning("Text and payload clauses mixed in 'should'; ignoring the text clauses")
        should_docs = []
    if (combined := _combine("$or", should_where)) is not None:
        where_parts.append(combined)
    if (combined := _combine("$or", should_docs)) is not None:
        document_parts.append(combined)

    for clause in filter.must_not:
        if isinstance(clause, TextClause):
            document_parts.append({"$not_contains": clause.text})
        elif (translated := _negative(clause)) is not None:
            where_parts.append(translated)

    return _combine("$and", where_parts), _combine("$and", document_parts)
