from __future__ import annotations

import pytest

from research_engine.errors import GatherError
from research_engine.models.filters import ExactClause
from research_engine.models.research import ResearchQuestion, SourceOrigin
from research_engine.services.collection_registry import load_registry
from research_engine.services.limits import BackendLimiter
from research_engine.services.vector_gatherer import VectorGatherer
from research_engine.services.vector_store import VectorHit


class _FakeEmbedder:
    def __init__(self):
        self.calls = 0

    async def embed_text(self, text: str) -> list[float]:
        self.calls += 1
        return [float(len(text)), 1.0]

    async def embed_texts(self, texts: list[str]) -> list[list[float]]:
        return [await self.embed_text(t) for t in texts]


class _FakeStore:
    def __init__(self, hits: dict[str, list[VectorHit]] | None = None, failing: set[str] | None = None):
        self.hits = hits or {}
        self.failing = failing or set()
        self.calls: list[dict] = []

    async def query(self, collection, vector, filter, limit):
        self.calls.append({"collection": collection, "vector": vector, "filter": filter, "limit": limit})
        if collection in self.failing:
            raise RuntimeError(f"{collection} unavailable")
        return list(self.hits.get(collection, []))[:limit]

    async def ensure_collection(self, name, index_config):
        return None

    async def upsert(self, collection, points):
        return len(points)


def _gatherer(store: _FakeStore, embedder: _FakeEmbedder | None = None, **kwargs) -> VectorGatherer:
    registry = load_registry(default_min_quality=0.3, default_recall_limit=50)
    limiter = BackendLimiter({"vector": 4}, {"vector": 5.0})
    return VectorGatherer(registry, store, embedder or _FakeEmbedder(), limiter=limiter, **kwargs)


QUESTION = ResearchQuestion(question="Wie stehen die Grünen zum Tempolimit?", category="Positionen")


@pytest.mark.asyncio
async def test_system_collection_queries_only_its_collection_without_tenant_clause():
    store = _FakeStore(
        {
            "grundsatz_documents": [
                VectorHit(id="p1", score=0.9, payload={"title": "Grundsatzprogramm 2020"}, text="Tempo 130"),
                VectorHit(id="p2", score=0.2, payload={"title": "irrelevant"}, text="x"),
            ]
        }
    )

    result = await _gatherer(store).gather(QUESTION, tenant_id="user-1", collections=["grundsatz-system"])

    assert [c["collection"] for c in store.calls] == ["grundsatz_documents"]
    assert store.calls[0]["filter"] is None
    assert store.calls[0]["limit"] == 60
    assert len(result.sources) == 1
    source = result.sources[0]
    assert source.id == "grundsatz_documents:p1"
    assert source.origin == SourceOrigin.VECTOR
    assert source.collection == "grundsatz_documents"
    assert source.tenant == "SYSTEM"
    assert source.title == "Grundsatzprogramm 2020"
    assert source.snippet == "Tempo 130"
    assert source.category == "Positionen"


@pytest.mark.asyncio
async def test_tenant_collection_gets_tenant_clause_and_drops_caller_tenant_filter():
    store = _FakeStore({"documents": [VectorHit(id="d1", score=0.7, payload={"user_id": "user-1"})]})

    result = await _gatherer(store).gather(
        QUESTION,
        tenant_id="user-1",
        collections=["documents"],
        filters={"document_type": "pdf", "user_id": "someone-else"},
    )

    assert store.calls[0]["filter"].must == (
        ExactClause("user_id", "user-1"),
        ExactClause("document_type", "pdf"),
    )
    assert result.sources[0].tenant == "user-1"


@pytest.mark.asyncio
async def test_tenant_collection_is_skipped_without_tenant_id():
    store = _FakeStore()

    result = await _gatherer(store).gather(QUESTION, collections=["documents", "grundsatz-system"])

    assert [c["collection"] for c in store.calls] == ["grundsatz_documents"]
    assert result.skipped_collections == ["documents"]


@pytest.mark.asyncio
async def test_unknown_collections_are_reported_not_queried():
    store = _FakeStore()

    result = await _gatherer(store).gather(QUESTION, collections=["nope", "grundsatz-system"])

    assert result.unknown_collections == ["nope"]
    assert [c["collection"] for c in store.calls] == ["grundsatz_documents"]


@pytest.mark.asyncio
async def test_default_collections_and_single_embedding():
    store = _FakeStore()
    embedder = _FakeEmbedder()

    await _gatherer(store, embedder).gather(QUESTION)

    assert [c["collection"] for c in store.calls] == [
        "grundsatz_documents",
        "bundestag_content",
        "gruene_de_documents",
    ]
    assert embedder.calls == 1
    assert all(c["vector"] == store.calls[0]["vector"] for c in store.calls)


@pytest.mark.asyncio
async def test_system_default_filter_is_merged_with_caller_filters():
    store = _FakeStore()

    await _gatherer(store).gather(
        QUESTION,
        collections=["hamburg-system"],
        filters={"primary_category": "verkehr", "landesverband": "BE"},
    )

    assert store.calls[0]["collection"] == "landesverbaende_documents"
    assert store.calls[0]["filter"].must == (
        ExactClause("primary_category", "verkehr"),
        ExactClause("landesverband", "HH"),
    )


@pytest.mark.asyncio
async def test_merge_is_a_stable_sort_by_score():
    store = _FakeStore(
        {
            "grundsatz_documents": [
                VectorHit(id="a", score=0.8),
                VectorHit(id="b", score=0.5),
            ],
            "bundestag_content": [
                VectorHit(id="c", score=0.8),
                VectorHit(id="d", score=0.9),
            ],
        }
    )

    result = await _gatherer(store).gather(
        QUESTION, collections=["grundsatz-system", "bundestagsfraktion-system"]
    )

    assert [s.id for s in result.sources] == [
        "bundestag_content:d",
        "grundsatz_documents:a",
        "bundestag_content:c",
        "grundsatz_documents:b",
    ]


@pytest.mark.asyncio
async def test_results_are_truncated_to_max_results():
    store = _FakeStore({"grundsatz_documents": [VectorHit(id=f"p{i}", score=0.9) for i in range(10)]})

    result = await _gatherer(store, max_results=3).gather(QUESTION, collections=["grundsatz-system"])

    assert len(result.sources) == 3


@pytest.mark.asyncio
async def test_one_failing_collection_is_isolated():
    store = _FakeStore(
        {"gruene_de_documents": [VectorHit(id="g1", score=0.6)]},
        failing={"grundsatz_documents"},
    )

    result = await _gatherer(store).gather(
        QUESTION, collections=["grundsatz-system", "gruene-de-system"]
    )

    assert [s.id for s in result.sources] == ["gruene_de_documents:g1"]
    assert result.errors == ["grundsatz_documents: grundsatz_documents unavailable"]


@pytest.mark.asyncio
async def test_all_collections_failing_raises_gather_error():
    store = _FakeStore(failing={"grundsatz_documents", "bundestag_content"})

    with pytest.raises(GatherError) as excinfo:
        await _gatherer(store).gather(
            QUESTION, collections=["grundsatz-system", "bundestagsfraktion-system"]
        )

    assert excinfo.value.source_type == "vector"


@pytest.mark.asyncio
async def test_collection_behind_a_system_profile_is_not_queried_by_name():
    store = _FakeStore({"landesverbaende_documents": [VectorHit(id="l1", score=0.9, payload={})]})

    result = await _gatherer(store).gather(QUESTION, collections=["landesverbaende_documents"])

    assert result.unknown_collections == ["landesverbaende_documents"]
    assert store.calls == []
    assert result.sources == []


@pytest.mark.asyncio
async def test_system_profile_default_filter_applies_to_its_collection():
    store = _FakeStore({"landesverbaende_documents": [VectorHit(id="l1", score=0.9, payload={})]})

    result = await _gatherer(store).gather(QUESTION, collections=["hamburg-system"])

    assert store.calls[0]["filter"].must == (ExactClause("landesverband", "HH"),)
    assert result.sources[0].tenant == "SYSTEM"
