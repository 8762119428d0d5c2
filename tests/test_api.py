"""Tests for API routes."""
import pytest

from research_engine.models.filters import AnyClause, ExactClause
from research_engine.models.research import (
    EvidenceSource,
    ResearchMode,
    ResultEnvelope,
    SourceOrigin,
)
from research_engine.services.filter_builder import build_filter


class _FakeOrchestrator:
    def __init__(self):
        self.calls = []

    async def run_research(self, query, mode, options, tenant_id=None):
        self.calls.append({"query": query, "mode": mode, "options": options, "tenant_id": tenant_id})
        source = EvidenceSource(id="w1", origin=SourceOrigin.WEB, url="https://gruene.de", score=0.9)
        return ResultEnvelope(
            status="success",
            query=query,
            mode=mode,
            sources=[source],
            categories={"sources": [source]},
            summary="Zusammenfassung",
        )


@pytest.fixture
def orchestrator():
    return _FakeOrchestrator()


@pytest.fixture
def app(orchestrator):
    from research_engine.agents.orchestrator import get_orchestrator
    from research_engine.main import app

    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
def client(app):
    from fastapi.testclient import TestClient
    return TestClient(app)


def test_health(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert data["service"] == "research-engine"


def test_research_returns_envelope(client, orchestrator):
    response = client.post(
        "/api/research",
        json={
            "query": "Klimaschutz Deutschland",
            "mode": "deep",
            "tenant_id": "user-1",
            "options": {"max_results": 5, "collections": ["grundsatz-system"]},
        },
    )

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "success"
    assert data["categories"]["sources"][0]["url"] == "https://gruene.de"
    assert data["metadata"]["degraded"] == {"plan": False, "gather": False, "synthesize": False}
    call = orchestrator.calls[0]
    assert call["mode"] == ResearchMode.DEEP
    assert call["tenant_id"] == "user-1"
    assert call["options"].max_results == 5
    assert call["options"].collections == ["grundsatz-system"]


def test_research_rejects_empty_query(client, orchestrator):
    response = client.post("/api/research", json={"query": ""})
    assert response.status_code == 422
    assert orchestrator.calls == []


def test_research_accepts_filter_spec_lists(client, orchestrator):
    response = client.post(
        "/api/research",
        json={
            "query": "Tempolimit",
            "options": {
                "filters": [{"field": "primary_category", "value": "verkehr", "match_type": "exact"}]
            },
        },
    )
    assert response.status_code == 200
    filters = orchestrator.calls[0]["options"].filters
    assert filters[0]["field"] == "primary_category"


def test_list_collections(client):
    response = client.get("/api/collections")
    assert response.status_code == 200
    data = response.json()
    system_ids = [s["id"] for s in data["system_collections"]]
    assert "grundsatz-system" in system_ids
    assert data["default_collection_ids"] == [
        "grundsatz-system",
        "bundestagsfraktion-system",
        "gruene-de-system",
    ]
    documents = next(c for c in data["collections"] if c["name"] == "documents")
    assert documents["tenant_scoped"] is True
    assert "user_id" not in documents["filterable_fields"]


def test_research_accepts_camel_case_filter_specs(client, orchestrator):
    response = client.post(
        "/api/research",
        json={
            "query": "Social Media Beispiele",
            "options": {
                "filters": [{"field": "platform", "value": ["instagram", "x"], "matchType": "any"}]
            },
        },
    )

    assert response.status_code == 200
    built = build_filter(orchestrator.calls[0]["options"].filters, ["platform"])
    assert built.must == (AnyClause("platform", ("instagram", "x")),)


def test_research_drops_malformed_filter_spec_instead_of_rejecting(client, orchestrator):
    response = client.post(
        "/api/research",
        json={
            "query": "Social Media Beispiele",
            "options": {
                "filters": [
                    {"field": "platform", "value": "x", "match_type": "fuzzy"},
                    {"field": "platform", "value": "ok"},
                ]
            },
        },
    )

    assert response.status_code == 200
    assert response.json()["status"] == "success"
    built = build_filter(orchestrator.calls[0]["options"].filters, ["platform"])
    assert built.must == (ExactClause("platform", "ok"),)
