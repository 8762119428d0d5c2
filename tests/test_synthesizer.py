from __future__ import annotations

import pytest

from research_engine.agents.synthesizer import DossierSynthesizer
from research_engine.errors import SynthesisError
from research_engine.llm_client import MessageResponse, TextBlock, Usage
from research_engine.models.research import EvidenceSource, ResearchQuestion, SourceOrigin
from research_engine.services.categorizer import SourceCategorizer, collection_label
from research_engine.services.citations import CitationTracker
from research_engine.services.collection_registry import load_registry


class _FakeMessages:
    def __init__(self, text: str = "", error: Exception | None = None):
        self.text = text
        self.error = error
        self.calls: list[dict] = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return MessageResponse(content=[TextBlock(type="text", text=self.text)], usage=Usage(100, 50))


class _FakeClient:
    def __init__(self, text: str = "", error: Exception | None = None):
        self.messages = _FakeMessages(text, error)


def _web(n: int, score: float = 0.9, category: str | None = None) -> EvidenceSource:
    return EvidenceSource(
        id=f"w{n}",
        origin=SourceOrigin.WEB,
        title=f"Web {n}",
        snippet=f"Webtext {n}",
        score=score,
        url=f"https://example.de/{n}",
        category=category,
    )


def _grundsatz(n: int, score: float = 0.5) -> EvidenceSource:
    return EvidenceSource(
        id=f"grundsatz_documents:p{n}",
        origin=SourceOrigin.VECTOR,
        collection="grundsatz_documents",
        title=f"Grundsatzprogramm {n}",
        snippet=f"Position {n}",
        score=score,
        tenant="SYSTEM",
    )


@pytest.mark.asyncio
async def test_summary_cites_top_sources_and_normalizes_markers():
    client = _FakeClient("Die Lage ist klar [1, 2].")
    synthesizer = DossierSynthesizer(model="m", client=client)
    tracker = CitationTracker()
    sources = [_web(n) for n in range(1, 8)]

    text = await synthesizer.summarize("Klimaschutz", sources, tracker)

    assert text == "Die Lage ist klar [1][2]."
    assert len(tracker) == 5
    prompt = client.messages.calls[0]["messages"][0]["content"]
    assert "[1] Web 1" in prompt
    assert "Web 6" not in prompt


@pytest.mark.asyncio
async def test_summary_failure_keeps_citations():
    synthesizer = DossierSynthesizer(model="m", client=_FakeClient(error=RuntimeError("rate limited")))
    tracker = CitationTracker()

    with pytest.raises(SynthesisError, match="rate limited"):
        await synthesizer.summarize("Klimaschutz", [_web(1), _web(2)], tracker)

    assert [c.source_id for c in tracker.citations()] == ["w1", "w2"]


@pytest.mark.asyncio
async def test_empty_synthesis_is_an_error():
    synthesizer = DossierSynthesizer(model="m", client=_FakeClient("   "))
    with pytest.raises(SynthesisError):
        await synthesizer.summarize("Klimaschutz", [], CitationTracker())


@pytest.mark.asyncio
async def test_dossier_puts_official_sources_first_and_appends_methodology():
    registry = load_registry(default_min_quality=0.3, default_recall_limit=50)
    categorizer = SourceCategorizer(collection_label(registry))
    sources = [_web(1, 0.95, "Fakten"), _web(2, 0.9, "Auswirkungen"), _grundsatz(1, 0.6)]
    categories = categorizer.categorize(sources)
    questions = [ResearchQuestion(question="Was sagen die Fakten?", category="Fakten")]
    client = _FakeClient("# Energiewende\n## Executive Summary\nText [1] und [2].")
    synthesizer = DossierSynthesizer(model="m", client=client)
    tracker = CitationTracker()

    dossier = await synthesizer.write_dossier("Energiewende", questions, sources, categories, tracker)

    assert tracker.citations()[0].source_id == "grundsatz_documents:p1"
    assert [c.source_id for c in tracker.citations()[1:]] == ["w1", "w2"]
    assert dossier.startswith("# Energiewende")
    assert "## Methodik" in dossier
    assert "Ausgewertete Quellen: 3 (Web: 2, Wissensdatenbanken: 1)" in dossier
    assert "Zitierte Quellen: 3" in dossier
    prompt = client.messages.calls[0]["messages"][0]["content"]
    assert "### Fakten" in prompt
    assert "- Was sagen die Fakten? (Fakten)" in prompt


def test_dossier_source_selection_respects_caps():
    synthesizer = DossierSynthesizer(model="m", client=_FakeClient())
    official = [_grundsatz(n, 0.9 - n / 100) for n in range(1, 5)]
    web = [_web(n, 0.5, "Fakten") for n in range(1, 9)]
    categories = {"Grüne Grundsatzprogramme": official, "Fakten": web}

    chosen_official, per_category = synthesizer.select_dossier_sources(official + web, categories)

    assert [s.id for s in chosen_official] == [s.id for s in official[:3]]
    assert [s.id for s in per_category["Grüne Grundsatzprogramme"]] == [official[3].id]
    assert len(per_category["Fakten"]) == 5
