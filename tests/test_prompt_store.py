from __future__ import annotations

import pytest

from research_engine.services.prompt_store import render_prompt


def test_render_prompt_substitutes_template_values():
    prompt = render_prompt("planner.user", query="Klimaschutz Deutschland", max_questions=4)
    assert "Thema: Klimaschutz Deutschland" in prompt
    assert "höchstens 4 Recherchefragen" in prompt


def test_render_prompt_joins_multiline_entries():
    prompt = render_prompt("planner.system")
    assert len(prompt.splitlines()) == 3


def test_render_prompt_raises_for_missing_value():
    with pytest.raises(KeyError, match="max_questions"):
        render_prompt("planner.user", query="x")


def test_render_prompt_raises_for_unknown_key():
    with pytest.raises(KeyError):
        render_prompt("missing.prompt.key")


def test_methodology_section_lists_counts():
    text = render_prompt(
        "synthesizer.methodology",
        question_count=3,
        source_count=7,
        web_count=4,
        vector_count=3,
        categories="Fakten, Web",
        citation_count=5,
        date="2026-01-01",
    )
    assert text.startswith("## Methodik")
    assert "Ausgewertete Quellen: 7 (Web: 4, Wissensdatenbanken: 3)" in text
