from __future__ import annotations

import json
import re
from typing import Any

from research_engine.agents.base import BaseAgent
from research_engine.config import settings
from research_engine.errors import PlanningError
from research_engine.models.research import ResearchMode, ResearchQuestion
from research_engine.services.logger import logger
from research_engine.services.prompt_store import render_prompt

_WHITESPACE = re.compile(r"\s+")


class ResearchPlanner(BaseAgent):
    """Turns a query into research questions.

    ``normal`` mode never calls the LLM. ``deep`` mode asks for up to
    ``max_questions`` questions and raises ``PlanningError`` when the answer
    is unusable; callers fall back to the original query.
    """

    name = "planner"

    def __init__(self, model: str | None = None, *, max_questions: int | None = None, **kwargs: Any):
        super().__init__(model or settings.planner_model or None, **kwargs)
        self.max_questions = max(int(max_questions or settings.max_research_questions), 1)

    async def plan(self, query: str, mode: ResearchMode) -> list[ResearchQuestion]:
        if mode == ResearchMode.NORMAL:
            return [ResearchQuestion(question=query)]

        try:
            raw = await self._complete(
                system=render_prompt("planner.system"),
                user=render_prompt("planner.user", query=query, max_questions=self.max_questions),
                max_tokens=1024,
                json_mode=True,
            )
        except Exception as e:
            raise PlanningError(f"planner call failed: {str(e) or type(e).__name__}") from e

        try:
            payload = self._extract_json_object(raw)
        except json.JSONDecodeError as e:
            raise PlanningError(f"planner returned invalid JSON: {e}") from e

        questions = self.parse_questions(payload.get("research_questions"))
        if not questions:
            raise PlanningError("planner returned no research questions")
        logger.info(f"Planned {len(questions)} research questions for '{query[:80]}'")
        return questions

    def parse_questions(self, items: Any) -> list[ResearchQuestion]:
        if not isinstance(items, list):
            return []
        seen: set[str] = set()
        questions: list[ResearchQuestion] = []
        for item in items:
            category: str | None = None
            if isinstance(item, str):
                text = item
            elif isinstance(item, dict) and isinstance(item.get("question"), str):
                text = item["question"]
                raw_category = item.get("category")
                if isinstance(raw_category, str) and raw_category.strip():
                    category = _WHITESPACE.sub(" ", raw_category).strip()
            else:
                continue
            text = _WHITESPACE.sub(" ", text).strip()
            key = text.lower()
            if not text or key in seen:
                continue
            seen.add(key)
            questions.append(ResearchQuestion(question=text, category=category))
            if len(questions) >= self.max_questions:
                break
        return questions
