from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import StrEnum
from types import MappingProxyType
from typing import Mapping

from research_engine.models.research import EvidenceSource


class ResearchState(StrEnum):
    START = "start"
    PLAN = "plan"
    GATHER = "gather"
    MERGE = "merge"
    CATEGORIZE = "categorize"
    SYNTHESIZE = "synthesize"
    DONE = "done"
    ERROR = "error"


class SourceType(StrEnum):
    WEB = "web"
    VECTOR = "vector"


TRANSITIONS: Mapping[ResearchState, frozenset[ResearchState]] = MappingProxyType(
    {
        ResearchState.START: frozenset({ResearchState.PLAN}),
        ResearchState.PLAN: frozenset({ResearchState.GATHER}),
        ResearchState.GATHER: frozenset({ResearchState.MERGE}),
        ResearchState.MERGE: frozenset({ResearchState.CATEGORIZE}),
        ResearchState.CATEGORIZE: frozenset(
            {ResearchState.SYNTHESIZE, ResearchState.DONE, ResearchState.ERROR}
        ),
        ResearchState.SYNTHESIZE: frozenset({ResearchState.DONE, ResearchState.ERROR}),
        ResearchState.DONE: frozenset(),
        ResearchState.ERROR: frozenset(),
    }
)

TERMINAL_STATES = frozenset({ResearchState.DONE, ResearchState.ERROR})


class InvalidTransition(RuntimeError):
    pass


def terminal_state(*, source_count: int, has_text: bool) -> ResearchState:
    """ERROR only when there is no evidence and no synthesized text at all."""
    if source_count == 0 and not has_text:
        return ResearchState.ERROR
    return ResearchState.DONE


@dataclass(slots=True)
class GatherOutcome:
    """Result of one gather task; combined only at the fan-in barrier."""

    question_index: int
    source_type: SourceType
    sources: list[EvidenceSource] = field(default_factory=list)
    error: str | None = None
    # Partial failures: the task still returned sources.
    partial_errors: list[str] = field(default_factory=list)
    unknown_collections: list[str] = field(default_factory=list)
    skipped_collections: list[str] = field(default_factory=list)

    @property
    def failed(self) -> bool:
        return self.error is not None


@dataclass(slots=True)
class ResearchRun:
    """Per-request state machine. Never shared between requests."""

    request_id: str
    state: ResearchState = ResearchState.START
    history: list[ResearchState] = field(default_factory=lambda: [ResearchState.START])
    degraded: dict[str, bool] = field(
        default_factory=lambda: {"plan": False, "gather": False, "synthesize": False}
    )
    counts: dict[str, int] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)
    started_at: float = field(default_factory=time.monotonic)

    def advance(self, next_state: ResearchState) -> None:
        if next_state not in TRANSITIONS[self.state]:
            raise InvalidTransition(f"{self.state.value} -> {next_state.value}")
        self.state = next_state
        self.history.append(next_state)

    def mark_degraded(self, stage: str, reason: str) -> None:
        self.degraded[stage] = True
        self.errors.append(f"{stage}: {reason}")

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def duration_ms(self) -> int:
        return int((time.monotonic() - self.started_at) * 1000)

    def outcome(self) -> str:
        if self.state == ResearchState.ERROR:
            return "failed"
        return "degraded" if any(self.degraded.values()) else "complete"

