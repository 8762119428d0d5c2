from __future__ import annotations

from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, Field

from research_engine.config import settings


class ResearchMode(StrEnum):
    NORMAL = "normal"
    DEEP = "deep"


class SourceOrigin(StrEnum):
    WEB = "web"
    VECTOR = "vector"


# --- Requests ---


class ResearchOptions(BaseModel):
    max_results: int = Field(default_factory=lambda: settings.search_max_results, ge=1, le=50)
    language: str = Field(default_factory=lambda: settings.search_default_language)
    include_summary: bool = True
    collections: list[str] | None = None  # collection names or system collection ids
    # Raw specs; malformed items are dropped by the filter builder, not rejected here.
    filters: dict[str, Any] | list[Any] | None = None
    subcategories: dict[str, Any] | None = None
    include_web: bool = True
    include_vector: bool = True


class ResearchRequest(BaseModel):
    query: str = Field(min_length=1)
    mode: ResearchMode = ResearchMode.NORMAL
    tenant_id: str | None = None
    options: ResearchOptions = Field(default_factory=ResearchOptions)


class ResearchQuestion(BaseModel):
    question: str
    category: str | None = None


# --- Evidence ---


class EvidenceSource(BaseModel):
    id: str
    origin: SourceOrigin
    collection: str | None = None  # None for web sources
    title: str = ""
    snippet: str = ""
    score: float = 0.0
    url: str | None = None
    document_id: str | None = None
    tenant: str | None = None
    category: str | None = None
    questions: list[str] = Field(default_factory=list)


class Citation(BaseModel):
    index: int
    source_id: str
    cited_text: str
    document_title: str
    similarity_score: float
    document_id: str | None = None
    url: str | None = None


# --- Responses ---


class ResultMetadata(BaseModel):
    duration_ms: int = 0
    counts: dict[str, int] = Field(default_factory=dict)
    degraded: dict[str, bool] = Field(
        default_factory=lambda: {"plan": False, "gather": False, "synthesize": False}
    )
    outcome: Literal["complete", "degraded", "failed"] = "complete"
    states: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
    unknown_collections: list[str] = Field(default_factory=list)
    skipped_collections: list[str] = Field(default_factory=list)  # tenant-scoped, no tenant id


class ResultEnvelope(BaseModel):
    status: Literal["success", "error"]
    query: str
    mode: ResearchMode
    research_questions: list[ResearchQuestion] = Field(default_factory=list)
    sources: list[EvidenceSource] = Field(default_factory=list)
    citations: list[Citation] = Field(default_factory=list)
    categories: dict[str, list[EvidenceSource]] = Field(default_factory=dict)
    summary: str | None = None
    dossier: str | None = None
    message: str | None = None
    metadata: ResultMetadata = Field(default_factory=ResultMetadata)
