from __future__ import annotations

import re
from typing import Any

from research_engine.models.research import Citation, EvidenceSource

_CITATION_MARKER = re.compile(r"\[(\d+)\]")
_CITATION_GROUP = re.compile(r"\[(\s*\d+(?:\s*,\s*\d+)+\s*)\]")


class CitationTracker:
    """Assigns stable 1-based citation indices to sources within one response.

    The first time a source is cited it receives the next index; citing it
    again returns the same index.
    """

    def __init__(self) -> None:
        self._index_by_source: dict[str, int] = {}
        self._citations: list[Citation] = []

    def cite(self, source: EvidenceSource) -> int:
        existing = self._index_by_source.get(source.id)
        if existing is not None:
            return existing
        index = len(self._citations) + 1
        self._index_by_source[source.id] = index
        self._citations.append(
            Citation(
                index=index,
                source_id=source.id,
                cited_text=source.snippet,
                document_title=source.title,
                similarity_score=source.score,
                document_id=source.document_id,
                url=source.url,
            )
        )
        return index

    def resolve(self, index: int) -> dict[str, Any] | None:
        """Reference data for one citation marker, or None for an unknown index."""
        if index < 1 or index > len(self._citations):
            return None
        citation = self._citations[index - 1]
        resolved: dict[str, Any] = {
            "cited_text": citation.cited_text,
            "document_title": citation.document_title,
            "similarity_score": citation.similarity_score,
        }
        if citation.document_id:
            resolved["document_id"] = citation.document_id
        if citation.url:
            resolved["url"] = citation.url
        return resolved

    def citations(self) -> list[Citation]:
        return list(self._citations)

    def __len__(self) -> int:
        return len(self._citations)

    def used_indices(self, text: str) -> tuple[list[int], list[int]]:
        """Markers found in ``text``: (valid indices in order of appearance, invalid ones)."""
        valid: list[int] = []
        invalid: list[int] = []
        for match in _CITATION_MARKER.finditer(normalize_markers(text)):
            n = int(match.group(1))
            target = valid if 1 <= n <= len(self._citations) else invalid
            if n not in target:
                target.append(n)
        return valid, invalid


def normalize_markers(text: str) -> str:
    """Rewrite grouped markers like ``[1, 2]`` into ``[1][2]``."""

    def expand(match: re.Match[str]) -> str:
        numbers = [part.strip() for part in match.group(1).split(",") if part.strip()]
        return "".join(f"[{n}]" for n in numbers)

    return _CITATION_GROUP.sub(expand, text)
