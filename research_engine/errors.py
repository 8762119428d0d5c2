"""Error taxonomy of the research engine.

Only ``ConfigurationError`` is allowed to escape to callers, and only at
startup when the collection registry is built. Every other error is recovered
inside the pipeline and surfaces as a degraded flag on the result envelope.
"""
from __future__ import annotations


class ResearchEngineError(Exception):
    """Base class for all engine errors."""


class ConfigurationError(ResearchEngineError):
    """Unknown collection, preset or profile reference in the registry."""


class FilterValidationError(ResearchEngineError):
    """A filter spec is malformed; the offending clause is dropped."""


class PlanningError(ResearchEngineError):
    """Question planning failed; the pipeline falls back to the original query."""


class GatherError(ResearchEngineError):
    """One gather task (question x source type) failed."""

    def __init__(self, message: str, *, source_type: str, question: str | None = None):
        super().__init__(message)
        self.source_type = source_type
        self.question = question


class SynthesisError(ResearchEngineError):
    """The generative synthesis call failed or returned nothing usable."""
