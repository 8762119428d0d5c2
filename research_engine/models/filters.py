from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from pydantic import AliasChoices, BaseModel, Field


class MatchType(StrEnum):
    EXACT = "exact"
    ANY = "any"
    TEXT = "text"
    RANGE = "range"


class RangeOp(StrEnum):
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"


class FilterSpec(BaseModel):
    """One structured filter request as sent by callers."""

    field: str
    value: Any = None
    match_type: MatchType = Field(
        default=MatchType.EXACT, validation_alias=AliasChoices("match_type", "matchType")
    )
    range_op: RangeOp | None = Field(
        default=None, validation_alias=AliasChoices("range_op", "rangeOp")
    )


Scalar = str | int | float | bool


@dataclass(frozen=True, slots=True)
class ExactClause:
    field: str
    value: Scalar

    def to_dict(self) -> dict[str, Any]:
        return {"key": self.field, "match": {"value": self.value}}


@dataclass(frozen=True, slots=True)
class AnyClause:
    field: str
    values: tuple[Scalar, ...]

    def to_dict(self) -> dict[str, Any]:
        return {"key": self.field, "match": {"any": list(self.values)}}


@dataclass(frozen=True, slots=True)
class TextClause:
    field: str
    text: str

    def to_dict(self) -> dict[str, Any]:
        return {"key": self.field, "match": {"text": self.text}}


@dataclass(frozen=True, slots=True)
class RangeClause:
    field: str
    gt: float | None = None
    gte: float | None = None
    lt: float | None = None
    lte: float | None = None

    def bounds(self) -> dict[str, float]:
        raw = {"gt": self.gt, "gte": self.gte, "lt": self.lt, "lte": self.lte}
        return {op: value for op, value in raw.items() if value is not None}

    def to_dict(self) -> dict[str, Any]:
        return {"key": self.field, "range": self.bounds()}


FilterClause = ExactClause | AnyClause | TextClause | RangeClause


@dataclass(frozen=True, slots=True)
class QueryFilter:
    """Normalized vector-store filter: every clause set is a tuple of clauses."""

    must: tuple[FilterClause, ...] = ()
    should: tuple[FilterClause, ...] = ()
    must_not: tuple[FilterClause, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not (self.must or self.should or self.must_not)

    def clauses(self) -> tuple[FilterClause, ...]:
        return self.must + self.should + self.must_not

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        if self.must:
            out["must"] = [clause.to_dict() for clause in self.must]
        if self.should:
            out["should"] = [clause.to_dict() for clause in self.should]
        if self.must_not:
            out["must_not"] = [clause.to_dict() for clause in self.must_not]
        return out
