"""Build normalized vector-store filters from caller requests.

Every clause is validated against an allow-list of declared fields before it
reaches the vector store. Unknown fields and type mismatches are dropped
silently; malformed specs are logged and dropped.
"""
from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from research_engine.errors import FilterValidationError
from research_engine.models.filters import (
    AnyClause,
    ExactClause,
    FilterClause,
    FilterSpec,
    MatchType,
    QueryFilter,
    RangeClause,
    RangeOp,
    TextClause,
)
from research_engine.services.collection_registry import SystemCollectionProfile
from research_engine.services.logger import logger

SUBCATEGORY_FIELDS: tuple[str, ...] = (
    "primary_category",
    "content_type",
    "subcategories",
    "country",
    "region",
)

FilterRequest = Mapping[str, Any] | Sequence[FilterSpec | Mapping[str, Any]]


def _is_scalar(value: Any) -> bool:
    return isinstance(value, (str, int, float, bool))


def _is_numeric(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_sequence(value: Any) -> bool:
    return isinstance(value, (list, tuple)) and not isinstance(value, (str, bytes))


def parse_spec(raw: FilterSpec | Mapping[str, Any]) -> FilterSpec:
    """Coerce one raw filter spec, raising FilterValidationError when malformed."""
    if isinstance(raw, FilterSpec):
        return raw
    if not isinstance(raw, Mapping):
        raise FilterValidationError(f"Filter spec must be an object, got {type(raw).__name__}")
    try:
        return FilterSpec.model_validate(dict(raw))
    except PydanticValidationError as exc:
        raise FilterValidationError(f"Malformed filter spec {raw!r}: {exc.errors()}") from exc


def clause_from_spec(spec: FilterSpec) -> FilterClause | None:
    """Turn one spec into a typed clause; None when the value type does not fit."""
    value = spec.value
    if spec.match_type == MatchType.EXACT:
        return ExactClause(spec.field, value) if _is_scalar(value) else None
    if spec.match_type == MatchType.ANY:
        if not _is_sequence(value):
            return None
        values = tuple(item for item in value if _is_scalar(item))
        return AnyClause(spec.field, values) if values else None
    if spec.match_type == MatchType.TEXT:
        return TextClause(spec.field, value) if isinstance(value, str) and value.strip() else None
    if spec.match_type == MatchType.RANGE:
        if spec.range_op is None or not _is_numeric(value):
            return None
        return RangeClause(spec.field, **{spec.range_op.value: float(value)})
    return None


def _clause_from_flat_value(field: str, value: Any) -> FilterClause | None:
    if _is_sequence(value):
        values = tuple(item for item in value if _is_scalar(item))
        if not values:
            return None
        if len(values) == 1:
            return ExactClause(field, values[0])
        return AnyClause(field, values)
    if isinstance(value, Mapping):
        bounds: dict[str, float] = {}
        for op in RangeOp:
            bound = value.get(op.value)
            if _is_numeric(bound):
                bounds[op.value] = float(bound)
        return RangeClause(field, **bounds) if bounds else None
    if _is_scalar(value):
        return ExactClause(field, value)
    return None


def build_filter(request: FilterRequest | None, allowed_fields: Iterable[str]) -> QueryFilter | None:
    """Build a must-filter from a flat map or a list of filter specs.

    Flat maps are emitted in allow-list order, spec lists in request order.
    Returns None when no clause survives validation.
    """
    if not request:
        return None
    allowed = tuple(dict.fromkeys(allowed_fields))
    allowed_set = set(allowed)
    clauses: list[FilterClause] = []

    if isinstance(request, Mapping):
        for field in allowed:
            if field not in request:
                continue
            clause = _clause_from_flat_value(field, request[field])
            if clause is not None:
                clauses.append(clause)
    else:
        for raw in request:
            try:
                spec = parse_spec(raw)
            except FilterValidationError as exc:
                logger.warning(f"Dropping filter clause: {exc}")
                continue
            if spec.field not in allowed_set:
                continue
            clause = clause_from_spec(spec)
            if clause is not None:
                clauses.append(clause)

    if not clauses:
        return None
    return QueryFilter(must=tuple(clauses))


def merge_filters(*filters: QueryFilter | None) -> QueryFilter | None:
    """Concatenate clause sets; an all-empty merge means "no filter"."""
    must: list[FilterClause] = []
    should: list[FilterClause] = []
    must_not: list[FilterClause] = []
    for item in filters:
        if item is None:
            continue
        must.extend(item.must)
        should.extend(item.should)
        must_not.extend(item.must_not)
    merged = QueryFilter(must=tuple(must), should=tuple(should), must_not=tuple(must_not))
    return None if merged.is_empty else merged


def tenant_filter(tenant_field: str, tenant_id: str) -> QueryFilter:
    return QueryFilter(must=(ExactClause(tenant_field, tenant_id),))


def apply_default_filter(
    system: SystemCollectionProfile, existing: QueryFilter | None
) -> QueryFilter | None:
    """Append a system collection's default filter (e.g. one Landesverband)."""
    default = system.default_filter
    if default is None:
        return existing
    if isinstance(default.value, tuple):
        clause: FilterClause = AnyClause(default.field, default.value)
    else:
        clause = ExactClause(default.field, default.value)
    return merge_filters(existing, QueryFilter(must=(clause,)))


def build_subcategory_filter(
    subcategories: Mapping[str, Any] | None, allowed_fields: Iterable[str]
) -> QueryFilter | None:
    """Filter over the unified subcategory fields shared by system collections.

    Single values match exactly, multi-select lists match any of their values.
    """
    if not subcategories:
        return None
    allowed = set(allowed_fields)
    fields = [field for field in SUBCATEGORY_FIELDS if field in allowed]
    return build_filter(
        {field: subcategories[field] for field in fields if subcategories.get(field)},
        fields,
    )
