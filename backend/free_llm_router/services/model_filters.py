"""Use-case filters and sort keys for the free model catalog.

Each use case and sort key is declared once in the criteria tables below.
The in-memory functions (``filter_models_by_use_case``, ``sort_models``)
and the SQL builders (``use_case_clauses``, ``sort_clauses``) are both
derived from those tables, so the two paths order and filter identically.

In-memory functions work on plain model dicts as produced by
``model_to_dict``: snake_case keys, list fields already
decoded, ``created_at`` as an aware datetime and an optional
``issue_count``.
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import ColumnElement, and_, func, or_

from free_llm_router.core.time_utils import as_utc
from free_llm_router.models.free_model import FreeModel
from free_llm_router.schemas.params import DEFAULT_SORT, SORT_KEYS, USE_CASES


def _load_list(raw: str | None) -> list | None:
    if not raw:
        return None
    try:
        value = json.loads(raw)
    except ValueError:
        return None
    return value if isinstance(value, list) else None


def model_to_dict(row: FreeModel) -> dict:
    return {
        "id": row.id,
        "name": row.name,
        "context_length": row.context_length,
        "max_completion_tokens": row.max_completion_tokens,
        "description": row.description,
        "modality": row.modality,
        "input_modalities": _load_list(row.input_modalities_json),
        "output_modalities": _load_list(row.output_modalities_json),
        "supported_parameters": _load_list(row.supported_parameters_json),
        "is_moderated": row.is_moderated,
        "is_active": row.is_active,
        "priority": row.priority,
        "last_seen_at": as_utc(row.last_seen_at),
        "created_at": as_utc(row.created_at),
    }


@dataclass(frozen=True)
class FieldEquals:
    field: str
    value: str

    def matches(self, model: dict) -> bool:
        return model.get(self.field) == self.value

    def clause(self) -> ColumnElement[bool]:
        return getattr(FreeModel, self.field) == self.value


def _json_array_has(column, value: str) -> ColumnElement[bool]:
    # list fields are stored by json.dumps with its default ", " separator, so
    # a member is its quoted token bounded by array delimiters on both sides
    token = json.dumps(value, ensure_ascii=False)
    return or_(
        column == f"[{token}]",
        column.startswith(f"[{token}, ", autoescape=True),
        column.contains(f", {token}, ", autoescape=True),
        column.endswith(f", {token}]", autoescape=True),
    )


@dataclass(frozen=True)
class ListContains:
    field: str
    values: tuple[str, ...]

    def matches(self, model: dict) -> bool:
        items = model.get(self.field)
        if not isinstance(items, list):
            return False
        return any(value in items for value in self.values)

    def clause(self) -> ColumnElement[bool]:
        column = getattr(FreeModel, f"{self.field}_json")
        return or_(*[_json_array_has(column, value) for value in self.values])


@dataclass(frozen=True)
class AtLeast:
    field: str
    minimum: int

    def matches(self, model: dict) -> bool:
        value = model.get(self.field)
        return value is not None and value >= self.minimum

    def clause(self) -> ColumnElement[bool]:
        return getattr(FreeModel, self.field) >= self.minimum


# A model satisfies a use case when any of its conditions holds.
USE_CASE_CRITERIA: dict[str, tuple[Any, ...]] = {
    "chat": (
        FieldEquals("modality", "text->text"),
        ListContains("output_modalities", ("text",)),
    ),
    "vision": (ListContains("input_modalities", ("image",)),),
    "tools": (ListContains("supported_parameters", ("tools",)),),
    "longContext": (AtLeast("context_length", 100_000),),
    "reasoning": (ListContains("supported_parameters", ("reasoning", "include_reasoning")),),
}


@dataclass(frozen=True)
class SortCriterion:
    kind: str
    field: str
    ascending: bool = False


SORT_CRITERIA: dict[str, SortCriterion] = {
    "contextLength": SortCriterion("number", "context_length"),
    "maxOutput": SortCriterion("number", "max_completion_tokens"),
    "capable": SortCriterion("count", "supported_parameters"),
    "leastIssues": SortCriterion("issues", "issue_count", ascending=True),
    "newest": SortCriterion("timestamp", "created_at"),
}

if set(USE_CASE_CRITERIA) != set(USE_CASES) or set(SORT_CRITERIA) != set(SORT_KEYS):
    raise RuntimeError("use-case and sort criteria are out of step with the request enums")


def matches_use_case(model: dict, use_case: str) -> bool:
    conditions = USE_CASE_CRITERIA.get(use_case)
    if not conditions:
        # unknown tags do not narrow the result
        return True
    return any(condition.matches(model) for condition in conditions)


def filter_models_by_use_case(models: Iterable[dict], use_cases: Sequence[str]) -> list[dict]:
    """Keep models that satisfy every requested use case; no tags keeps everything."""
    use_cases = [tag for tag in use_cases if tag in USE_CASE_CRITERIA]
    if not use_cases:
        return list(models)
    return [model for model in models if all(matches_use_case(model, tag) for tag in use_cases)]


def _timestamp_millis(value: datetime | None) -> float:
    value = as_utc(value)
    if value is None:
        return 0.0
    return value.timestamp() * 1000


def get_sort_value(model: dict, sort_key: str) -> float:
    criterion = SORT_CRITERIA.get(sort_key, SORT_CRITERIA[DEFAULT_SORT])
    if criterion.kind == "count":
        items = model.get(criterion.field)
        return float(len(items)) if isinstance(items, list) else 0.0
    if criterion.kind == "timestamp":
        return _timestamp_millis(model.get(criterion.field))
    return float(model.get(criterion.field) or 0)


def sort_models(models: Iterable[dict], sort_key: str) -> list[dict]:
    """Order by the sort key, then context length descending, then id."""
    criterion = SORT_CRITERIA.get(sort_key, SORT_CRITERIA[DEFAULT_SORT])

    def _key(model: dict):
        score = get_sort_value(model, sort_key)
        return (
            score if criterion.ascending else -score,
            -(model.get("context_length") or 0),
            model.get("id") or "",
        )

    return sorted(models, key=_key)


def use_case_clause(use_case: str) -> ColumnElement[bool]:
    return or_(*[condition.clause() for condition in USE_CASE_CRITERIA[use_case]])


def use_case_clauses(use_cases: Sequence[str]) -> ColumnElement[bool] | None:
    clauses = [use_case_clause(tag) for tag in use_cases if tag in USE_CASE_CRITERIA]
    if not clauses:
        return None
    return and_(*clauses)


def sort_clauses(sort_key: str, issue_count: ColumnElement | None = None) -> list:
    criterion = SORT_CRITERIA.get(sort_key, SORT_CRITERIA[DEFAULT_SORT])
    tie_breakers = [func.coalesce(FreeModel.context_length, 0).desc(), FreeModel.id.asc()]

    if criterion.kind == "count":
        primary = func.coalesce(FreeModel.supported_parameter_count, 0).desc()
    elif criterion.kind == "timestamp":
        primary = FreeModel.created_at.desc().nulls_last()
    elif criterion.kind == "issues":
        if issue_count is None:
            return tie_breakers
        primary = func.coalesce(issue_count, 0).asc()
    else:
        primary = func.coalesce(getattr(FreeModel, criterion.field), 0).desc()
    return [primary, *tie_breakers]
