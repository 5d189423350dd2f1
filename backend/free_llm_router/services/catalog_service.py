from __future__ import annotations

from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from free_llm_router.core.time_utils import isoformat_z
from free_llm_router.models.free_model import FreeModel
from free_llm_router.models.model_feedback import ModelFeedback
from free_llm_router.schemas.params import DEFAULT_SORT, ISSUE_TYPES, ModelParams
from free_llm_router.services.feedback_service import (
    FeedbackCounts,
    get_recent_feedback_counts,
    window_start,
)
from free_llm_router.services.model_filters import (
    filter_models_by_use_case,
    model_to_dict,
    sort_clauses,
    sort_models,
    use_case_clauses,
)


def model_to_response(model: dict) -> dict:
    return {
        "id": model["id"],
        "name": model.get("name"),
        "contextLength": model.get("context_length"),
        "maxCompletionTokens": model.get("max_completion_tokens"),
        "description": model.get("description"),
        "modality": model.get("modality"),
        "inputModalities": model.get("input_modalities"),
        "outputModalities": model.get("output_modalities"),
        "supportedParameters": model.get("supported_parameters"),
        "isModerated": model.get("is_moderated"),
        "createdAt": isoformat_z(model.get("created_at")),
        "lastSeenAt": isoformat_z(model.get("last_seen_at")),
    }


def get_active_models(db: Session) -> list[dict]:
    rows = db.query(FreeModel).filter(FreeModel.is_active.is_(True)).order_by(FreeModel.id).all()
    return [model_to_dict(row) for row in rows]


def issue_count_subquery(time_range: str, user_id: str | None = None, now: datetime | None = None):
    query = select(
        ModelFeedback.model_id.label("model_id"),
        func.count().label("issue_count"),
    ).where(ModelFeedback.is_success.is_(False), ModelFeedback.issue.in_(ISSUE_TYPES))
    since = window_start(time_range, now)
    if since is not None:
        query = query.where(ModelFeedback.created_at >= since)
    if user_id:
        query = query.where(ModelFeedback.source == user_id)
    return query.group_by(ModelFeedback.model_id).subquery()


def query_models(
    db: Session,
    use_cases: list[str],
    sort: str = DEFAULT_SORT,
    time_range: str = "30m",
    user_id: str | None = None,
    now: datetime | None = None,
) -> list[dict]:
    """Active models filtered and ordered by the database."""
    query = db.query(FreeModel).filter(FreeModel.is_active.is_(True))
    where = use_case_clauses(use_cases)
    if where is not None:
        query = query.filter(where)

    if sort != "leastIssues":
        rows = query.order_by(*sort_clauses(sort)).all()
        return [model_to_dict(row) for row in rows]

    issues = issue_count_subquery(time_range, user_id, now)
    rows = (
        query.outerjoin(issues, issues.c.model_id == FreeModel.id)
        .add_columns(issues.c.issue_count)
        .order_by(*sort_clauses(sort, issues.c.issue_count))
        .all()
    )
    models = []
    for row, issue_count in rows:
        model = model_to_dict(row)
        model["issue_count"] = issue_count or 0
        models.append(model)
    return models


def attach_issue_counts(models: list[dict], counts: dict[str, FeedbackCounts]) -> list[dict]:
    for model in models:
        item = counts.get(model["id"])
        model["issue_count"] = item.issue_total if item else 0
    return models


def get_filtered_models(
    db: Session,
    use_cases: list[str],
    sort: str = DEFAULT_SORT,
    max_error_rate: float | None = None,
    time_range: str = "30m",
    user_id: str | None = None,
    now: datetime | None = None,
) -> tuple[list[dict], dict[str, FeedbackCounts]]:
    """Same result as ``query_models`` but filtered and sorted in Python."""
    counts = get_recent_feedback_counts(db, time_range, user_id, now)
    models = attach_issue_counts(get_active_models(db), counts)
    models = filter_models_by_use_case(models, use_cases)
    models = sort_models(models, sort)
    if max_error_rate is not None:
        models = filter_by_error_rate(models, counts, max_error_rate)
    return models, counts


def filter_by_error_rate(
    models: list[dict],
    counts: dict[str, FeedbackCounts],
    max_error_rate: float,
) -> list[dict]:
    # models without any reports count as 0%
    return [
        model
        for model in models
        if (counts[model["id"]].error_rate if model["id"] in counts else 0) <= max_error_rate
    ]


def apply_request_filters(
    models: list[dict],
    counts: dict[str, FeedbackCounts],
    params: ModelParams,
) -> list[dict]:
    if params.exclude_model_ids:
        excluded = set(params.exclude_model_ids)
        models = [model for model in models if model["id"] not in excluded]
    if params.max_error_rate is not None:
        models = filter_by_error_rate(models, counts, params.max_error_rate)
    if params.top_n:
        models = models[: params.top_n]
    return models
