from __future__ import annotations

from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from free_llm_router.core.time_utils import as_utc, utcnow
from free_llm_router.models.availability_snapshot import ModelAvailabilitySnapshot
from free_llm_router.models.free_model import FreeModel
from free_llm_router.schemas.params import SORT_KEYS
from free_llm_router.services.catalog_sync_service import snapshot_day
from free_llm_router.services.model_filters import (
    filter_models_by_use_case,
    model_to_dict,
    sort_models,
)

MAX_AVAILABILITY_DAYS = 90
AVAILABILITY_SORTS = (*SORT_KEYS, "name")


def clamp_days(value: str | None) -> int:
    if value is None:
        return MAX_AVAILABILITY_DAYS
    try:
        days = int(value.strip())
    except ValueError:
        return MAX_AVAILABILITY_DAYS
    return max(1, min(MAX_AVAILABILITY_DAYS, days))


def availability_dates(days: int, today: datetime | None = None) -> list[str]:
    end = snapshot_day(today or utcnow())
    return [(end - timedelta(days=offset)).strftime("%Y-%m-%d") for offset in range(days - 1, -1, -1)]


def get_model_availability(
    db: Session,
    days: int = MAX_AVAILABILITY_DAYS,
    use_cases: list[str] | None = None,
    sort: str | None = None,
    today: datetime | None = None,
) -> tuple[list[dict], list[str]]:
    """Daily availability matrix for every model seen in the window."""
    dates = availability_dates(days, today)
    start = snapshot_day(today or utcnow()) - timedelta(days=days - 1)

    snapshots = (
        db.query(ModelAvailabilitySnapshot)
        .filter(ModelAvailabilitySnapshot.snapshot_date >= start)
        .all()
    )
    seen: dict[str, set[str]] = {}
    for row in snapshots:
        if not row.is_available:
            continue
        seen.setdefault(row.model_id, set()).add(as_utc(row.snapshot_date).strftime("%Y-%m-%d"))
    if not seen:
        return [], dates

    rows = db.query(FreeModel).filter(FreeModel.id.in_(list(seen))).all()
    models = [model_to_dict(row) for row in rows]
    known = {model["id"] for model in models}
    models.extend({"id": model_id, "name": model_id} for model_id in seen if model_id not in known)

    if use_cases:
        models = filter_models_by_use_case(models, use_cases)
    if sort in SORT_KEYS and sort != "leastIssues":
        models = sort_models(models, sort)
    else:
        models.sort(key=lambda model: ((model.get("name") or model["id"]).lower(), model["id"]))

    result = []
    for model in models:
        available_days = seen.get(model["id"], set())
        result.append(
            {
                "modelId": model["id"],
                "modelName": model.get("name") or model["id"],
                "modality": model.get("modality"),
                "inputModalities": model.get("input_modalities"),
                "outputModalities": model.get("output_modalities"),
                "supportedParameters": model.get("supported_parameters"),
                "contextLength": model.get("context_length"),
                "maxCompletionTokens": model.get("max_completion_tokens"),
                "availability": {day: day in available_days for day in dates},
            }
        )
    return result, dates
