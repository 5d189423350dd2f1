from fastapi import APIRouter, BackgroundTasks, Depends, Request
from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from free_llm_router.core.config import settings
from free_llm_router.core.database import get_db
from free_llm_router.core.deps import get_sync_coordinator, require_api_key, require_api_key_only
from free_llm_router.core.response import error, ok, preflight, request_id_from_request
from free_llm_router.core.time_utils import isoformat_z, utcnow
from free_llm_router.models.api_key import ApiKey
from free_llm_router.schemas.feedback import FeedbackCreateRequest
from free_llm_router.schemas.params import parse_model_params
from free_llm_router.services.api_key_service import get_saved_preferences
from free_llm_router.services.catalog_service import (
    apply_request_filters,
    model_to_response,
    query_models,
)
from free_llm_router.services.catalog_sync_service import (
    Freshness,
    SyncCoordinator,
    check_models_freshness,
)
from free_llm_router.services.feedback_service import (
    FeedbackError,
    get_recent_feedback_counts,
    submit_feedback,
)

router = APIRouter(prefix="/models")


def _rate_limit_headers(request: Request) -> dict[str, str]:
    state = getattr(request.state, "rate_limit", None)
    return state.headers() if state else {}


def _stale_headers(freshness: Freshness) -> dict[str, str]:
    if freshness.is_fresh:
        return {}
    headers = {"X-Data-Stale": "true"}
    if freshness.age_seconds is not None:
        headers["X-Data-Age-Seconds"] = str(int(freshness.age_seconds))
    return headers


@router.get("/ids")
def list_model_ids_api(
    request: Request,
    db: Session = Depends(get_db),
    api_key: ApiKey = Depends(require_api_key),
    coordinator: SyncCoordinator = Depends(get_sync_coordinator),
):
    request_id = request_id_from_request(request)
    try:
        coordinator.ensure_fresh(db)
        params = parse_model_params(request.query_params, get_saved_preferences(api_key))
        user_id = api_key.user_id if params.my_reports else None
        models = query_models(db, params.use_cases, params.sort, params.time_range, user_id)
        counts = (
            get_recent_feedback_counts(db, params.time_range, user_id)
            if params.max_error_rate is not None
            else {}
        )
        models = apply_request_filters(models, counts, params)
        freshness = check_models_freshness(db)
    except SQLAlchemyError:
        logger.exception("Failed to list model ids (request {})", request_id)
        return error("INTERNAL_ERROR", "Failed to fetch models", request_id, status_code=500, cors=True)

    headers = {
        "Cache-Control": "private, max-age=60",
        **_rate_limit_headers(request),
        **_stale_headers(freshness),
    }
    ids = [model["id"] for model in models]
    return ok({"ids": ids, "count": len(ids)}, request_id, headers=headers, cors=True)


@router.get("/full")
def list_models_full_api(
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    api_key: ApiKey = Depends(require_api_key),
    coordinator: SyncCoordinator = Depends(get_sync_coordinator),
):
    request_id = request_id_from_request(request)
    try:
        freshness = check_models_freshness(db)
        if freshness.is_critically_stale:
            coordinator.ensure_fresh(db, threshold_seconds=settings.critical_stale_threshold_seconds)
            freshness = check_models_freshness(db)
        elif not freshness.is_fresh:
            logger.info("Serving stale catalog (age={}s), refreshing in background", freshness.age_seconds)
            background_tasks.add_task(coordinator.run)

        params = parse_model_params(request.query_params, get_saved_preferences(api_key))
        user_id = api_key.user_id if params.my_reports else None
        models = query_models(db, params.use_cases, params.sort, params.time_range, user_id)
        counts = get_recent_feedback_counts(db, params.time_range, user_id)
        models = apply_request_filters(models, counts, params)
    except SQLAlchemyError:
        logger.exception("Failed to list models (request {})", request_id)
        return error("INTERNAL_ERROR", "Failed to fetch models", request_id, status_code=500, cors=True)

    headers = {
        "Cache-Control": "private, max-age=60",
        **_rate_limit_headers(request),
        **_stale_headers(freshness),
    }
    data = {
        "models": [model_to_response(model) for model in models],
        "feedbackCounts": {model_id: item.to_dict() for model_id, item in counts.items()},
        "lastUpdated": isoformat_z(freshness.last_updated or utcnow()),
        "sort": params.sort,
        "count": len(models),
    }
    if params.use_cases:
        data["useCases"] = params.use_cases
    return ok(data, request_id, headers=headers, cors=True)


@router.post("/feedback")
def submit_feedback_api(
    payload: FeedbackCreateRequest,
    request: Request,
    db: Session = Depends(get_db),
    api_key: ApiKey = Depends(require_api_key_only),
):
    request_id = request_id_from_request(request)
    try:
        submit_feedback(
            db,
            model_id=payload.model_id,
            is_success=bool(payload.success),
            issue=payload.issue,
            details=payload.details,
            source=api_key.user_id,
            api_key_id=api_key.id,
            request_id=request_id,
        )
    except FeedbackError as exc:
        return error(exc.code, exc.message, request_id, status_code=400, cors=True)
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to store feedback (request {})", request_id)
        return error("INTERNAL_ERROR", "Failed to submit feedback", request_id, status_code=500, cors=True)
    return ok({"received": True}, request_id, cors=True)


@router.options("/{path:path}")
def models_preflight_api(path: str):
    return preflight()
