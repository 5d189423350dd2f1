from fastapi import APIRouter, Depends, Request
from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from free_llm_router.core.database import get_db
from free_llm_router.core.deps import optional_api_key
from free_llm_router.core.response import error, ok, request_id_from_request
from free_llm_router.core.time_utils import isoformat_z, utcnow
from free_llm_router.models.api_key import ApiKey
from free_llm_router.schemas.params import (
    parse_bool,
    validate_max_error_rate,
    validate_sort,
    validate_time_range,
    validate_top_n,
    validate_use_cases,
)
from free_llm_router.services.feedback_service import (
    HealthFilterOptions,
    get_feedback_counts_by_range,
    get_feedback_timeline,
)

router = APIRouter()


def _issue_to_dict(summary: dict) -> dict:
    return {
        "modelId": summary["id"],
        "modelName": summary.get("name") or summary["id"],
        "rateLimited": summary["rate_limited"],
        "unavailable": summary["unavailable"],
        "error": summary["error"],
        "total": summary["total"],
        "successCount": summary["success_count"],
        "errorRate": summary["error_rate"],
        "modality": summary.get("modality"),
        "inputModalities": summary.get("input_modalities"),
        "outputModalities": summary.get("output_modalities"),
        "supportedParameters": summary.get("supported_parameters"),
        "contextLength": summary.get("context_length"),
        "maxCompletionTokens": summary.get("max_completion_tokens"),
    }


@router.get("/health")
def model_health_api(
    request: Request,
    db: Session = Depends(get_db),
    api_key: ApiKey | None = Depends(optional_api_key),
):
    request_id = request_id_from_request(request)
    query = request.query_params
    time_range = validate_time_range(query.get("range"), allow_all=False)
    my_reports = parse_bool(query.get("myReports") or query.get("userOnly")) is True
    # an invalid or missing key falls back to community data
    user_id = api_key.user_id if my_reports and api_key else None
    options = HealthFilterOptions(
        time_range=time_range,
        user_id=user_id,
        use_cases=validate_use_cases(query.get("useCases")),
        sort=validate_sort(query.get("sort")) if query.get("sort") else None,
        top_n=validate_top_n(query.get("topN")),
        max_error_rate=validate_max_error_rate(query.get("maxErrorRate")),
    )

    try:
        issues = get_feedback_counts_by_range(db, options)
        timeline = get_feedback_timeline(db, time_range, user_id, [issue["id"] for issue in issues])
    except SQLAlchemyError:
        logger.exception("Failed to load feedback health (request {})", request_id)
        return error("INTERNAL_ERROR", "Failed to fetch health data", request_id, status_code=500, cors=True)

    return ok(
        {
            "issues": [_issue_to_dict(issue) for issue in issues],
            "timeline": timeline,
            "range": time_range,
            "lastUpdated": isoformat_z(utcnow()),
            "count": len(issues),
        },
        request_id,
        headers={"Cache-Control": "private, max-age=60" if user_id else "public, max-age=60"},
        cors=True,
    )
