from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from free_llm_router.core.database import get_db
from free_llm_router.core.deps import require_api_key_only
from free_llm_router.core.response import error, ok, request_id_from_request
from free_llm_router.models.api_key import ApiKey
from free_llm_router.services.api_key_service import get_rate_limit_status
from free_llm_router.services.history_service import (
    HISTORY_TYPES,
    get_feedback_history,
    get_request_history,
    parse_page,
)

router = APIRouter(prefix="/auth")


@router.get("/history")
def history_api(
    request: Request,
    db: Session = Depends(get_db),
    api_key: ApiKey = Depends(require_api_key_only),
):
    request_id = request_id_from_request(request)
    params = request.query_params
    history_type = params.get("type") or "requests"
    if history_type not in HISTORY_TYPES:
        return error("VALIDATION_ERROR", "Invalid type parameter", request_id)

    page = parse_page(params.get("page"), params.get("limit"))
    if history_type == "requests":
        data = get_request_history(db, user_id=api_key.user_id, page=page)
    else:
        data = get_feedback_history(db, user_id=api_key.user_id, page=page)
    return ok(data, request_id)


@router.get("/rate-limit")
def rate_limit_api(request: Request, api_key: ApiKey = Depends(require_api_key_only)):
    request_id = request_id_from_request(request)
    return ok(get_rate_limit_status(api_key, request.app.state.rate_limiter), request_id)
