from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from free_llm_router.core.database import get_db
from free_llm_router.core.deps import require_api_key_only
from free_llm_router.core.response import error, ok, request_id_from_request
from free_llm_router.models.api_key import ApiKey
from free_llm_router.schemas.params import PreferencesUpdateRequest
from free_llm_router.services.api_key_service import ApiKeyError, get_preferences, save_preferences

router = APIRouter(prefix="/auth")


def _status_for(exc: ApiKeyError) -> int:
    return 404 if exc.code == "NOT_FOUND" else 400


@router.get("/preferences")
def get_preferences_api(
    request: Request,
    db: Session = Depends(get_db),
    api_key: ApiKey = Depends(require_api_key_only),
):
    request_id = request_id_from_request(request)
    api_key_id = request.query_params.get("apiKeyId") or api_key.id
    try:
        preferences = get_preferences(db, api_key_id=api_key_id, user_id=api_key.user_id)
    except ApiKeyError as exc:
        return error(exc.code, exc.message, request_id, status_code=_status_for(exc))
    return ok({"preferences": preferences.to_json()}, request_id)


@router.put("/preferences")
def save_preferences_api(
    payload: PreferencesUpdateRequest,
    request: Request,
    db: Session = Depends(get_db),
    api_key: ApiKey = Depends(require_api_key_only),
):
    request_id = request_id_from_request(request)
    try:
        preferences = save_preferences(
            db,
            api_key_id=payload.api_key_id,
            user_id=api_key.user_id,
            raw_preferences=payload.preferences,
        )
    except ApiKeyError as exc:
        return error(exc.code, exc.message, request_id, status_code=_status_for(exc))
    return ok({"preferences": preferences.to_json(), "message": "Preferences saved"}, request_id)
