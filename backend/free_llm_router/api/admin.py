from fastapi import APIRouter, Depends, Request
from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from free_llm_router.core.config import settings
from free_llm_router.core.database import get_admin_db
from free_llm_router.core.deps import get_sync_coordinator, require_admin_secret, require_refresh_key
from free_llm_router.core.response import error, ok, request_id_from_request
from free_llm_router.core.time_utils import isoformat_z
from free_llm_router.schemas.api_key import ApiKeyCreateRequest
from free_llm_router.schemas.params import parse_bool
from free_llm_router.services.api_key_service import ApiKeyError, create_api_key
from free_llm_router.services.catalog_sync_service import (
    SyncCoordinator,
    SyncResult,
    check_models_freshness,
)
from free_llm_router.services.cleanup_service import cleanup_old_data

router = APIRouter()


def _sync_response(result: SyncResult, request_id: str):
    if result.skipped:
        return error("SYNC_IN_PROGRESS", "Sync already in progress", request_id, status_code=409)
    if result.error:
        return error("UPSTREAM_ERROR", result.error, request_id, status_code=500)
    return ok({"success": True, **result.to_dict()}, request_id)


@router.post("/refresh", dependencies=[Depends(require_refresh_key)])
def refresh_models_api(
    request: Request,
    coordinator: SyncCoordinator = Depends(get_sync_coordinator),
):
    request_id = request_id_from_request(request)
    return _sync_response(coordinator.run(), request_id)


@router.post("/admin/sync-models", dependencies=[Depends(require_admin_secret)])
def admin_sync_models_api(
    request: Request,
    db: Session = Depends(get_admin_db),
    coordinator: SyncCoordinator = Depends(get_sync_coordinator),
):
    request_id = request_id_from_request(request)
    force = parse_bool(request.query_params.get("force")) is True
    if not force:
        freshness = check_models_freshness(db)
        if freshness.age_seconds is not None and freshness.age_seconds < settings.admin_sync_fresh_seconds:
            return ok(
                {
                    "success": True,
                    "skipped": True,
                    "reason": "Data is fresh",
                    "lastUpdated": isoformat_z(freshness.last_updated),
                    "ageSeconds": int(freshness.age_seconds),
                },
                request_id,
            )
    return _sync_response(coordinator.run(), request_id)


@router.post("/admin/cleanup", dependencies=[Depends(require_admin_secret)])
def admin_cleanup_api(request: Request, db: Session = Depends(get_admin_db)):
    request_id = request_id_from_request(request)
    try:
        result = cleanup_old_data(db)
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Cleanup failed (request {})", request_id)
        return error("INTERNAL_ERROR", "Cleanup failed", request_id, status_code=500)
    return ok(result.to_dict(), request_id)


@router.post("/admin/api-keys", dependencies=[Depends(require_admin_secret)])
def admin_create_api_key_api(
    payload: ApiKeyCreateRequest,
    request: Request,
    db: Session = Depends(get_admin_db),
):
    request_id = request_id_from_request(request)
    try:
        created = create_api_key(
            db,
            user_id=payload.user_id,
            name=payload.name,
            expires_in_days=payload.expires_in_days,
            rate_limit_max=payload.rate_limit_max,
            rate_limit_time_window=payload.rate_limit_time_window,
        )
    except ApiKeyError as exc:
        return error(exc.code, exc.message, request_id, status_code=400)
    row = created.row
    return ok(
        {
            "id": row.id,
            "key": created.raw_key,
            "start": row.start,
            "prefix": row.prefix,
            "userId": row.user_id,
            "name": row.name,
            "rateLimitMax": row.rate_limit_max,
            "rateLimitTimeWindow": row.rate_limit_time_window,
            "expiresAt": isoformat_z(row.expires_at),
            "createdAt": isoformat_z(row.created_at),
        },
        request_id,
        status_code=201,
    )
