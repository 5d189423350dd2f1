from fastapi import Depends, Request
from sqlalchemy.orm import Session

from free_llm_router.core.config import settings
from free_llm_router.core.database import get_db
from free_llm_router.core.ratelimit import RateLimiter
from free_llm_router.core.response import ApiError
from free_llm_router.core.security import secrets_match
from free_llm_router.models.api_key import ApiKey
from free_llm_router.services.api_key_service import (
    ApiKeyError,
    rate_limit_bucket,
    rate_limit_policy,
    verify_api_key,
)
from free_llm_router.services.catalog_sync_service import SyncCoordinator


def _bearer_key(request: Request) -> str:
    header = request.headers.get("Authorization")
    if not header:
        raise ApiError(401, "MISSING_AUTH", "Missing Authorization header")
    if not header.startswith("Bearer "):
        raise ApiError(401, "INVALID_FORMAT", "Invalid Authorization format. Use: Bearer <api-key>")
    raw_key = header[len("Bearer "):].strip()
    if not raw_key:
        raise ApiError(401, "EMPTY_KEY", "API key is empty")
    return raw_key


def _authenticate(request: Request, db: Session) -> ApiKey:
    raw_key = _bearer_key(request)
    try:
        row = verify_api_key(db, raw_key)
    except ApiKeyError as exc:
        raise ApiError(401, exc.code, exc.message) from exc
    request.state.api_key = row
    return row


def require_api_key_only(request: Request, db: Session = Depends(get_db)) -> ApiKey:
    """Validate the key without spending quota."""
    return _authenticate(request, db)


def require_api_key(request: Request, db: Session = Depends(get_db)) -> ApiKey:
    row = _authenticate(request, db)
    limiter: RateLimiter = request.app.state.rate_limiter
    state = limiter.hit(rate_limit_bucket(row), *rate_limit_policy(row))
    request.state.rate_limit = state
    if state.limited:
        raise ApiError(429, "RATE_LIMITED", "Rate limit exceeded", headers=state.headers())
    return row


def optional_api_key(request: Request, db: Session = Depends(get_db)) -> ApiKey | None:
    """The caller's key when one is sent and valid, otherwise None."""
    if not request.headers.get("Authorization"):
        return None
    try:
        return _authenticate(request, db)
    except ApiError:
        return None


def require_admin_secret(request: Request) -> None:
    if not settings.admin_secret:
        raise ApiError(500, "CONFIG_ERROR", "ADMIN_SECRET not configured")
    if not secrets_match(request.headers.get("X-Admin-Secret"), settings.admin_secret):
        raise ApiError(401, "UNAUTHORIZED", "Unauthorized")


def require_refresh_key(request: Request) -> None:
    if not settings.refresh_api_key:
        return
    header = request.headers.get("Authorization") or ""
    provided = header[len("Bearer "):] if header.startswith("Bearer ") else None
    if not secrets_match(provided, settings.refresh_api_key):
        raise ApiError(401, "UNAUTHORIZED", "Unauthorized")


def get_sync_coordinator(request: Request) -> SyncCoordinator:
    return request.app.state.sync_coordinator
