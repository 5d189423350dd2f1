from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from uuid import uuid4

from loguru import logger
from pydantic import ValidationError
from sqlalchemy import func
from sqlalchemy.orm import Session

from free_llm_router.core.config import settings
from free_llm_router.core.ratelimit import RateLimiter
from free_llm_router.core.security import API_KEY_PREFIX, generate_api_key, hash_api_key, key_start
from free_llm_router.core.time_utils import as_utc, isoformat_z, utcnow
from free_llm_router.models.api_key import ApiKey
from free_llm_router.models.api_request_log import ApiRequestLog
from free_llm_router.schemas.params import ApiKeyPreferences


class ApiKeyError(Exception):
    def __init__(self, code: str, message: str):
        self.code = code
        self.message = message
        super().__init__(message)


@dataclass
class CreatedApiKey:
    row: ApiKey
    raw_key: str


def create_api_key(
    db: Session,
    user_id: str,
    name: str | None = None,
    expires_in_days: int | None = None,
    rate_limit_max: int | None = None,
    rate_limit_time_window: int | None = None,
) -> CreatedApiKey:
    existing = db.query(func.count(ApiKey.id)).filter(ApiKey.user_id == user_id).scalar() or 0
    if existing >= settings.max_keys_per_user:
        raise ApiKeyError(
            "VALIDATION_ERROR",
            f"Maximum of {settings.max_keys_per_user} API keys per user reached",
        )

    raw_key = generate_api_key()
    row = ApiKey(
        id=str(uuid4()),
        name=name,
        prefix=API_KEY_PREFIX,
        start=key_start(raw_key),
        key_hash=hash_api_key(raw_key),
        user_id=user_id,
        enabled=True,
        rate_limit_max=rate_limit_max or settings.default_rate_limit_max,
        rate_limit_time_window=rate_limit_time_window or settings.default_rate_limit_window_seconds,
        expires_at=utcnow() + timedelta(days=expires_in_days) if expires_in_days else None,
        metadata_json="{}",
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    logger.info("Created API key {} for user {}", row.id, user_id)
    return CreatedApiKey(row=row, raw_key=raw_key)


def verify_api_key(db: Session, raw_key: str, now: datetime | None = None) -> ApiKey:
    row = db.query(ApiKey).filter(ApiKey.key_hash == hash_api_key(raw_key)).first()
    if not row or not row.enabled:
        raise ApiKeyError("INVALID_KEY", "Invalid API key")
    expires_at = as_utc(row.expires_at)
    if expires_at and expires_at <= (now or utcnow()):
        raise ApiKeyError("EXPIRED_KEY", "API key expired")
    return row


def rate_limit_bucket(row: ApiKey) -> str:
    return f"api_key:{row.id}"


def rate_limit_policy(row: ApiKey) -> tuple[int, int]:
    """(max requests, window seconds) for a key, falling back to the defaults."""
    return (
        row.rate_limit_max or settings.default_rate_limit_max,
        row.rate_limit_time_window or settings.default_rate_limit_window_seconds,
    )


def get_rate_limit_status(row: ApiKey, limiter: RateLimiter) -> dict:
    limit, window = rate_limit_policy(row)
    used, reset_at = limiter.usage(rate_limit_bucket(row))
    return {
        "remaining": max(0, limit - used),
        "limit": limit,
        "requestCount": used,
        "timeWindow": window,
        "resetAt": isoformat_z(datetime.fromtimestamp(reset_at, tz=timezone.utc)) if reset_at else None,
        "lastRequest": isoformat_z(row.last_request_at),
    }


def _load_metadata(row: ApiKey) -> dict:
    try:
        metadata = json.loads(row.metadata_json or "{}")
    except ValueError:
        return {}
    return metadata if isinstance(metadata, dict) else {}


def get_saved_preferences(row: ApiKey) -> ApiKeyPreferences | None:
    """Preferences stored on the key, or None if the key never saved any."""
    stored = _load_metadata(row).get("preferences")
    if not isinstance(stored, dict):
        return None
    try:
        return ApiKeyPreferences.model_validate(stored)
    except ValidationError:
        logger.warning("Ignoring malformed preferences on API key {}", row.id)
        return None


def _owned_key(db: Session, api_key_id: str, user_id: str) -> ApiKey:
    row = db.query(ApiKey).filter(ApiKey.id == api_key_id, ApiKey.user_id == user_id).first()
    if not row:
        raise ApiKeyError("NOT_FOUND", "API key not found")
    return row


def get_preferences(db: Session, api_key_id: str, user_id: str) -> ApiKeyPreferences:
    row = _owned_key(db, api_key_id, user_id)
    return get_saved_preferences(row) or ApiKeyPreferences()


def save_preferences(db: Session, api_key_id: str, user_id: str, raw_preferences: dict) -> ApiKeyPreferences:
    row = _owned_key(db, api_key_id, user_id)
    try:
        preferences = ApiKeyPreferences.model_validate(raw_preferences)
    except ValidationError as exc:
        raise ApiKeyError("VALIDATION_ERROR", f"Invalid preferences: {exc.errors()[0]['msg']}") from exc

    metadata = _load_metadata(row)
    metadata["preferences"] = preferences.to_json()
    row.metadata_json = json.dumps(metadata, ensure_ascii=False)
    db.commit()
    return preferences


def record_request_log(
    db: Session,
    user_id: str,
    api_key_id: str,
    endpoint: str,
    method: str,
    status_code: int,
    response_time_ms: int | None,
) -> None:
    db.add(
        ApiRequestLog(
            id=str(uuid4()),
            user_id=user_id,
            api_key_id=api_key_id,
            endpoint=endpoint,
            method=method,
            status_code=status_code,
            response_time_ms=response_time_ms,
        )
    )
    db.query(ApiKey).filter(ApiKey.id == api_key_id).update(
        {"last_request_at": utcnow()}, synchronize_session=False
    )
    db.commit()
