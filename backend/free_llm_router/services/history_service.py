from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import func
from sqlalchemy.orm import Session

from free_llm_router.core.time_utils import isoformat_z
from free_llm_router.models.api_key import ApiKey
from free_llm_router.models.api_request_log import ApiRequestLog
from free_llm_router.models.model_feedback import ModelFeedback

HISTORY_TYPES = ("requests", "feedback")
DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


@dataclass(frozen=True)
class Page:
    page: int
    limit: int

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


def _to_int(raw: str | None, default: int) -> int:
    try:
        return int(raw) if raw not in (None, "") else default
    except ValueError:
        return default


def parse_page(raw_page: str | None, raw_limit: str | None) -> Page:
    page = max(1, _to_int(raw_page, 1))
    limit = min(MAX_PAGE_SIZE, max(1, _to_int(raw_limit, DEFAULT_PAGE_SIZE)))
    return Page(page=page, limit=limit)


def _paginated(items: list[dict], page: Page, total: int) -> dict:
    return {
        "items": items,
        "pagination": {
            "page": page.page,
            "limit": page.limit,
            "total": total,
            "hasMore": page.offset + len(items) < total,
        },
    }


def get_request_history(db: Session, user_id: str, page: Page) -> dict:
    """Newest-first request logs of one user, with the key each request used."""
    total = db.query(func.count(ApiRequestLog.id)).filter(ApiRequestLog.user_id == user_id).scalar() or 0
    rows = (
        db.query(ApiRequestLog, ApiKey.name, ApiKey.prefix)
        .outerjoin(ApiKey, ApiKey.id == ApiRequestLog.api_key_id)
        .filter(ApiRequestLog.user_id == user_id)
        .order_by(ApiRequestLog.created_at.desc(), ApiRequestLog.id.desc())
        .offset(page.offset)
        .limit(page.limit)
        .all()
    )
    items = [
        {
            "id": log.id,
            "endpoint": log.endpoint,
            "method": log.method,
            "statusCode": log.status_code,
            "responseTimeMs": log.response_time_ms,
            "createdAt": isoformat_z(log.created_at),
            "apiKeyId": log.api_key_id,
            "apiKeyName": key_name,
            "apiKeyPrefix": key_prefix,
        }
        for log, key_name, key_prefix in rows
    ]
    return _paginated(items, page, total)


def get_feedback_history(db: Session, user_id: str, page: Page) -> dict:
    """Newest-first feedback reports submitted by one user."""
    total = db.query(func.count(ModelFeedback.id)).filter(ModelFeedback.source == user_id).scalar() or 0
    rows = (
        db.query(ModelFeedback)
        .filter(ModelFeedback.source == user_id)
        .order_by(ModelFeedback.created_at.desc(), ModelFeedback.id.desc())
        .offset(page.offset)
        .limit(page.limit)
        .all()
    )
    items = [
        {
            "id": row.id,
            "modelId": row.model_id,
            "isSuccess": row.is_success,
            "issue": row.issue,
            "details": row.details,
            "requestId": row.request_id,
            "apiKeyId": row.api_key_id,
            "createdAt": isoformat_z(row.created_at),
        }
        for row in rows
    ]
    return _paginated(items, page, total)
