from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from uuid import uuid4

from sqlalchemy import func
from sqlalchemy.orm import Session

from free_llm_router.core.time_utils import as_utc, utcnow
from free_llm_router.models.free_model import FreeModel
from free_llm_router.models.model_feedback import ModelFeedback
from free_llm_router.schemas.params import ISSUE_TYPES, TIME_RANGE_SECONDS
from free_llm_router.services.model_filters import (
    filter_models_by_use_case,
    model_to_dict,
    sort_models,
)

_BUCKET_FORMAT = "%Y-%m-%d %H:%M:%S"

# (unit, number of buckets) per range; "all" charts the last 30 days.
_TIMELINE_BUCKETS: dict[str, tuple[str, int]] = {
    "15m": ("minute", 15),
    "30m": ("minute", 30),
    "1h": ("minute", 60),
    "6h": ("hour", 6),
    "24h": ("hour", 24),
    "7d": ("day", 7),
    "30d": ("day", 30),
    "all": ("day", 30),
}

_UNIT_DELTAS = {
    "minute": timedelta(minutes=1),
    "hour": timedelta(hours=1),
    "day": timedelta(days=1),
}


class FeedbackError(Exception):
    def __init__(self, code: str, message: str):
        self.code = code
        self.message = message
        super().__init__(message)


@dataclass
class FeedbackCounts:
    rate_limited: int = 0
    unavailable: int = 0
    error: int = 0
    success_count: int = 0
    error_rate: float = 0.0

    @property
    def issue_total(self) -> int:
        return self.rate_limited + self.unavailable + self.error

    def add(self, is_success: bool, issue: str | None, count: int) -> None:
        if is_success:
            self.success_count += count
        elif issue == "rate_limited":
            self.rate_limited += count
        elif issue == "unavailable":
            self.unavailable += count
        elif issue == "error":
            self.error += count

    def finalize(self) -> "FeedbackCounts":
        self.error_rate = compute_error_rate(self.issue_total, self.success_count)
        return self

    def to_dict(self) -> dict:
        return {
            "rateLimited": self.rate_limited,
            "unavailable": self.unavailable,
            "error": self.error,
            "successCount": self.success_count,
            "errorRate": self.error_rate,
        }


@dataclass
class HealthFilterOptions:
    time_range: str = "24h"
    user_id: str | None = None
    use_cases: list[str] = field(default_factory=list)
    sort: str | None = None
    top_n: int | None = None
    max_error_rate: float | None = None


def compute_error_rate(issue_count: int, success_count: int) -> float:
    total = issue_count + success_count
    if total <= 0:
        return 0.0
    return round(issue_count / total * 100, 2)


def window_start(time_range: str, now: datetime | None = None) -> datetime | None:
    seconds = TIME_RANGE_SECONDS.get(time_range)
    if seconds is None:
        return None
    return (now or utcnow()) - timedelta(seconds=seconds)


def _scoped_query(query, time_range: str, user_id: str | None, now: datetime | None):
    since = window_start(time_range, now)
    if since is not None:
        query = query.filter(ModelFeedback.created_at >= since)
    if user_id:
        query = query.filter(ModelFeedback.source == user_id)
    return query


def submit_feedback(
    db: Session,
    model_id: str | None,
    is_success: bool,
    issue: str | None,
    details: str | None,
    source: str,
    api_key_id: str | None = None,
    request_id: str | None = None,
) -> ModelFeedback:
    model_id = (model_id or "").strip()
    if not model_id:
        raise FeedbackError("VALIDATION_ERROR", "modelId is required")
    if is_success:
        issue = None
    elif issue not in ISSUE_TYPES:
        raise FeedbackError(
            "VALIDATION_ERROR",
            f"issue must be one of: {', '.join(ISSUE_TYPES)}",
        )

    row = ModelFeedback(
        id=str(uuid4()),
        model_id=model_id,
        is_success=is_success,
        issue=issue,
        details=details.strip() if details else None,
        source=source,
        api_key_id=api_key_id,
        request_id=request_id,
    )
    db.add(row)
    db.commit()
    return row


def get_recent_feedback_counts(
    db: Session,
    time_range: str = "30m",
    user_id: str | None = None,
    now: datetime | None = None,
) -> dict[str, FeedbackCounts]:
    query = db.query(
        ModelFeedback.model_id,
        ModelFeedback.issue,
        ModelFeedback.is_success,
        func.count().label("count"),
    )
    query = _scoped_query(query, time_range, user_id, now)
    rows = query.group_by(ModelFeedback.model_id, ModelFeedback.issue, ModelFeedback.is_success).all()

    counts: dict[str, FeedbackCounts] = {}
    for model_id, issue, is_success, count in rows:
        counts.setdefault(model_id, FeedbackCounts()).add(bool(is_success), issue, int(count))
    return {model_id: item.finalize() for model_id, item in counts.items()}


def get_feedback_counts_by_range(
    db: Session,
    options: HealthFilterOptions,
    now: datetime | None = None,
) -> list[dict]:
    """Per-model issue summaries for the health page, joined with catalog metadata."""
    counts = get_recent_feedback_counts(db, options.time_range, options.user_id, now)
    if not counts:
        return []

    catalog = {
        row.id: model_to_dict(row)
        for row in db.query(FreeModel).filter(FreeModel.id.in_(list(counts))).all()
    }

    summaries: list[dict] = []
    for model_id, item in counts.items():
        summary = catalog.get(model_id) or {"id": model_id, "name": model_id}
        summary.update(
            rate_limited=item.rate_limited,
            unavailable=item.unavailable,
            error=item.error,
            total=item.issue_total,
            success_count=item.success_count,
            error_rate=item.error_rate,
            issue_count=item.issue_total,
        )
        summaries.append(summary)

    if options.use_cases:
        summaries = filter_models_by_use_case(summaries, options.use_cases)
    if options.max_error_rate is not None:
        summaries = [s for s in summaries if s["error_rate"] <= options.max_error_rate]
    if options.sort:
        summaries = sort_models(summaries, options.sort)
    else:
        summaries.sort(key=lambda s: (-s["total"], s["id"]))
    if options.top_n:
        summaries = summaries[: options.top_n]
    return summaries


def _truncate(value: datetime, unit: str) -> datetime:
    if unit == "minute":
        return value.replace(second=0, microsecond=0)
    if unit == "hour":
        return value.replace(minute=0, second=0, microsecond=0)
    return value.replace(hour=0, minute=0, second=0, microsecond=0)


def time_buckets(time_range: str, now: datetime | None = None) -> list[str]:
    unit, count = _TIMELINE_BUCKETS.get(time_range, _TIMELINE_BUCKETS["30d"])
    latest = _truncate(as_utc(now or utcnow()), unit)
    step = _UNIT_DELTAS[unit]
    return [(latest - step * offset).strftime(_BUCKET_FORMAT) for offset in range(count - 1, -1, -1)]


def get_feedback_timeline(
    db: Session,
    time_range: str,
    user_id: str | None = None,
    model_ids: list[str] | None = None,
    now: datetime | None = None,
) -> list[dict]:
    now = as_utc(now or utcnow())
    unit, _ = _TIMELINE_BUCKETS.get(time_range, _TIMELINE_BUCKETS["30d"])
    buckets = time_buckets(time_range, now)
    first_bucket = datetime.strptime(buckets[0], _BUCKET_FORMAT).replace(tzinfo=now.tzinfo)

    query = db.query(ModelFeedback.model_id, ModelFeedback.is_success, ModelFeedback.created_at)
    query = _scoped_query(query, time_range, user_id, now)
    query = query.filter(ModelFeedback.created_at >= first_bucket)
    if model_ids is not None:
        if not model_ids:
            return [{"date": bucket} for bucket in buckets]
        query = query.filter(ModelFeedback.model_id.in_(model_ids))

    tallies: dict[str, dict[str, list[int]]] = {}
    for model_id, is_success, created_at in query.all():
        bucket = _truncate(as_utc(created_at), unit).strftime(_BUCKET_FORMAT)
        errors_total = tallies.setdefault(bucket, {}).setdefault(model_id, [0, 0])
        if not is_success:
            errors_total[0] += 1
        errors_total[1] += 1

    timeline: list[dict] = []
    for bucket in buckets:
        point: dict = {"date": bucket}
        for model_id, (error_count, total_count) in tallies.get(bucket, {}).items():
            point[model_id] = {
                "errorRate": round(error_count / total_count * 100, 2) if total_count else 0,
                "errorCount": error_count,
                "totalCount": total_count,
            }
        timeline.append(point)
    return timeline
