from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from loguru import logger
from sqlalchemy.orm import Session

from free_llm_router.core.config import settings
from free_llm_router.core.time_utils import isoformat_z, utcnow
from free_llm_router.models.api_request_log import ApiRequestLog
from free_llm_router.models.model_feedback import ModelFeedback


@dataclass
class CleanupResult:
    model_feedback_deleted: int
    api_request_logs_deleted: int
    model_feedback_cutoff: datetime
    api_request_logs_cutoff: datetime

    def to_dict(self) -> dict:
        return {
            "success": True,
            "deleted": {
                "modelFeedback": self.model_feedback_deleted,
                "apiRequestLogs": self.api_request_logs_deleted,
            },
            "cutoffs": {
                "modelFeedback": isoformat_z(self.model_feedback_cutoff),
                "apiRequestLogs": isoformat_z(self.api_request_logs_cutoff),
            },
        }


def retention_cutoffs(now: datetime) -> tuple[datetime, datetime]:
    return (
        now - timedelta(days=settings.feedback_retention_days),
        now - timedelta(days=settings.request_log_retention_days),
    )


def cleanup_old_data(db: Session, now: datetime | None = None) -> CleanupResult:
    """Delete rows strictly older than the retention cutoffs."""
    feedback_cutoff, logs_cutoff = retention_cutoffs(now or utcnow())

    feedback_deleted = (
        db.query(ModelFeedback)
        .filter(ModelFeedback.created_at < feedback_cutoff)
        .delete(synchronize_session=False)
    )
    logs_deleted = (
        db.query(ApiRequestLog)
        .filter(ApiRequestLog.created_at < logs_cutoff)
        .delete(synchronize_session=False)
    )
    db.commit()

    logger.info(
        "Cleanup removed {} feedback rows and {} request logs",
        feedback_deleted,
        logs_deleted,
    )
    return CleanupResult(
        model_feedback_deleted=feedback_deleted,
        api_request_logs_deleted=logs_deleted,
        model_feedback_cutoff=feedback_cutoff,
        api_request_logs_cutoff=logs_cutoff,
    )
