from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from free_llm_router.core.database import Base


class ModelFeedback(Base):
    __tablename__ = "model_feedback"
    __table_args__ = (Index("idx_model_feedback_model_created", "model_id", "created_at"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    model_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    is_success: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    issue: Mapped[str | None] = mapped_column(String(50), nullable=True)
    details: Mapped[str | None] = mapped_column(Text, nullable=True)
    source: Mapped[str] = mapped_column(String(255), default="anonymous", nullable=False, index=True)
    request_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    api_key_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False, index=True
    )
