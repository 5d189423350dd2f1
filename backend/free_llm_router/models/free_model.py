from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from free_llm_router.core.database import Base


class FreeModel(Base):
    __tablename__ = "free_models"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    context_length: Mapped[int | None] = mapped_column(Integer, nullable=True)
    max_completion_tokens: Mapped[int | None] = mapped_column(Integer, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    modality: Mapped[str | None] = mapped_column(String(100), nullable=True)
    input_modalities_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    output_modalities_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    supported_parameters_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    supported_parameter_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_moderated: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    priority: Mapped[int] = mapped_column(Integer, default=100, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False, index=True)
    last_seen_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False
    )
