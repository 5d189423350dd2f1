from pydantic import BaseModel, ConfigDict, Field


class ApiKeyCreateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(alias="userId", min_length=1, max_length=255)
    name: str | None = Field(default=None, max_length=100)
    expires_in_days: int | None = Field(default=None, alias="expiresInDays", ge=1, le=3650)
    rate_limit_max: int | None = Field(default=None, alias="rateLimitMax", ge=1)
    rate_limit_time_window: int | None = Field(default=None, alias="rateLimitTimeWindow", ge=1)
