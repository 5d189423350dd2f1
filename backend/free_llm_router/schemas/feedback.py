from pydantic import BaseModel, ConfigDict, Field


class FeedbackCreateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    model_id: str | None = Field(default=None, alias="modelId", max_length=255)
    success: bool | None = None
    issue: str | None = Field(default=None, max_length=50)
    details: str | None = Field(default=None, max_length=1000)
