from free_llm_router.models.api_key import ApiKey
from free_llm_router.models.api_request_log import ApiRequestLog
from free_llm_router.models.availability_snapshot import ModelAvailabilitySnapshot
from free_llm_router.models.free_model import FreeModel
from free_llm_router.models.model_feedback import ModelFeedback
from free_llm_router.models.sync_meta import SyncMeta

__all__ = [
    "FreeModel",
    "ModelFeedback",
    "SyncMeta",
    "ModelAvailabilitySnapshot",
    "ApiKey",
    "ApiRequestLog",
]
