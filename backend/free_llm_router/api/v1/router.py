from fastapi import APIRouter

from free_llm_router.api.v1 import models

api_v1_router = APIRouter(prefix="/v1")
api_v1_router.include_router(models.router, tags=["models"])
