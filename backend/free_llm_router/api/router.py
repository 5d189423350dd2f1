from fastapi import APIRouter

from free_llm_router.api import account, admin, availability, demo, health, preferences
from free_llm_router.api.v1.router import api_v1_router

api_router = APIRouter(prefix="/api")
api_router.include_router(api_v1_router)
api_router.include_router(health.router, tags=["health"])
api_router.include_router(availability.router, tags=["availability"])
api_router.include_router(admin.router, tags=["admin"])
api_router.include_router(preferences.router, tags=["preferences"])
api_router.include_router(account.router, tags=["account"])
api_router.include_router(demo.router, tags=["demo"])
