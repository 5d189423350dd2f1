import time
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from starlette.concurrency import run_in_threadpool

from free_llm_router.api.router import api_router
from free_llm_router.core.config import settings
from free_llm_router.core.database import AdminSessionLocal, Base, SessionLocal, engine
from free_llm_router.core.logging import setup_logging
from free_llm_router.core.ratelimit import RateLimiter, TtlCache
from free_llm_router.core.response import ApiError, error, request_id_from_request
from free_llm_router.core.schema_migration import run_startup_migrations
from free_llm_router.services.api_key_service import record_request_log
from free_llm_router.services.catalog_sync_service import SyncCoordinator
from free_llm_router.services.sync_scheduler import SyncScheduler
import free_llm_router.models  # noqa: F401

app = FastAPI(title=settings.app_name)


def init_app_state(target: FastAPI) -> None:
    target.state.rate_limiter = RateLimiter()
    target.state.demo_rate_limiter = RateLimiter()
    target.state.demo_cache = TtlCache(settings.demo_cache_ttl_seconds)
    target.state.sync_coordinator = SyncCoordinator(AdminSessionLocal)
    target.state.sync_scheduler = SyncScheduler(
        target.state.sync_coordinator, settings.sync_interval_seconds
    )


init_app_state(app)


def _log_api_request(user_id: str, api_key_id: str, endpoint: str, method: str, status_code: int, elapsed_ms: int):
    db = SessionLocal()
    try:
        record_request_log(db, user_id, api_key_id, endpoint, method, status_code, elapsed_ms)
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to record request log for {}", endpoint)
    finally:
        db.close()


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    request.state.request_id = str(uuid4())
    started = time.perf_counter()
    response = await call_next(request)
    response.headers["X-Request-Id"] = request.state.request_id

    api_key = getattr(request.state, "api_key", None)
    if api_key is not None and request.url.path.startswith("/api/v1/"):
        await run_in_threadpool(
            _log_api_request,
            api_key.user_id,
            api_key.id,
            request.url.path,
            request.method,
            response.status_code,
            int((time.perf_counter() - started) * 1000),
        )
    return response


@app.exception_handler(ApiError)
async def handle_api_error(request: Request, exc: ApiError):
    return error(
        exc.code,
        exc.message,
        request_id_from_request(request),
        status_code=exc.status_code,
        headers=exc.headers,
        cors=request.url.path.startswith("/api/v1/"),
    )


@app.exception_handler(RequestValidationError)
async def handle_validation_error(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    message = "Invalid request body"
    if errors:
        location = ".".join(str(part) for part in errors[0].get("loc", ()) if part != "body")
        message = f"{location}: {errors[0].get('msg')}" if location else errors[0].get("msg", message)
    return error(
        "VALIDATION_ERROR",
        message,
        request_id_from_request(request),
        status_code=400,
        cors=request.url.path.startswith("/api/v1/"),
    )


@app.exception_handler(Exception)
async def handle_unexpected_error(request: Request, exc: Exception):
    request_id = request_id_from_request(request)
    logger.opt(exception=exc).error("Unhandled error on {} (request {})", request.url.path, request_id)
    return error("INTERNAL_ERROR", "Internal server error", request_id, status_code=500)


@app.on_event("startup")
def on_startup():
    setup_logging()
    Base.metadata.create_all(bind=engine)
    run_startup_migrations(engine, settings.database_url)
    app.state.sync_scheduler.start()


@app.on_event("shutdown")
def on_shutdown():
    app.state.sync_scheduler.stop()


@app.get("/health")
def health():
    return {"status": "ok"}


app.include_router(api_router)
