from fastapi import APIRouter, Request
from fastapi.responses import Response

from free_llm_router.core.config import settings
from free_llm_router.core.ratelimit import RateLimiter, TtlCache
from free_llm_router.core.response import error, request_id_from_request
from free_llm_router.services.demo_service import (
    DemoProxyError,
    client_ip,
    fetch_demo_models,
    is_allowed_origin,
)

router = APIRouter(prefix="/demo")

_CACHE_CONTROL = "public, s-maxage=120, stale-while-revalidate=300"


@router.get("/models")
def demo_models_api(request: Request):
    request_id = request_id_from_request(request)
    if not is_allowed_origin(
        request.headers.get("origin"),
        request.headers.get("referer"),
        settings.demo_allowed_origins,
    ):
        return error("FORBIDDEN", "Forbidden", request_id, status_code=403)
    if not settings.demo_api_key:
        return error("CONFIG_ERROR", "Demo API key not configured", request_id, status_code=500)

    limiter: RateLimiter = request.app.state.demo_rate_limiter
    ip = client_ip(request.headers, request.client.host if request.client else None)
    state = limiter.hit(f"demo:{ip}", settings.demo_rate_limit, settings.demo_rate_window_seconds)
    if state.limited:
        return error("RATE_LIMITED", "Too many requests", request_id, status_code=429, headers=state.headers())

    cache: TtlCache = request.app.state.demo_cache
    cache_key = request.url.query
    cached = cache.get(cache_key)
    headers = {"Cache-Control": _CACHE_CONTROL, "X-Request-Id": request_id}
    if cached is not None:
        return Response(content=cached, media_type="application/json", headers={**headers, "X-Cache": "HIT"})

    base_url = settings.public_base_url or str(request.base_url)
    try:
        upstream = fetch_demo_models(base_url, request.query_params, settings.demo_api_key)
    except DemoProxyError as exc:
        return error(exc.code, exc.message, request_id, status_code=exc.status_code)

    cache.set(cache_key, upstream.body)
    return Response(content=upstream.body, media_type="application/json", headers={**headers, "X-Cache": "MISS"})
