from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from urllib.parse import urlencode

import httpx
from loguru import logger

from free_llm_router.core.config import settings


@dataclass
class DemoResponse:
    status_code: int
    body: bytes


class DemoProxyError(Exception):
    def __init__(self, code: str, message: str, status_code: int):
        self.code = code
        self.message = message
        self.status_code = status_code
        super().__init__(message)


def is_allowed_origin(origin: str | None, referer: str | None, allowed: list[str]) -> bool:
    # server-side callers and direct navigation send neither header
    if not origin and not referer:
        return True
    if origin and any(origin.startswith(prefix) for prefix in allowed):
        return True
    if referer and any(referer.startswith(prefix) for prefix in allowed):
        return True
    return False


def client_ip(headers: Mapping[str, str], fallback: str | None) -> str:
    forwarded = headers.get("x-forwarded-for")
    if headers.get("cf-connecting-ip"):
        return headers["cf-connecting-ip"]
    if forwarded:
        return forwarded.split(",")[0].strip()
    return headers.get("x-real-ip") or fallback or "unknown"


def demo_query(params: Mapping[str, str]) -> dict[str, str]:
    query = dict(params)
    query["myReports"] = "false"
    query["_clearExcludedModels"] = "true"
    return query


def fetch_demo_models(
    base_url: str,
    params: Mapping[str, str],
    api_key: str,
    transport: httpx.BaseTransport | None = None,
) -> DemoResponse:
    url = f"{base_url.rstrip('/')}/api/v1/models/full"
    query = demo_query(params)
    with httpx.Client(timeout=settings.outbound_timeout_seconds, transport=transport) as client:
        try:
            resp = client.get(
                f"{url}?{urlencode(sorted(query.items()))}",
                headers={"Authorization": f"Bearer {api_key}"},
            )
        except httpx.HTTPError as exc:
            logger.warning("Demo upstream request failed: {}", exc)
            raise DemoProxyError("UPSTREAM_ERROR", "Failed to fetch models", 502) from exc

    if resp.status_code == 429:
        raise DemoProxyError("RATE_LIMITED", "Too many requests", 429)
    if resp.status_code >= 400:
        logger.warning("Demo upstream answered {}", resp.status_code)
        raise DemoProxyError("UPSTREAM_ERROR", "Failed to fetch models", 502)
    return DemoResponse(status_code=resp.status_code, body=resp.content)
