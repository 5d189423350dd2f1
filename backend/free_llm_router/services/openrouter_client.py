from __future__ import annotations

import httpx

from free_llm_router.core.config import settings

_NOT_FREE_PRICE = 999.0


class UpstreamError(Exception):
    def __init__(self, code: str, message: str):
        self.code = code
        self.message = message
        super().__init__(message)


def _price(value) -> float:
    # numbers and numeric strings alike; only a missing or unparseable price is not free
    if value is None or value == "":
        return _NOT_FREE_PRICE
    try:
        return float(value)
    except (TypeError, ValueError):
        return _NOT_FREE_PRICE


def is_free_model(model: dict) -> bool:
    pricing = model.get("pricing") or {}
    if not isinstance(pricing, dict):
        return False
    return _price(pricing.get("prompt")) == 0 and _price(pricing.get("completion")) == 0


def fetch_openrouter_models(
    url: str | None = None,
    timeout: float | None = None,
    transport: httpx.BaseTransport | None = None,
) -> list[dict]:
    """Return the raw model list published by OpenRouter."""
    with httpx.Client(
        timeout=timeout or settings.outbound_timeout_seconds,
        transport=transport,
        headers={"Content-Type": "application/json"},
    ) as client:
        try:
            resp = client.get(url or settings.openrouter_models_url)
        except httpx.HTTPError as exc:
            raise UpstreamError("UPSTREAM_ERROR", f"OpenRouter request failed: {exc}") from exc
    if resp.status_code >= 400:
        raise UpstreamError("UPSTREAM_ERROR", f"OpenRouter API error: {resp.status_code}")
    try:
        payload = resp.json()
    except ValueError as exc:
        raise UpstreamError("UPSTREAM_ERROR", "OpenRouter returned malformed JSON") from exc

    models = payload.get("data") if isinstance(payload, dict) else None
    if models is None:
        return []
    if not isinstance(models, list):
        raise UpstreamError("UPSTREAM_ERROR", "OpenRouter response has no model list")
    return [model for model in models if isinstance(model, dict) and model.get("id")]
