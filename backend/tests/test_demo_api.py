import json
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from free_llm_router.core.config import settings
from free_llm_router.services.demo_service import (
    DemoProxyError,
    DemoResponse,
    client_ip,
    fetch_demo_models,
    is_allowed_origin,
)


@pytest.fixture
def demo_upstream(monkeypatch):
    calls = []

    def fake_fetch(base_url, params, api_key, transport=None):
        calls.append({"base_url": base_url, "params": dict(params), "api_key": api_key})
        return DemoResponse(status_code=200, body=json.dumps({"models": [], "count": 0}).encode())

    monkeypatch.setattr(settings, "demo_api_key", "demo-key")
    monkeypatch.setattr("free_llm_router.api.demo.fetch_demo_models", fake_fetch)
    return calls


def test_demo_proxies_and_caches(client, demo_upstream):
    first = client.get("/api/demo/models?sort=capable")
    assert first.status_code == 200
    assert first.json() == {"models": [], "count": 0}
    assert first.headers["X-Cache"] == "MISS"
    assert first.headers["Cache-Control"] == "public, s-maxage=120, stale-while-revalidate=300"

    second = client.get("/api/demo/models?sort=capable")
    assert second.headers["X-Cache"] == "HIT"
    assert len(demo_upstream) == 1
    assert demo_upstream[0]["api_key"] == "demo-key"

    client.get("/api/demo/models?sort=newest")
    assert len(demo_upstream) == 2


def test_demo_rejects_foreign_origin(client, demo_upstream):
    resp = client.get("/api/demo/models", headers={"Origin": "https://evil.example"})
    assert resp.status_code == 403
    assert demo_upstream == []

    allowed = settings.demo_allowed_origins[0]
    assert client.get("/api/demo/models", headers={"Origin": allowed}).status_code == 200


def test_demo_requires_configured_key(client, monkeypatch):
    monkeypatch.setattr(settings, "demo_api_key", None)
    resp = client.get("/api/demo/models")
    assert resp.status_code == 500
    assert resp.json()["code"] == "CONFIG_ERROR"


def test_demo_rate_limits_per_ip(client, demo_upstream, monkeypatch):
    monkeypatch.setattr(settings, "demo_rate_limit", 2)
    headers = {"X-Forwarded-For": "203.0.113.9, 10.0.0.1"}
    assert client.get("/api/demo/models?a=1", headers=headers).status_code == 200
    assert client.get("/api/demo/models?a=2", headers=headers).status_code == 200
    limited = client.get("/api/demo/models?a=3", headers=headers)
    assert limited.status_code == 429
    assert "Retry-After" in limited.headers

    other = client.get("/api/demo/models?a=3", headers={"X-Forwarded-For": "198.51.100.1"})
    assert other.status_code == 200


def test_demo_maps_upstream_failures(client, monkeypatch):
    monkeypatch.setattr(settings, "demo_api_key", "demo-key")

    def failing(base_url, params, api_key, transport=None):
        raise DemoProxyError("UPSTREAM_ERROR", "Failed to fetch models", 502)

    monkeypatch.setattr("free_llm_router.api.demo.fetch_demo_models", failing)
    resp = client.get("/api/demo/models")
    assert resp.status_code == 502
    assert resp.json()["error"] == "Failed to fetch models"


def test_fetch_demo_models_forces_community_view():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["Authorization"]
        return httpx.Response(200, json={"ok": True})

    result = fetch_demo_models(
        "https://router.test/",
        {"sort": "capable", "myReports": "true"},
        "demo-key",
        transport=httpx.MockTransport(handler),
    )
    assert json.loads(result.body) == {"ok": True}
    url = urlparse(seen["url"])
    assert url.path == "/api/v1/models/full"
    query = parse_qs(url.query)
    assert query["myReports"] == ["false"]
    assert query["_clearExcludedModels"] == ["true"]
    assert query["sort"] == ["capable"]
    assert seen["auth"] == "Bearer demo-key"


@pytest.mark.parametrize("status,code", [(429, 429), (500, 502), (401, 502)])
def test_fetch_demo_models_error_mapping(status, code):
    transport = httpx.MockTransport(lambda request: httpx.Response(status))
    with pytest.raises(DemoProxyError) as exc_info:
        fetch_demo_models("https://router.test", {}, "demo-key", transport=transport)
    assert exc_info.value.status_code == code


def test_origin_and_ip_helpers():
    allowed = ["https://free.example"]
    assert is_allowed_origin(None, None, allowed)
    assert is_allowed_origin("https://free.example", None, allowed)
    assert is_allowed_origin(None, "https://free.example/models", allowed)
    assert not is_allowed_origin("https://other.example", None, allowed)

    assert client_ip({"cf-connecting-ip": "1.1.1.1", "x-forwarded-for": "2.2.2.2"}, None) == "1.1.1.1"
    assert client_ip({"x-forwarded-for": "2.2.2.2, 3.3.3.3"}, None) == "2.2.2.2"
    assert client_ip({"x-real-ip": "4.4.4.4"}, "5.5.5.5") == "4.4.4.4"
    assert client_ip({}, None) == "unknown"
