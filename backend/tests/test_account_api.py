from datetime import timedelta
from uuid import uuid4

import pytest

from conftest import seed_catalog
from free_llm_router.core.time_utils import utcnow
from free_llm_router.models.api_request_log import ApiRequestLog
from free_llm_router.models.model_feedback import ModelFeedback
from free_llm_router.services.api_key_service import create_api_key
from free_llm_router.services.history_service import parse_page


def _add_feedback(db, source: str, model_id: str, minutes_ago: int) -> None:
    db.add(
        ModelFeedback(
            id=str(uuid4()),
            model_id=model_id,
            is_success=False,
            issue="error",
            source=source,
            created_at=utcnow() - timedelta(minutes=minutes_ago),
        )
    )
    db.commit()


@pytest.mark.parametrize(
    "raw_page,raw_limit,expected",
    [
        (None, None, (1, 20)),
        ("3", "10", (3, 10)),
        ("0", "0", (1, 1)),
        ("-2", "500", (1, 100)),
        ("abc", "", (1, 20)),
    ],
)
def test_parse_page_bounds(raw_page, raw_limit, expected):
    page = parse_page(raw_page, raw_limit)
    assert (page.page, page.limit) == expected
    assert page.offset == (expected[0] - 1) * expected[1]


def test_request_history_pages_and_scopes_to_user(client, db, auth_headers):
    seed_catalog(db)
    for _ in range(3):
        assert client.get("/api/v1/models/ids", headers=auth_headers).status_code == 200

    other = create_api_key(db, user_id="user-2")
    client.get("/api/v1/models/ids", headers={"Authorization": f"Bearer {other.raw_key}"})
    assert db.query(ApiRequestLog).count() == 4

    first = client.get("/api/auth/history?limit=2", headers=auth_headers)
    assert first.status_code == 200
    body = first.json()
    assert body["pagination"] == {"page": 1, "limit": 2, "total": 3, "hasMore": True}
    assert len(body["items"]) == 2
    item = body["items"][0]
    assert item["endpoint"] == "/api/v1/models/ids"
    assert item["method"] == "GET"
    assert item["statusCode"] == 200
    assert item["apiKeyName"] == "primary"
    assert item["apiKeyPrefix"] == "fma_"
    assert item["createdAt"].endswith("Z")

    second = client.get("/api/auth/history?type=requests&page=2&limit=2", headers=auth_headers).json()
    assert second["pagination"] == {"page": 2, "limit": 2, "total": 3, "hasMore": False}
    assert len(second["items"]) == 1
    seen = {i["id"] for i in body["items"]} | {i["id"] for i in second["items"]}
    assert len(seen) == 3

    # reading history is not logged and spends no quota
    assert db.query(ApiRequestLog).count() == 4


def test_feedback_history_is_newest_first_and_user_scoped(client, db, auth_headers):
    _add_feedback(db, "user-1", "m/old", minutes_ago=30)
    _add_feedback(db, "user-1", "m/new", minutes_ago=1)
    _add_feedback(db, "user-2", "m/foreign", minutes_ago=5)

    body = client.get("/api/auth/history?type=feedback", headers=auth_headers).json()
    assert [item["modelId"] for item in body["items"]] == ["m/new", "m/old"]
    assert body["pagination"] == {"page": 1, "limit": 20, "total": 2, "hasMore": False}
    assert body["items"][0]["issue"] == "error"
    assert body["items"][0]["isSuccess"] is False


def test_history_rejects_unknown_type_and_missing_key(client, auth_headers):
    bad = client.get("/api/auth/history?type=logins", headers=auth_headers)
    assert bad.status_code == 400
    assert bad.json()["error"] == "Invalid type parameter"

    assert client.get("/api/auth/history").status_code == 401


def test_rate_limit_status_reflects_quota_without_spending_it(client, db):
    created = create_api_key(db, user_id="user-5", rate_limit_max=5, rate_limit_time_window=3600)
    headers = {"Authorization": f"Bearer {created.raw_key}"}
    seed_catalog(db)

    fresh = client.get("/api/auth/rate-limit", headers=headers)
    assert fresh.status_code == 200
    assert fresh.json() == {
        "remaining": 5,
        "limit": 5,
        "requestCount": 0,
        "timeWindow": 3600,
        "resetAt": None,
        "lastRequest": None,
    }

    client.get("/api/v1/models/ids", headers=headers)
    client.get("/api/v1/models/ids", headers=headers)

    status = client.get("/api/auth/rate-limit", headers=headers).json()
    assert status["remaining"] == 3
    assert status["requestCount"] == 2
    assert status["resetAt"].endswith("Z")
    assert status["lastRequest"].endswith("Z")

    again = client.get("/api/auth/rate-limit", headers=headers).json()
    assert again["remaining"] == 3


def test_rate_limit_status_uses_defaults(client, auth_headers):
    body = client.get("/api/auth/rate-limit", headers=auth_headers).json()
    assert body["limit"] == 200
    assert body["timeWindow"] == 86400
