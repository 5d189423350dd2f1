import os
import tempfile
from pathlib import Path

_TMP_DIR = Path(tempfile.mkdtemp(prefix="free-llm-router-tests-"))
os.environ["DATABASE_URL"] = f"sqlite:///{(_TMP_DIR / 'test.sqlite3').as_posix()}"
os.environ.pop("DATABASE_URL_ADMIN", None)
os.environ.pop("REFRESH_API_KEY", None)
os.environ.pop("DEMO_API_KEY", None)
os.environ["ADMIN_SECRET"] = "test-admin-secret"
os.environ["SYNC_INTERVAL_SECONDS"] = "0"
os.environ["LOG_FILE_PATH"] = ""

import pytest
from fastapi.testclient import TestClient

import free_llm_router.models  # noqa: F401
from free_llm_router.core.database import Base, SessionLocal, engine
from free_llm_router.main import app, init_app_state
from free_llm_router.services.api_key_service import create_api_key
from free_llm_router.services.catalog_sync_service import SyncCoordinator, sync_models

ADMIN_HEADERS = {"X-Admin-Secret": "test-admin-secret"}


def upstream_model(
    model_id: str,
    context_length: int | None = 8192,
    modality: str | None = "text->text",
    input_modalities: list[str] | None = None,
    output_modalities: list[str] | None = None,
    supported_parameters: list[str] | None = None,
    max_completion_tokens: int | None = None,
    prompt_price: str | None = "0",
    completion_price: str | None = "0",
) -> dict:
    return {
        "id": model_id,
        "name": model_id.split("/")[-1].replace("-", " ").title(),
        "context_length": context_length,
        "description": f"{model_id} description",
        "pricing": {"prompt": prompt_price, "completion": completion_price},
        "architecture": {
            "modality": modality,
            "input_modalities": input_modalities if input_modalities is not None else ["text"],
            "output_modalities": output_modalities if output_modalities is not None else ["text"],
        },
        "top_provider": {"max_completion_tokens": max_completion_tokens, "is_moderated": False},
        "supported_parameters": supported_parameters if supported_parameters is not None else ["temperature"],
    }


DEFAULT_UPSTREAM = [
    upstream_model("acme/alpha:free", context_length=128000, supported_parameters=["tools", "temperature"]),
    upstream_model(
        "acme/beta:free",
        context_length=32000,
        modality="text+image->text",
        input_modalities=["text", "image"],
        supported_parameters=["reasoning", "tools", "temperature", "top_p"],
    ),
    upstream_model("acme/gamma:free", context_length=200000, max_completion_tokens=8192),
    upstream_model("acme/paid", prompt_price="0.001"),
]


class FakeUpstream:
    """Stands in for the OpenRouter fetch; counts calls."""

    def __init__(self, models: list[dict] | None = None):
        self.models = list(DEFAULT_UPSTREAM if models is None else models)
        self.calls = 0
        self.error: Exception | None = None

    def __call__(self) -> list[dict]:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return list(self.models)


def seed_catalog(db, models: list[dict] | None = None, now=None):
    return sync_models(db, FakeUpstream(models), now=now)


@pytest.fixture(autouse=True)
def reset_database():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture
def client(upstream):
    init_app_state(app)
    app.state.sync_coordinator = SyncCoordinator(SessionLocal, fetch_models=upstream)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def raw_api_key(db) -> str:
    return create_api_key(db, user_id="user-1", name="primary").raw_key


@pytest.fixture
def auth_headers(raw_api_key) -> dict[str, str]:
    return {"Authorization": f"Bearer {raw_api_key}"}
