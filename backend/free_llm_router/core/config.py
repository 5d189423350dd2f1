from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

_BACKEND_DIR = Path(__file__).resolve().parents[2]
_REPO_ROOT = _BACKEND_DIR.parent


class Settings(BaseSettings):
    app_name: str = "Free LLM Router"
    server_host: str = "127.0.0.1"
    server_port: int = 8000
    server_reload: bool = False
    database_url: str = "sqlite:///./free_models.db"
    database_url_admin: str | None = None

    admin_secret: str | None = None
    refresh_api_key: str | None = None
    demo_api_key: str | None = None
    public_base_url: str | None = None

    openrouter_models_url: str = "https://openrouter.ai/api/v1/models"
    outbound_timeout_seconds: float = 8.0

    stale_threshold_seconds: int = 15 * 60
    critical_stale_threshold_seconds: int = 2 * 60 * 60
    sync_lock_seconds: int = 5 * 60
    sync_interval_seconds: int = 60 * 60
    admin_sync_fresh_seconds: int = 60 * 60

    feedback_retention_days: int = 90
    request_log_retention_days: int = 30

    default_rate_limit_max: int = 200
    default_rate_limit_window_seconds: int = 24 * 60 * 60
    max_keys_per_user: int = 10

    demo_cache_ttl_seconds: int = 60
    demo_rate_limit: int = 20
    demo_rate_window_seconds: int = 60
    demo_allowed_origins: list[str] = [
        "https://free-llm-router.pages.dev",
        "http://localhost:4321",
        "http://localhost:3000",
    ]

    log_level: str = "INFO"
    log_json_format: bool = False
    log_file_path: str = ""
    log_rotation: str = "20 MB"
    log_retention: str = "14 days"

    model_config = SettingsConfigDict(
        env_file=[_BACKEND_DIR / ".env", _REPO_ROOT / ".env"],
        extra="ignore",
    )

    @property
    def admin_database_url(self) -> str:
        return self.database_url_admin or self.database_url


settings = Settings()
