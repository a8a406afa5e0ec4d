"""Application configuration loaded from environment variables."""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All configuration is loaded from environment variables (or .env file)."""

    # --- App ---
    app_name: str = "HealthSync"
    app_version: str = "0.1.0"
    log_level: str = "INFO"
    environment: str = "development"  # development | staging | production

    # --- User ---
    user_id: str = "local-user"
    birth_year: int = 1990

    # --- Dashboard ---
    dashboard_url: str = "http://localhost:3000/api"
    request_timeout_seconds: float = 10.0

    # --- Local state ---
    state_db_path: str = "data/healthsync.db"  # empty string keeps state in memory

    # --- Capability exports ---
    health_export_path: str = "data/health_export.json"
    usage_export_path: str = "data/screen_time.json"

    # --- Background sync ---
    background_sync_enabled: bool = True
    background_sync_interval_seconds: int = 300

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "env_prefix": "HEALTHSYNC_"}


@lru_cache
def get_settings() -> Settings:
    return Settings()
