from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "sqlite:///./wialon_sync.db"
    api_prefix: str = "/wialon-sync"

    # Wialon integration (hosting URL, e.g. https://hst-api.wialon.com)
    wialon_api_url: str = ""
    wialon_token: str = ""
    wialon_timeout_seconds: float = 10.0
    wialon_fetch_usernames: bool = True

    stale_session_minutes: int = 60
    stale_sweep_interval_minutes: int = 15

    # Off: resolving a discrepancy only records the decision
    sync_apply_approved_corrections: bool = False

    user_id: int = 1  # fallback caller when no X-User-Id header is sent
    log_level: Optional[str] = None

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
