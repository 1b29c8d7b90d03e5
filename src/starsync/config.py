from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "sqlite:///./starsync.db"
    github_api_base_url: str = "https://api.github.com"
    cron_secret: str = ""
    scheduled_sync_minutes: int = 60
    sync_deadline_seconds: float = 60.0  # foreground/manual runs only

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
