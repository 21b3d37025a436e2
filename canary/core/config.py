from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # ENV-only configuration
    model_config = SettingsConfigDict(env_prefix="")

    database_url: str
    api_host: str = "0.0.0.0"
    api_port: int = Field(default=8000, ge=1, le=65535)
    cron_secret: str | None = None
    checker_concurrency: int = Field(default=20, ge=1)
    probe_follow_redirects: bool = False
    resend_api_key: str | None = None
    email_from: str | None = None
    email_api_url: str = "https://api.resend.com/emails"
    email_timeout_sec: float = Field(default=10.0, gt=0)
    log_level: str = "INFO"


@lru_cache
def get_settings() -> Settings:
    return Settings()
