from __future__ import annotations

from functools import lru_cache

from pydantic import PositiveFloat, PositiveInt, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

SUPPORTED_LOG_LEVELS = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="SYNCWATCH_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    app_name: str = "SyncWatch"
    environment: str = "production"
    api_host: str = "0.0.0.0"
    api_port: int = 8080
    log_level: str = "INFO"

    backend_base_url: str = "http://localhost:5000"
    backend_api_token: str | None = None
    backend_timeout_seconds: PositiveFloat = 15.0
    backend_page_size: PositiveInt = 100
    backend_max_pages: PositiveInt = 50

    targeted_poll_interval_seconds: PositiveFloat = 10.0
    targeted_poll_timeout_seconds: PositiveInt = 1800
    sweep_interval_seconds: PositiveFloat = 10.0
    stale_after_seconds: PositiveInt = 60

    notification_feed_size: PositiveInt = 200

    @field_validator("backend_base_url", mode="before")
    @classmethod
    def _normalize_base_url(cls, value: str) -> str:
        raw = str(value).strip()
        if not raw.startswith(("http://", "https://")):
            raise ValueError("backend_base_url must be an http(s) URL")
        return raw.rstrip("/")

    @field_validator("backend_api_token", mode="before")
    @classmethod
    def _blank_token_is_none(cls, value: str | None) -> str | None:
        if value is None:
            return None
        token = str(value).strip()
        return token or None

    @model_validator(mode="after")
    def _validate_runtime_constraints(self) -> "Settings":
        normalized_level = self.log_level.upper().strip()
        if normalized_level not in SUPPORTED_LOG_LEVELS:
            raise ValueError(f"log_level must be one of {sorted(SUPPORTED_LOG_LEVELS)}")
        self.log_level = normalized_level

        if self.targeted_poll_timeout_seconds < self.targeted_poll_interval_seconds:
            raise ValueError("targeted_poll_timeout_seconds must be >= targeted_poll_interval_seconds")

        return self


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
