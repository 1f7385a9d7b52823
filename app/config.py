from __future__ import annotations

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    SERVICE_NAME: str = "svc-generation"
    LOG_LEVEL: str = "INFO"

    # Store
    STORE_BACKEND: str = "postgres"  # postgres | memory
    DATABASE_URL: Optional[str] = Field(default=None, validation_alias="DATABASE_URL")
    DB_POOL_MIN: int = 1
    DB_POOL_MAX: int = 10
    DB_COMMAND_TIMEOUT: float = 30.0

    # Auth
    JWT_SECRET: str = ""
    JWT_ALG: str = "HS256"
    JWT_ISSUER: Optional[str] = None
    JWT_AUDIENCE: Optional[str] = None
    ALLOW_X_USER_ID: bool = False
    MAINTENANCE_TOKEN: Optional[str] = None

    # Polling / retry
    JOB_POLL_INTERVAL_SECONDS: float = 5.0
    SUBMIT_RETRY_ATTEMPTS: int = 3
    SUBMIT_RETRY_BASE_SECONDS: float = 2.0
    PIPELINE_MAX_POLL_ATTEMPTS: int = 120

    # Admission (0 = unlimited)
    MAX_ACTIVE_JOBS_PER_OWNER: int = 4

    # Reaper
    STUCK_JOB_THRESHOLD_SECONDS: int = 900  # 15 minutes
    STUCK_PIPELINE_THRESHOLD_SECONDS: int = 1800
    REAPER_INTERVAL_SECONDS: float = 300.0  # 0 disables the in-process reaper

    # Provider callbacks
    PUBLIC_BASE_URL: str = "http://localhost:8000"
    PROVIDER_CALLBACK_TOKEN: Optional[str] = None

    # Suno (sunoapi.org)
    SUNO_API_KEY: str = ""
    SUNO_BASE_URL: str = "https://api.sunoapi.org"
    SUNO_TIMEOUT_SECONDS: float = 60.0
    SUNO_DEFAULT_MODEL: str = "V4_5"
    SUNO_MAX_POLL_ATTEMPTS: int = 60
    SUNO_LYRICS_MAX_POLL_ATTEMPTS: int = 20

    # Mureka
    MUREKA_API_KEY: str = ""
    MUREKA_BASE_URL: str = "https://api.mureka.ai"
    MUREKA_TIMEOUT_SECONDS: float = 60.0
    MUREKA_DEFAULT_MODEL: str = "mureka-7"
    MUREKA_MAX_POLL_ATTEMPTS: int = 60

    # Test provider
    TEST_PROVIDER_DELAY_SECONDS: float = 3.0
    TEST_PROVIDER_MAX_POLL_ATTEMPTS: int = 20

    def callback_url(self, provider: str) -> str:
        url = f"{self.PUBLIC_BASE_URL.rstrip('/')}/api/providers/{provider}/callback"
        if self.PROVIDER_CALLBACK_TOKEN:
            url += f"?token={self.PROVIDER_CALLBACK_TOKEN}"
        return url


settings = Settings()
