"""
CareEase configuration
Settings loaded from the environment and an optional .env file
"""

from typing import List

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_JWT_SECRET = "change-me"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    environment: str = Field(default="development", pattern="^(development|production|test)$")
    log_level: str = Field(default="INFO", pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$")

    # API server
    api_host: str = Field(default="0.0.0.0")
    api_port: int = Field(default=8080, ge=1, le=65535)
    cors_origins: str = Field(default="*")

    # Database
    database_url: str = Field(default="sqlite:///./careease.db")
    database_echo: bool = Field(default=False)

    # Sessions
    jwt_secret: str = Field(default=DEFAULT_JWT_SECRET)
    jwt_algorithm: str = Field(default="HS256")
    session_ttl_minutes: int = Field(default=60 * 24 * 7, ge=1)

    # Plans
    free_patient_limit: int = Field(default=2, ge=0)
    payment_webhook_secret: str = Field(default="whsec-dev")

    # Policy
    family_can_resolve_alerts: bool = Field(default=True)

    # Change feed
    realtime_poll_interval: float = Field(default=1.0, gt=0)
    realtime_batch_size: int = Field(default=100, ge=1, le=1000)
    change_retention_days: int = Field(default=30, ge=1)

    @model_validator(mode="after")
    def check_production_secrets(self) -> "Settings":
        if self.environment == "production" and self.jwt_secret == DEFAULT_JWT_SECRET:
            raise ValueError("JWT_SECRET must be set in production")
        return self

    @property
    def cors_origin_list(self) -> List[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    @property
    def is_memory_db(self) -> bool:
        return self.database_url in ("sqlite://", "sqlite:///:memory:")


settings = Settings()
