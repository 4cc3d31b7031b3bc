from __future__ import annotations

import datetime as dt
import os
from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseAppSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    APP_NAME: str = "BulkMail"
    ENV: str = "dev"
    DATABASE_URL: str | None = None
    APP_URL: str = "http://localhost:8000"

    # At-rest encryption of recipients/subjects and keyed hashing of IP/SMTP identities.
    # Both must be set explicitly; there is no built-in fallback secret.
    ENCRYPTION_KEY: str | None = None
    IDENTIFIER_HASH_PEPPER: str | None = None

    JWT_SECRET: str = "change_me"

    # Quota
    MONTHLY_EMAIL_LIMIT: int = 100
    # Accounts created before this instant are on the UNLIMITED plan
    UNLIMITED_PLAN_CUTOFF: dt.datetime = dt.datetime(2025, 12, 24, 15, 0, tzinfo=dt.timezone.utc)

    # Retry bookkeeping for the dispatcher
    DEFAULT_MAX_RETRIES: int = 3
    RETRY_BACKOFF_MINUTES: int = 5

    RATE_LIMIT_STORAGE_URI: str = "memory://"
    CORS_ALLOW_ORIGINS: list[str] = ["*"]
    CORS_ALLOW_METHODS: list[str] = ["*"]
    CORS_ALLOW_HEADERS: list[str] = ["*"]
    CORS_ALLOW_CREDENTIALS: bool = False
    HSTS_SECONDS: int = 31_536_000
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "plain"

    @model_validator(mode="after")
    def _validate_required_fields(self) -> BaseAppSettings:
        # Convert Heroku's postgres:// URL to postgresql://
        if self.DATABASE_URL and self.DATABASE_URL.startswith("postgres://"):
            self.DATABASE_URL = self.DATABASE_URL.replace("postgres://", "postgresql://", 1)

        # Browsers reject credentialed responses for a wildcard origin
        if "*" in self.CORS_ALLOW_ORIGINS:
            self.CORS_ALLOW_CREDENTIALS = False

        required_in_prod = (
            "DATABASE_URL",
            "ENCRYPTION_KEY",
            "IDENTIFIER_HASH_PEPPER",
            "JWT_SECRET",
        )
        if self.ENV.lower() == "prod":
            missing = [name for name in required_in_prod if not getattr(self, name)]
            if missing:
                raise ValueError(f"Missing required production settings: {', '.join(missing)}")
            if self.JWT_SECRET == "change_me":
                raise ValueError("Insecure default secrets in production: JWT_SECRET uses default placeholder")
        return self


class DevSettings(BaseAppSettings):
    ENV: str = "dev"
    DATABASE_URL: str = "sqlite:///./storage/dev.db"
    ENCRYPTION_KEY: str | None = "dev-encryption-key-not-for-production"
    IDENTIFIER_HASH_PEPPER: str | None = "dev-identifier-pepper-not-for-production"


class TestSettings(BaseAppSettings):
    ENV: str = "test"
    DATABASE_URL: str = "sqlite:///:memory:"
    ENCRYPTION_KEY: str | None = "test-encryption-key"
    IDENTIFIER_HASH_PEPPER: str | None = "test-identifier-pepper"
    JWT_SECRET: str = "test-jwt-secret"


class ProdSettings(BaseAppSettings):
    ENV: str = "prod"
    CORS_ALLOW_ORIGINS: list[str] = []
    LOG_FORMAT: str = "json"


_ENV_TO_SETTINGS: dict[str, type[BaseAppSettings]] = {
    "dev": DevSettings,
    "development": DevSettings,
    "test": TestSettings,
    "testing": TestSettings,
    "prod": ProdSettings,
    "production": ProdSettings,
}


@lru_cache
def get_settings() -> BaseAppSettings:
    env_name = os.getenv("APP_ENV") or os.getenv("ENV") or "dev"
    env = env_name.lower()
    settings_cls = _ENV_TO_SETTINGS.get(env, DevSettings)
    return settings_cls()


settings = get_settings()
