"""Application settings and configuration."""

from typing import Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    ENV: Literal["dev", "staging", "prod", "test"] = Field(default="dev")
    PROJECT_NAME: str = Field(default="Safety Management Trust & Sync API")

    # API
    API_PREFIX: str = Field(default="/v1")

    # Database (server-side MFA store)
    DATABASE_URL: str = Field(default="sqlite+aiosqlite:///./safetrust.db")

    # Comma-separated in the environment
    CORS_ORIGINS: str | list[str] = Field(default=["http://localhost:3000", "http://localhost:3001"])
    # Peers allowed to set X-Forwarded-For / X-Real-IP
    TRUSTED_PROXIES: str | list[str] = Field(default_factory=list)

    # Logging
    LOG_LEVEL: str = Field(default="INFO")
    LOG_FORMAT: Literal["json", "text"] = Field(default="json")

    # Security - JWT
    JWT_SECRET: str | None = Field(default=None)
    JWT_ALG: str = Field(default="HS256")
    ACCESS_TOKEN_EXPIRE_MINUTES: int = Field(default=15)

    # MFA
    MFA_ENCRYPTION_KEY: str | None = Field(default=None)  # Fernet key for encrypting TOTP secrets
    MFA_TOTP_ISSUER: str = Field(default="SMS Management System")
    MFA_TOTP_SECRET_LENGTH: int = Field(default=32)
    MFA_TOTP_VALID_WINDOW: int = Field(default=2)  # ±2 time steps (60 seconds)
    MFA_BACKUP_CODES_COUNT: int = Field(default=10)
    MFA_BACKUP_CODE_PEPPER: str | None = Field(default=None)
    MFA_MAX_ATTEMPTS: int = Field(default=5)
    MFA_ATTEMPT_WINDOW_SECONDS: int = Field(default=900)  # 15 minutes
    MFA_SMS_CODE_TTL_SECONDS: int = Field(default=300)  # 5 minutes
    MFA_TOKEN_EXPIRE_MINUTES: int = Field(default=5)  # MFA pending token TTL

    # Notifications
    EMAIL_BACKEND: str = Field(default="console")  # console, smtp
    EMAIL_HOST: str = Field(default="localhost")
    EMAIL_PORT: int = Field(default=1025)
    EMAIL_FROM: str = Field(default="noreply@local.test")
    EMAIL_USE_TLS: bool = Field(default=False)
    EMAIL_USE_SSL: bool = Field(default=False)
    EMAIL_USERNAME: str | None = Field(default=None)
    EMAIL_PASSWORD: str | None = Field(default=None)
    SMS_BACKEND: str = Field(default="console")  # console, http
    SMS_GATEWAY_URL: str | None = Field(default=None)
    SMS_GATEWAY_TOKEN: str | None = Field(default=None)

    # Offline queue (device side)
    OFFLINE_DB_PATH: str = Field(default="sms_offline.db")
    OFFLINE_API_BASE_URL: str = Field(default="http://localhost:3001/api/v1")
    OFFLINE_API_TIMEOUT_SECONDS: float = Field(default=30.0)
    OFFLINE_MAX_RETRIES: int = Field(default=3)
    OFFLINE_RETRY_BACKOFF_SECONDS: float = Field(default=0.0)  # 0 retries on the next cycle
    OFFLINE_SYNC_INTERVAL_SECONDS: float | None = Field(default=None)
    OFFLINE_CONNECTIVITY_PROBE_URL: str | None = Field(default=None)

    @field_validator("CORS_ORIGINS", "TRUSTED_PROXIES", mode="before")
    @classmethod
    def split_comma_list(cls, value: str | list[str]) -> list[str]:
        """Accept a comma-separated string from the environment."""
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value

    @model_validator(mode="after")
    def check_production(self) -> "Settings":
        """Fail fast when a production deploy is missing its secrets."""
        if self.ENV != "prod":
            return self
        if not self.JWT_SECRET or self.JWT_SECRET == "change_me_super_secret":
            raise ValueError("JWT_SECRET must be set in production")
        if not self.MFA_ENCRYPTION_KEY:
            raise ValueError("MFA_ENCRYPTION_KEY must be set in production")
        if not self.MFA_BACKUP_CODE_PEPPER:
            raise ValueError("MFA_BACKUP_CODE_PEPPER must be set in production")
        if self.DATABASE_URL.startswith("sqlite"):
            raise ValueError("DATABASE_URL must point at a server database in production")
        return self


settings = Settings()
