"""Application configuration loaded from environment variables."""

from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

from marketplace.core.exceptions import ConfigError
from marketplace.core.security import TokenCodecConfig

BASE_DIR = Path(__file__).resolve().parents[2]


class Settings(BaseSettings):
    APP_NAME: str = "Marketplace API"
    ENV: str = "development"

    DATABASE_URL: str = "postgresql+psycopg://postgres@localhost:5432/marketplace"
    DB_POOL_TIMEOUT_SECONDS: int = 10
    # Upper bound for a single statement, including time spent waiting on row locks.
    DB_STATEMENT_TIMEOUT_SECONDS: float = 5.0

    # Access and refresh tokens are signed with independent secrets.
    JWT_ACCESS_SECRET: str = ""
    JWT_REFRESH_SECRET: str = ""
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 15
    REFRESH_TOKEN_EXPIRE_DAYS: int = 7
    REVOKE_SESSIONS_ON_REFRESH_REUSE: bool = True

    REFRESH_TOKEN_CLEANUP_ENABLED: bool = True
    REFRESH_TOKEN_CLEANUP_INTERVAL_SECONDS: int = 3600
    REFRESH_TOKEN_CLEANUP_STARTUP_DELAY_SECONDS: int = 60

    LOG_LEVEL: str = "INFO"
    CORS_ORIGINS: str = "http://localhost:3001"
    ALLOWED_HOSTS: str = "*"

    model_config = SettingsConfigDict(env_file=str(BASE_DIR / ".env"), env_file_encoding="utf-8")

    @property
    def cors_origins(self) -> list[str]:
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

    @property
    def allowed_hosts(self) -> list[str]:
        hosts = [host.strip() for host in self.ALLOWED_HOSTS.split(",") if host.strip()]
        return hosts or ["*"]

    @property
    def is_production(self) -> bool:
        return self.ENV.strip().lower() == "production"

    def token_codec_config(self) -> TokenCodecConfig:
        return TokenCodecConfig(
            access_secret=self.JWT_ACCESS_SECRET,
            refresh_secret=self.JWT_REFRESH_SECRET,
            algorithm=self.JWT_ALGORITHM,
            access_ttl_seconds=self.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
            refresh_ttl_seconds=self.REFRESH_TOKEN_EXPIRE_DAYS * 24 * 60 * 60,
        )

    def validate_runtime_security(self) -> None:
        if not self.JWT_ACCESS_SECRET.strip():
            raise ConfigError("Missing required setting: JWT_ACCESS_SECRET", setting="JWT_ACCESS_SECRET")
        if not self.JWT_REFRESH_SECRET.strip():
            raise ConfigError("Missing required setting: JWT_REFRESH_SECRET", setting="JWT_REFRESH_SECRET")
        if self.JWT_ACCESS_SECRET == self.JWT_REFRESH_SECRET:
            raise ConfigError("JWT_ACCESS_SECRET and JWT_REFRESH_SECRET must differ", setting="JWT_REFRESH_SECRET")
        if self.is_production:
            for name in ("JWT_ACCESS_SECRET", "JWT_REFRESH_SECRET"):
                if getattr(self, name).strip() in {"change-me", "secret"}:
                    raise ConfigError(f"{name} uses a placeholder value in production", setting=name)


settings = Settings()
