# backend/app/core/config.py
"""
Production-ready configuration using pydantic-settings.

Security considerations:
- CRYPT_KEY must be set via env in production (the default is for dev only)
- TOTP parameters are validated at load time (leeway < period, etc.)
- Database URLs normalized for async drivers automatically
- Debug/echo modes disabled in production by default
"""
from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from backend.app.security.totp import validate_parameters

INSECURE_DEV_CRYPT_KEY = "INSECURE_DEV_KEY_CHANGE_IN_PRODUCTION"


class Settings(BaseSettings):
    """
    Strictly typed application settings.

    Priority for loading:
    1. Environment variables (highest priority)
    2. .env file (via pydantic-settings)
    3. Default values (lowest priority, dev-safe only)
    """

    # ─────────────────────────────────────────────────────────────
    # Application metadata
    # ─────────────────────────────────────────────────────────────
    PROJECT_NAME: str = "TotpGuard"
    PROJECT_VERSION: str = "1.0.0"
    API_V1_STR: str = "/api/v1"

    # ─────────────────────────────────────────────────────────────
    # Environment mode
    # Used to toggle behaviors between dev/production safely
    # ─────────────────────────────────────────────────────────────
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    # ─────────────────────────────────────────────────────────────
    # Database Configuration
    # Priority: DATABASE_URL env var → SQLite fallback for local dev
    # ─────────────────────────────────────────────────────────────
    DATABASE_URL: str = "sqlite+aiosqlite:///./totpguard.db"
    DATABASE_ECHO: bool = False

    TOTP_TABLE: str = "totp"
    BACKUP_CODE_TABLE: str = "otp_backup_code"

    @field_validator("DATABASE_URL", mode="before")
    @classmethod
    def normalize_database_url(cls, v: str) -> str:
        """
        Normalize database URLs for async SQLAlchemy compatibility.

        Conversions:
        - postgres://     → postgresql+asyncpg://
        - postgresql://   → postgresql+asyncpg://
        - sqlite:///      → sqlite+aiosqlite:///
        """
        if v is None:
            return "sqlite+aiosqlite:///./totpguard.db"

        url = v.strip()

        if url.startswith("postgres://"):
            return url.replace("postgres://", "postgresql+asyncpg://", 1)

        if url.startswith("postgresql://") and "+asyncpg" not in url:
            return url.replace("postgresql://", "postgresql+asyncpg://", 1)

        if url.startswith("sqlite:///") and "+aiosqlite" not in url:
            return url.replace("sqlite:///", "sqlite+aiosqlite:///", 1)

        return url

    # ─────────────────────────────────────────────────────────────
    # Secret encryption
    # CRYPT_KEY MUST be set in production via environment variable.
    # Changing it makes every stored TOTP secret undecryptable.
    # ─────────────────────────────────────────────────────────────
    CRYPT_CIPHER: Literal["AES-128-CBC", "AES-192-CBC", "AES-256-CBC"] = "AES-128-CBC"
    CRYPT_ITERATIONS: int = Field(default=100_000, gt=0)
    CRYPT_KDF_ALGORITHM: Literal["sha256", "sha384", "sha512"] = "sha256"
    CRYPT_AUTHORIZATION_KEY_INFO: str = Field(default="TotpAuthorizationKey", min_length=1)
    CRYPT_KEY: str = Field(default=INSECURE_DEV_CRYPT_KEY, min_length=1)

    # ─────────────────────────────────────────────────────────────
    # TOTP
    # Defaults work for Google Authenticator and similar apps
    # ─────────────────────────────────────────────────────────────
    TOTP_DIGEST: Literal["sha1", "sha256", "sha512"] = "sha1"
    TOTP_DIGITS: int = 6
    TOTP_LEEWAY: int = 2
    TOTP_PERIOD: int = 30
    TOTP_SECRET_LENGTH: int = 48

    # ─────────────────────────────────────────────────────────────
    # Backup codes
    # ─────────────────────────────────────────────────────────────
    BACKUP_CODE_COUNT: int = Field(default=10, gt=0)
    BACKUP_CODE_LENGTH: int = Field(default=16, ge=8)
    BACKUP_CODE_HASH_SCHEME: str = "pbkdf2_sha256"

    @model_validator(mode="after")
    def check_totp_parameters(self) -> "Settings":
        validate_parameters(
            self.TOTP_DIGEST,
            self.TOTP_DIGITS,
            self.TOTP_PERIOD,
            self.TOTP_LEEWAY,
        )
        if self.TOTP_SECRET_LENGTH < 16 or self.TOTP_SECRET_LENGTH % 8:
            raise ValueError("TOTP_SECRET_LENGTH must be a multiple of 8 and at least 16")
        return self

    # ─────────────────────────────────────────────────────────────
    # Pydantic Settings Configuration
    # ─────────────────────────────────────────────────────────────
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.ENVIRONMENT.lower() == "production"

    @property
    def is_sqlite(self) -> bool:
        """Check if using SQLite database (local development)."""
        return "sqlite" in self.DATABASE_URL.lower()

    @property
    def uses_insecure_crypt_key(self) -> bool:
        return self.CRYPT_KEY == INSECURE_DEV_CRYPT_KEY


@lru_cache()
def get_settings() -> Settings:
    """
    Cached settings instance.

    Settings are only loaded once, giving consistent configuration
    across the application.
    """
    return Settings()


settings = get_settings()
