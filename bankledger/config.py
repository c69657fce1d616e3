"""
Application configuration using Pydantic Settings.

All configuration is loaded from environment variables, with an optional .env file
as a fallback. Secrets stay out of source code: the .env file is gitignored and
.env.example lists every variable with a safe placeholder.

Two values are REQUIRED and have no default:
  - SECRET_KEY: signs session and pending two-factor JWTs
  - DATA_ENCRYPTION_KEY: the AES-256-GCM key for account numbers, IBANs and
    TOTP secrets is derived from it

If either is missing or empty, instantiating Settings raises a
pydantic.ValidationError at import time and the process refuses to start.

Usage:
    from bankledger.config import settings
    print(settings.SESSION_TTL_MINUTES)
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Central configuration for the ledger API."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # --- Application ---
    APP_NAME: str = "Bank Ledger API"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = False

    # --- Logging ---
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str | None = None

    # --- Database ---
    # SQLite for development; use postgresql+asyncpg://... in production
    DATABASE_URL: str = "sqlite+aiosqlite:///./data/bank.db"

    # --- Tokens ---
    SECRET_KEY: str = Field(min_length=1)
    ALGORITHM: str = "HS256"
    SESSION_TTL_MINUTES: int = 15
    PENDING_2FA_TTL_MINUTES: int = 5

    # --- Cookies ---
    SESSION_COOKIE_NAME: str = "banking_session"
    PENDING_COOKIE_NAME: str = "banking_pending_2fa"
    COOKIE_SECURE: bool = False

    # --- Encryption at rest ---
    DATA_ENCRYPTION_KEY: str = Field(min_length=1)

    # --- Two-factor authentication ---
    TOTP_ISSUER: str = "Banking System"
    TOTP_PERIOD: int = 30
    # Number of time steps accepted on each side of the current one
    TOTP_VALID_WINDOW: int = 1

    # --- Auth rate limiting ---
    # Attempts per client and identity on login, 2FA verify and regenerate
    AUTH_RATE_LIMIT_ATTEMPTS: int = 10
    AUTH_RATE_LIMIT_WINDOW_SECONDS: int = 900

    # --- External payments rail ---
    # Unset means the inbound endpoint answers 503
    EXTERNAL_PAYMENTS_API_KEY: str | None = None

    # --- IBAN generation ---
    IBAN_COUNTRY_CODE: str = "DE"
    IBAN_BANK_CODE: str = "37040044"
    IBAN_ACCOUNT_DIGITS: int = 10

    # --- CORS ---
    ALLOWED_ORIGINS: list[str] = ["http://localhost:3000"]


# Singleton: import this instance everywhere instead of creating new Settings()
settings = Settings()
