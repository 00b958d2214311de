from __future__ import annotations

from functools import lru_cache
from typing import Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    This uses pydantic-settings so that we get type validation and defaults.
    Settings are loaded from environment variables with optional .env file override.
    """

    # App basics
    ENV: Literal["development", "staging", "production"] = "development"
    """Environment mode: affects logging, provider client choice and error handling."""

    DEBUG: bool = True
    """Enable debug mode: verbose logging and development features."""

    # DB
    DATABASE_URL: Optional[str] = None
    """Database connection URL. If None, uses SQLite for development."""

    TEST_DATABASE_URL: Optional[str] = None
    """Test database URL. Separate from main DB for testing."""

    # Webhooks
    PAYMENT_WEBHOOK_SECRET: Optional[str] = None
    """Shared secret expected in the x-webhook-secret header. Unset rejects every delivery."""

    WEBHOOK_STUCK_AFTER_MINUTES: int = 15
    """Unprocessed webhook rows older than this are reported as stuck."""

    # Provider
    OPERATION_CLIENT_TYPE: Literal["mock", "tecnospeed"] = "mock"
    """Provider client used to create and check operations."""

    TECNOSPEED_ENVIRONMENT: Literal["sandbox", "staging", "production"] = "staging"
    """TecnoSpeed environment; anything but production hits the sandbox hosts."""

    TECNOSPEED_TOKEN: Optional[str] = None
    """Software-house token for TecnoSpeed APIs."""

    TECNOSPEED_CNPJ_SOFTWAREHOUSE: Optional[str] = None
    """Software-house CNPJ for TecnoSpeed APIs."""

    TECNOSPEED_LOGIN_AUTH: Optional[str] = None
    """LoginAuth header for the Open Finance API (falls back to the software-house CNPJ)."""

    TECNOSPEED_PAYER_CNPJ: Optional[str] = None
    """Default payer CNPJ sent when fetching statements."""

    PROVIDER_TIMEOUT_SECONDS: float = 30.0
    """Timeout for outbound provider requests."""

    # Polling
    POLL_MAX_ATTEMPTS: int = 40
    """Non-terminal checks before a poller gives up with a timeout."""

    POLL_BASE_INTERVAL_MS: int = 5000
    """Base delay between status checks in milliseconds."""

    # Model config
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance to avoid re-parsing .env repeatedly.

    Uses LRU cache to ensure only one Settings instance exists per process,
    improving performance and ensuring consistency.
    """
    return Settings()
