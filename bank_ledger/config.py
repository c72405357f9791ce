"""
Application configuration using Pydantic Settings.

All configuration is loaded from environment variables, with an optional .env file
as a fallback. This pattern keeps secrets out of source code — the .env file is
gitignored and never committed.

Pydantic Settings automatically:
  1. Reads from environment variables (highest priority)
  2. Falls back to .env file values
  3. Uses defaults defined here (lowest priority)

Usage:
    from bank_ledger.config import settings
    print(settings.SECRET_KEY)
"""

from decimal import Decimal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Central configuration for the ledger service.

    Required fields (no defaults) MUST be set in .env or environment:
      - SECRET_KEY: Used to sign JWT tokens
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # --- Application ---
    APP_NAME: str = "Bank Ledger"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = False

    # --- Database ---
    # SQLite for local runs; swap to a PostgreSQL (asyncpg) URL for production
    DATABASE_URL: str = "sqlite+aiosqlite:///./data/ledger.db"

    # --- Authentication ---
    # REQUIRED: No default — forces the deployer to set a real secret
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    # --- CORS ---
    ALLOWED_ORIGINS: list[str] = ["http://localhost:3000"]

    # --- Logging ---
    LOG_LEVEL: str = "INFO"
    # JSON lines for log shippers; console rendering is easier to read locally
    LOG_JSON: bool = True

    # --- Ledger ---
    DEFAULT_CURRENCY: str = "USD"
    # Largest amount a single transaction (or opening deposit) may carry
    MAX_TRANSACTION_AMOUNT: Decimal = Decimal("1000000000")
    # Ceiling on any stored balance; keeps the integer column well inside int64
    MAX_BALANCE: Decimal = Decimal("100000000000000")

    # --- Events ---
    # Upper bound on undelivered outcome events held in memory
    EVENT_QUEUE_SIZE: int = 10_000

    # --- Notifications ---
    NOTIFICATION_MAX_PER_WINDOW: int = 100
    NOTIFICATION_WINDOW_SECONDS: int = 3600

    # --- Recurring payments ---
    RECURRING_SCHEDULER_ENABLED: bool = True
    # Hour of day (UTC) at which due recurring payments are processed
    RECURRING_RUN_HOUR: int = 0


# Singleton: import this instance everywhere instead of creating new Settings()
settings = Settings()
