"""Configuration management for the marketplace API."""

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

from errors import ConfigurationError

ROOT_DIR = Path(__file__).parent

DEFAULT_ORIGINS = [
    "http://localhost:5173",
    "http://localhost:5174",
    "https://real-estate-client-2025.web.app",
    "https://real-estate-client-2025.firebaseapp.com",
]


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}")


@dataclass
class Settings:
    """Runtime settings, read from the environment."""

    database_url: str | None = None
    database_name: str = "realEstate"
    allowed_origins: list[str] = field(default_factory=lambda: list(DEFAULT_ORIGINS))
    payment_gateway_key: str | None = None
    payment_currency: str = "usd"
    firebase_credentials: str | None = None
    request_timeout_ms: int = 10000
    log_level: str = "INFO"
    log_format: str = "standard"
    port: int = 8000

    @classmethod
    def from_env(cls) -> "Settings":
        """Create settings from environment variables (and ``.env``)."""
        load_dotenv(ROOT_DIR / ".env")

        origins = os.getenv("ALLOWED_ORIGINS")
        allowed = [o.strip() for o in origins.split(",") if o.strip()] if origins else list(DEFAULT_ORIGINS)

        return cls(
            database_url=os.getenv("DATABASE_URL") or None,
            database_name=os.getenv("DATABASE_NAME", "realEstate"),
            allowed_origins=allowed,
            payment_gateway_key=os.getenv("PAYMENT_GATEWAY_KEY") or None,
            payment_currency=os.getenv("PAYMENT_CURRENCY", "usd"),
            firebase_credentials=os.getenv("FIREBASE_CREDENTIALS") or None,
            request_timeout_ms=_int_env("REQUEST_TIMEOUT_MS", 10000),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "standard"),
            port=_int_env("PORT", 8000),
        )


settings = Settings.from_env()
