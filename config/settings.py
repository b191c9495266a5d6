"""Centralized configuration management using environment variables."""

import os
from pathlib import Path
from typing import Any, Dict, Optional
from dotenv import load_dotenv
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session

# Load environment variables from .env file
load_dotenv()

# Project root directory
ROOT_DIR = Path(__file__).parent.parent


def _get_bool(key: str, default: str) -> bool:
    return os.getenv(key, default).lower() == "true"


def _get_int(key: str, default: int) -> int:
    return int(os.getenv(key, str(default)))


def _get_float(key: str, default: float) -> float:
    return float(os.getenv(key, str(default)))


class Settings:
    """Application settings loaded from environment variables."""

    def __init__(self):
        """Initialize settings from the environment."""
        # Database Configuration
        self.DATABASE_URL: str = os.getenv(
            "DATABASE_URL",
            f"sqlite:///{ROOT_DIR}/data/analytics.db"
        )

        # Ensure data directory exists for SQLite
        if self.DATABASE_URL.startswith("sqlite:///"):
            data_dir = ROOT_DIR / "data"
            data_dir.mkdir(exist_ok=True)

        # App Settings
        self.APP_NAME: str = os.getenv("APP_NAME", "Training Load Analytics")
        self.DEBUG: bool = _get_bool("DEBUG", "True")
        self.LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
        self.LOG_FILE: str = os.getenv("LOG_FILE", "")

        # Strava API Configuration (token issuance happens elsewhere)
        self.STRAVA_ACCESS_TOKEN: str = os.getenv("STRAVA_ACCESS_TOKEN", "")

        # Strava API Rate Limits
        self.STRAVA_RATE_LIMIT_15MIN: int = _get_int("STRAVA_RATE_LIMIT_15MIN", 100)
        self.RATE_LIMIT_WINDOW_SECONDS: int = _get_int("RATE_LIMIT_WINDOW_SECONDS", 900)
        self.RATE_LIMIT_MIN_DELAY_MS: int = _get_int("RATE_LIMIT_MIN_DELAY_MS", 200)
        self.RATE_LIMIT_THROTTLE_THRESHOLD: float = _get_float("RATE_LIMIT_THROTTLE_THRESHOLD", 0.9)
        self.RATE_LIMIT_MIN_THROTTLE_WAIT_SECONDS: float = _get_float("RATE_LIMIT_MIN_THROTTLE_WAIT_SECONDS", 5)
        self.RATE_LIMIT_BACKOFF_CAP_SECONDS: float = _get_float("RATE_LIMIT_BACKOFF_CAP_SECONDS", 120)
        self.RATE_LIMIT_BACKOFF_BUFFER_SECONDS: float = _get_float("RATE_LIMIT_BACKOFF_BUFFER_SECONDS", 5)
        self.RATE_LIMIT_DEFAULT_RETRY_AFTER_SECONDS: float = _get_float("RATE_LIMIT_DEFAULT_RETRY_AFTER_SECONDS", 30)
        self.RATE_LIMIT_MAX_RETRIES: int = _get_int("RATE_LIMIT_MAX_RETRIES", 5)

        # Power curve settings
        self.POWER_CURVE_PER_PAGE: int = _get_int("POWER_CURVE_PER_PAGE", 200)
        self.POWER_CURVE_MAX_PAGES: int = _get_int("POWER_CURVE_MAX_PAGES", 30)
        self.POWER_CURVE_CONCURRENCY: int = _get_int("POWER_CURVE_CONCURRENCY", 4)
        self.POWER_CURVE_SESSION_LIMIT: int = _get_int("POWER_CURVE_SESSION_LIMIT", 100)
        self.POWER_CURVE_DAYS: int = _get_int("POWER_CURVE_DAYS", 730)
        self.POWER_CURVE_MAX_AGE_HOURS: float = _get_float("POWER_CURVE_MAX_AGE_HOURS", 24)

        # Performance management chart settings
        self.PMC_DAYS: int = _get_int("PMC_DAYS", 90)
        self.PMC_MAX_PAGES: int = _get_int("PMC_MAX_PAGES", 25)

        # Fire-and-forget recomputations
        self.BACKGROUND_WORKERS: int = _get_int("BACKGROUND_WORKERS", 2)


# Global settings instance
settings = Settings()


# Database engine and session management
_engine: Optional[object] = None
_SessionLocal: Optional[sessionmaker] = None


def engine_options(database_url: str) -> Dict[str, Any]:
    """Keyword arguments for `create_engine` for the given URL."""
    options: Dict[str, Any] = {"pool_pre_ping": True, "echo": settings.DEBUG and settings.LOG_LEVEL == "DEBUG"}
    if database_url.startswith("sqlite"):
        # Used from background worker threads
        options["connect_args"] = {"check_same_thread": False}
    return options


def get_database_engine():
    """Get or create database engine singleton."""
    global _engine
    if _engine is None:
        _engine = create_engine(settings.DATABASE_URL, **engine_options(settings.DATABASE_URL))
    return _engine


def get_session_maker() -> sessionmaker:
    """Get or create session maker."""
    global _SessionLocal
    if _SessionLocal is None:
        _SessionLocal = sessionmaker(bind=get_database_engine(), autoflush=False, expire_on_commit=False)
    return _SessionLocal


def get_database_session() -> Session:
    """Get a new database session."""
    SessionLocal = get_session_maker()
    return SessionLocal()


def validate_settings():
    """Validate all settings are correctly configured."""
    errors = []

    if not settings.DATABASE_URL:
        errors.append("DATABASE_URL is not configured")

    if not settings.STRAVA_ACCESS_TOKEN:
        errors.append("STRAVA_ACCESS_TOKEN is not configured")

    if not 0 < settings.RATE_LIMIT_THROTTLE_THRESHOLD <= 1:
        errors.append("RATE_LIMIT_THROTTLE_THRESHOLD must be in (0, 1]")

    if settings.POWER_CURVE_CONCURRENCY < 1:
        errors.append("POWER_CURVE_CONCURRENCY must be at least 1")

    if settings.RATE_LIMIT_MAX_RETRIES < 0:
        errors.append("RATE_LIMIT_MAX_RETRIES must not be negative")

    if errors:
        error_msg = "\n".join([f"  - {err}" for err in errors])
        raise ValueError(f"Configuration errors:\n{error_msg}\n\nPlease update your .env file.")

    return True
