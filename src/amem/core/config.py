"""
Configuration management for Assistant Memory.

Uses pydantic-settings for environment variable binding.
Variable names match the deployment environment (STORAGE_MODE, MONGODB_URI,
JSON_STORAGE_PATH, ...) and can also be supplied through a `.env` file.
"""

import logging
import sys
from pathlib import Path
from typing import Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


StorageMode = Literal["json", "database", "auto"]


class Settings(BaseSettings):
    """Application settings with environment variable binding."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ==========================================
    # Storage Selection
    # ==========================================
    storage_mode: StorageMode = "auto"
    """Which backend to activate at startup: json, database, or auto."""

    # ==========================================
    # Document Database (MongoDB)
    # ==========================================
    mongodb_uri: str | None = None
    """Connection string. Required in database mode, optional in auto mode."""

    mongodb_database: str = "assistant_memory"
    """Database name used when the URI does not name one."""

    mongodb_timeout_ms: int = 5000
    """Server selection timeout for the one-time startup connection."""

    # ==========================================
    # Flat-file JSON Storage
    # ==========================================
    json_storage_path: Path = Path("./data")
    """Root directory holding one <collection>.json file per collection."""

    # ==========================================
    # HTTP API
    # ==========================================
    api_host: str = "0.0.0.0"
    api_port: int = 3000

    # ==========================================
    # Logging
    # ==========================================
    log_level: str = "INFO"
    log_file: Path | None = None

    @field_validator("storage_mode", mode="before")
    @classmethod
    def _normalize_mode(cls, value):
        if isinstance(value, str):
            value = value.strip().lower()
            # Older deployments used the driver name for the database mode
            if value == "mongodb":
                return "database"
        return value

    @field_validator("mongodb_uri", mode="before")
    @classmethod
    def _blank_uri_is_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value

    def ensure_directories(self) -> None:
        """Create the JSON storage root if it doesn't exist."""
        self.json_storage_path.mkdir(parents=True, exist_ok=True)


# Global settings instance
settings = Settings()


def setup_logging(level: str | None = None, log_file: Path | None = None) -> None:
    """Configure application logging."""
    log_level = level or settings.log_level
    log_file = log_file or settings.log_file

    handlers: list[logging.Handler] = [
        logging.StreamHandler(sys.stdout),
    ]

    if log_file:
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        handlers=handlers,
    )

    # Quiet noisy libraries
    logging.getLogger("pymongo").setLevel(logging.WARNING)
    logging.getLogger("motor").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a logger with the given name."""
    return logging.getLogger(f"amem.{name}")
