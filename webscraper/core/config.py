from __future__ import annotations

import os
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field


load_dotenv()


class Settings(BaseModel):
    """Runtime configuration values loaded from the environment."""

    app_name: str = Field(default="Web Scraper Engine")
    database_url: str = Field(default="sqlite:///./app.db")
    data_store_url: str = Field(default="sqlite:///./data-store.db")
    data_store_identifier_column: str = Field(default="id", min_length=1)
    log_level: str = Field(default="INFO")
    browser_headless: bool = True
    navigation_timeout_ms: int = Field(default=30_000, ge=1)
    max_instruction_steps: Optional[int] = Field(default=None, ge=1)

    class Config:
        frozen = True


def _get_env(name: str) -> Optional[str]:
    """Read an environment variable stripping whitespace and empty values."""

    value = os.getenv(name)
    if value is None:
        return None
    value = value.strip()
    return value or None


def _get_bool_env(name: str, default: bool) -> bool:
    value = _get_env(name)
    if value is None:
        return default
    return value.lower() in {"1", "true", "yes", "on"}


def _build_settings() -> Settings:
    """Construct settings object from environment variables."""

    max_steps = _get_env("MAX_INSTRUCTION_STEPS")
    return Settings(
        app_name=os.getenv("APP_NAME", "Web Scraper Engine"),
        database_url=os.getenv("DATABASE_URL", "sqlite:///./app.db"),
        data_store_url=os.getenv("DATA_STORE_URL", "sqlite:///./data-store.db"),
        data_store_identifier_column=os.getenv("DATA_STORE_IDENTIFIER_COLUMN", "id"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        browser_headless=_get_bool_env("BROWSER_HEADLESS", True),
        navigation_timeout_ms=int(os.getenv("NAVIGATION_TIMEOUT_MS", "30000")),
        max_instruction_steps=int(max_steps) if max_steps is not None else None,
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached application settings."""

    load_dotenv(override=False)
    return _build_settings()


def reload_settings() -> Settings:
    """Clear the settings cache and rebuild the configuration."""

    get_settings.cache_clear()  # type: ignore[attr-defined]
    return get_settings()


__all__ = ["Settings", "get_settings", "reload_settings"]
