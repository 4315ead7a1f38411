"""
Configuration management using pydantic-settings.

Loads configuration from environment variables and .env files.
Validates the cache identity and the worker's origin.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Cache identity:
        CACHE_GENERATION: Generation tag of the active Asset Cache. Changing
            it evicts every entry cached under another tag on activation.
        BLOB_STORE_NAME / BLOB_STORE_VERSION: Durable store file name and
            schema version. The schema is only upgraded when the version
            increases.

    Optional:
        CACHE_DIR: Directory holding both stores
        BLOB_STORE_MAX_BYTES: Quota for the blob store (total bytes)
        ORIGIN: Base URL that relative request paths resolve against
        PRECACHE_URLS: Paths fetched into the cache at install time
        PLACEHOLDER_URL: Fallback asset for model and image requests
        FETCH_TIMEOUT: Network timeout in seconds, transport default if unset
        LOG_LEVEL: Logging level
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    CACHE_DIR: Path = Field(default=Path(".cache"), description="Cache directory")

    CACHE_GENERATION: str = Field(
        default="model-cache-v2",
        description="Generation tag of the active asset cache",
    )

    BLOB_STORE_NAME: str = Field(
        default="modelBlobStorage", description="Durable blob store name"
    )
    BLOB_STORE_VERSION: int = Field(
        default=1, ge=1, description="Durable blob store schema version"
    )
    BLOB_STORE_MAX_BYTES: int | None = Field(
        default=None, ge=0, description="Blob store quota in bytes"
    )

    ORIGIN: str = Field(
        default="http://localhost:8080",
        description="Origin that relative asset paths are fetched from",
    )
    PRECACHE_URLS: list[str] = Field(
        default_factory=lambda: ["/", "/index.html", "/placeholder.svg"],
        description="Paths cached when the worker installs",
    )
    PLACEHOLDER_URL: str = Field(
        default="/placeholder.svg",
        description="Fallback served when a model or image cannot be fetched",
    )
    FETCH_TIMEOUT: float | None = Field(
        default=None, gt=0.0, description="Network timeout in seconds"
    )

    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )

    @field_validator("CACHE_GENERATION")
    @classmethod
    def validate_generation(cls, v: str) -> str:
        """A generation tag is a single non-blank token."""
        if not v.strip() or any(ch.isspace() for ch in v):
            raise ValueError("CACHE_GENERATION must be a non-blank tag without whitespace")
        return v

    @field_validator("ORIGIN")
    @classmethod
    def validate_origin(cls, v: str) -> str:
        """Validate that ORIGIN is an http(s) base URL."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("ORIGIN must be an http:// or https:// URL")
        return v.rstrip("/")

    @model_validator(mode="after")
    def validate_placeholder_is_precached(self) -> Settings:
        """The fallback asset is only served from cache, so it must be precached."""
        if self.PLACEHOLDER_URL not in self.PRECACHE_URLS:
            raise ValueError(
                f"PLACEHOLDER_URL {self.PLACEHOLDER_URL!r} must be listed in PRECACHE_URLS"
            )
        return self

    @property
    def blob_store_path(self) -> Path:
        return self.CACHE_DIR / f"{self.BLOB_STORE_NAME}.db"

    def ensure_directories(self) -> None:
        """Create the cache directory if it doesn't exist."""
        self.CACHE_DIR.mkdir(parents=True, exist_ok=True)

    def display(self) -> dict[str, str | int | float | None]:
        """Return settings for display."""
        return {
            "CACHE_DIR": str(self.CACHE_DIR),
            "CACHE_GENERATION": self.CACHE_GENERATION,
            "BLOB_STORE_NAME": self.BLOB_STORE_NAME,
            "BLOB_STORE_VERSION": self.BLOB_STORE_VERSION,
            "BLOB_STORE_MAX_BYTES": self.BLOB_STORE_MAX_BYTES,
            "ORIGIN": self.ORIGIN,
            "PRECACHE_URLS": ", ".join(self.PRECACHE_URLS),
            "PLACEHOLDER_URL": self.PLACEHOLDER_URL,
            "FETCH_TIMEOUT": self.FETCH_TIMEOUT,
            "LOG_LEVEL": self.LOG_LEVEL,
        }


@lru_cache
def get_settings() -> Settings:
    """Get cached settings singleton.

    Returns:
        Settings instance loaded from environment.

    Raises:
        ValidationError: If settings are invalid.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache (useful for testing)."""
    get_settings.cache_clear()
