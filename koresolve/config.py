"""Configuration settings for koresolve.

Uses pydantic-settings for config parsing from environment variables
and defaults. Configuration precedence: CLI flags > project config >
env vars > defaults.
"""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Minimal public base image used when nothing else is configured
FALLBACK_BASE_IMAGE = "gcr.io/distroless/static:nonroot"


class Settings(BaseSettings):
    """Application settings.

    Settings are loaded from environment variables with the KORESOLVE_ prefix.
    CLI flags and the project config file can override these at runtime.
    """

    model_config = SettingsConfigDict(
        env_prefix="KORESOLVE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Base images
    default_base_image: str | None = Field(
        default=None,
        description=(
            "Default base image when the project config sets none "
            f"(falls back to {FALLBACK_BASE_IMAGE})"
        ),
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )

    # Concurrency
    max_concurrent_resolves: int = Field(
        default=4,
        ge=1,
        le=64,
        description="Maximum targets resolved in parallel",
    )

    # Registry access
    registry_timeout: float = Field(
        default=30.0,
        gt=0,
        description="Timeout for a single registry request (seconds)",
    )
    registry_retries: int = Field(
        default=3,
        ge=0,
        le=10,
        description="Retries for transient registry failures",
    )
    registry_backoff: float = Field(
        default=0.5,
        ge=0,
        description="Initial backoff between registry retries (seconds), doubled each retry",
    )
    insecure_registries: list[str] = Field(
        default_factory=list,
        description="Registries reached over plain HTTP (e.g. localhost:5000)",
    )

    # Timeouts (in seconds)
    resolve_timeout: float | None = Field(
        default=None,
        gt=0,
        description="Deadline for a caller waiting on a base image (None = wait forever)",
    )


def get_settings() -> Settings:
    """Get the application settings.

    Returns:
        Settings instance loaded from environment.
    """
    return Settings()


def print_settings_json(settings: Settings | None = None) -> str:
    """Render effective settings as JSON.

    Args:
        settings: Optional settings instance; uses default if not provided.

    Returns:
        JSON string of effective settings.
    """
    if settings is None:
        settings = get_settings()
    return settings.model_dump_json(indent=2)


__all__ = ["FALLBACK_BASE_IMAGE", "Settings", "get_settings", "print_settings_json"]
