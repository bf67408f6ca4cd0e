"""Configuration settings for cache_dance.

Uses pydantic-settings for config parsing from environment variables
and defaults. Configuration precedence: CLI flags > env vars > defaults.
"""

from pathlib import Path
from typing import Any, Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from cache_dance.errors import ConfigError
from cache_dance.transfer.cachemap import (
    load_cache_map_file,
    load_cache_map_text,
    parse_cache_map,
)
from cache_dance.transfer.models import CacheMount
from cache_dance.types import DefinitionInput, JobMode, OutputStrategy

DEFAULT_UTILITY_IMAGE = "ghcr.io/containerd/busybox:latest"


class Settings(BaseSettings):
    """Application settings.

    Settings are loaded from environment variables with the CACHE_DANCE_
    prefix. CLI flags can override these at runtime.
    """

    model_config = SettingsConfigDict(
        env_prefix="CACHE_DANCE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Cache mounts
    cache_map: str | None = Field(
        default=None,
        description="Cache map as JSON text (source -> target or options)",
    )
    cache_map_file: Path | None = Field(
        default=None,
        description="Path to a JSON or YAML cache map",
    )
    cache_source: str | None = Field(
        default=None,
        description="Deprecated: single cache source, use cache_map",
    )
    cache_target: str | None = Field(
        default=None,
        description="Deprecated: single cache target, use cache_map",
    )

    # Paths and builder
    scratch_dir: Path = Field(
        default=Path("scratch"),
        description="Root of the per-job scratch directories",
    )
    utility_image: str = Field(
        default=DEFAULT_UTILITY_IMAGE,
        description="Image the dancefiles run in",
    )
    builder: str = Field(
        default="default",
        description="docker buildx builder name",
    )

    # Operational modes
    skip_extraction: bool = Field(
        default=False,
        description="Do not extract caches after the build",
    )
    job_mode: JobMode = Field(
        default=JobMode.PER_MOUNT,
        description="One build per mount, or one build for all mounts",
    )
    output_strategy: OutputStrategy = Field(
        default=OutputStrategy.LOCAL,
        description="Recover output through a local export or an image",
    )
    definition_input: DefinitionInput = Field(
        default=DefinitionInput.FILE,
        description="Pass dancefiles by file or on stdin",
    )
    use_sudo: bool = Field(
        default=True,
        description="Remove old cache directories with sudo",
    )
    timeout: float | None = Field(
        default=None,
        gt=0,
        description="Deadline in seconds for the whole transfer",
    )

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )
    verbose: bool = Field(
        default=False,
        description="Verbose logging",
    )


def get_settings() -> Settings:
    """Get the application settings.

    Returns:
        Settings instance loaded from environment.
    """
    return Settings()


def apply_overrides(settings: Settings, **overrides: Any) -> Settings:
    """Return a copy of settings with the non-None overrides applied.

    Values go through validation again, so CLI flags get the same checks
    as environment variables.
    """
    updates = {k: v for k, v in overrides.items() if v is not None}
    if not updates:
        return settings
    # A cache map given as an override replaces the inherited one in any form
    if "cache_map_file" in updates and "cache_map" not in updates:
        updates["cache_map"] = None
    if "cache_map" in updates and "cache_map_file" not in updates:
        updates["cache_map_file"] = None
    return Settings.model_validate({**settings.model_dump(), **updates})


def load_cache_mounts(settings: Settings) -> list[CacheMount]:
    """Resolve the configured cache map into CacheMount instances.

    The cache map text wins over the cache map file, which wins over the
    deprecated cache_source/cache_target pair.

    Raises:
        ConfigError: If no cache map is configured or it is malformed.
    """
    if settings.cache_map is not None:
        return load_cache_map_text(settings.cache_map)
    if settings.cache_map_file is not None:
        return load_cache_map_file(settings.cache_map_file)
    if settings.cache_source and settings.cache_target:
        return parse_cache_map({settings.cache_source: settings.cache_target})
    if settings.cache_source or settings.cache_target:
        raise ConfigError("cache_source and cache_target must be given together")
    raise ConfigError(
        "No cache map configured; set --cache-map, --cache-map-file or "
        "CACHE_DANCE_CACHE_MAP"
    )


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


__all__ = [
    "Settings",
    "apply_overrides",
    "get_settings",
    "load_cache_mounts",
    "print_settings_json",
]
