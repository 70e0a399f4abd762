"""Application configuration models."""

from __future__ import annotations

from functools import lru_cache
from typing import Annotated, Iterable, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


DEFAULT_EPISODE_MILESTONES: tuple[int, ...] = (10, 50, 100, 250, 500, 1_000)
DEFAULT_MOVIE_MILESTONES: tuple[int, ...] = (1, 10, 25, 50, 100)


def _parse_milestones(value: object, *, name: str) -> tuple[int, ...]:
    if isinstance(value, str):
        raw_values: list[object] = [part.strip() for part in value.split(",")]
    elif isinstance(value, Iterable):
        raw_values = list(value)
    else:
        raise ValueError(f"{name} must be a string or iterable of integers")

    cleaned: set[int] = set()
    for entry in raw_values:
        if entry is None or entry == "":
            continue
        try:
            threshold = int(str(entry))
        except ValueError as exc:
            raise ValueError(f"{name} entries must be integers") from exc
        if threshold <= 0:
            raise ValueError(f"{name} entries must be positive")
        cleaned.add(threshold)
    return tuple(sorted(cleaned))


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file."""

    app_name: str = Field(default="KeepWatching Status", alias="APP_NAME")
    server_host: str = Field(default="0.0.0.0", alias="HOST")
    server_port: int = Field(default=3000, alias="PORT")

    database_url: str = Field(
        default="sqlite+aiosqlite:///./keepwatching.db", alias="DATABASE_URL"
    )

    environment: Literal["development", "production"] = Field(
        default="development", alias="ENVIRONMENT"
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO", alias="LOG_LEVEL"
    )

    profile_cache_seconds: int = Field(
        default=300, alias="PROFILE_CACHE_TTL", ge=0, le=86_400
    )
    profile_cache_max_entries: int = Field(
        default=1024, alias="PROFILE_CACHE_MAX_ENTRIES", ge=1
    )

    achievements_enabled: bool = Field(default=True, alias="ACHIEVEMENTS_ENABLED")
    episode_milestones: Annotated[tuple[int, ...], NoDecode] = Field(
        default=DEFAULT_EPISODE_MILESTONES, alias="EPISODE_MILESTONES"
    )
    movie_milestones: Annotated[tuple[int, ...], NoDecode] = Field(
        default=DEFAULT_MOVIE_MILESTONES, alias="MOVIE_MILESTONES"
    )

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalise_log_level(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().upper()
        return value

    @field_validator("episode_milestones", mode="before")
    @classmethod
    def _parse_episode_milestones(cls, value: object) -> tuple[int, ...]:
        """Accept comma separated thresholds and return them sorted."""

        if value is None:
            return DEFAULT_EPISODE_MILESTONES
        return _parse_milestones(value, name="EPISODE_MILESTONES")

    @field_validator("movie_milestones", mode="before")
    @classmethod
    def _parse_movie_milestones(cls, value: object) -> tuple[int, ...]:
        if value is None:
            return DEFAULT_MOVIE_MILESTONES
        return _parse_milestones(value, name="MOVIE_MILESTONES")

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]


settings = get_settings()
