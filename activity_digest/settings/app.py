"""Application settings powered by Pydantic BaseSettings."""

from pathlib import Path
from typing import Annotated, Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class AppSettings(BaseSettings):
    """Centralized environment configuration.

    Every field can be set through a ``DIGEST_``-prefixed environment
    variable (e.g. ``DIGEST_MAX_TOP_TOPICS=5``) or a ``.env`` file.
    """

    model_config = SettingsConfigDict(
        env_prefix="DIGEST_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    state_path: Path = Field(default=Path("state/digest.sqlite"))
    outbox_dir: Path = Field(default=Path("outbox"))
    min_topic_age_divisor: Annotated[int, Field(ge=1, le=1000)] = 4
    max_top_topics: Annotated[int, Field(ge=1, le=1000)] = 10
    max_workers: Annotated[int, Field(ge=1, le=64)] = 4
    batch_size: Annotated[int, Field(ge=1)] = 500
    tick_minutes: Annotated[int, Field(ge=1)] = 5
    lease_seconds: Annotated[int, Field(ge=1)] = 600
    topic_ranking: Literal["recency", "replies"] = "recency"
    json_logs: bool = True
    log_level: str = "INFO"


def get_settings() -> AppSettings:
    """Get a settings instance."""
    return AppSettings()
