"""Pydantic schema models for configuration.

This module defines the configuration models:
- Config: Top-level configuration container
- GitHubConfig: API endpoint, timeouts and quota retry ceiling
- SyncConfig: Background syncer intervals and history size
- StateConfig: Database location
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Literal

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

from pullmirror.paths import DEFAULT_DATABASE_NAME, data_dir


class GitHubConfig(BaseModel):
    """GitHub API configuration.

    Attributes:
        base_url: REST API root (GitHub Enterprise uses https://host/api/v3)
        user_agent: User-Agent header value
        timeout_seconds: Per-request timeout (1-300, default: 30)
        max_quota_retries: How many times a quota-exceeded request is retried
                           after waiting out the reset. None retries forever.
    """

    model_config = ConfigDict(extra="forbid")

    base_url: str = "https://api.github.com"
    user_agent: str = "pullmirror/0.1.0"
    timeout_seconds: Annotated[float, Field(gt=0, le=300)] = 30.0
    max_quota_retries: Annotated[int | None, Field(ge=0, le=100)] = 10

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        """Require an http(s) URL and drop any trailing slash."""
        if not v.startswith(("https://", "http://")):
            msg = "base_url must start with https:// or http://"
            raise ValueError(msg)
        return v.rstrip("/")


class SyncConfig(BaseModel):
    """Background syncer configuration.

    Attributes:
        running_checks_interval_seconds: Resync interval while checks run (default: 2)
        idle_interval_seconds: Resync interval with no running checks (default: 10)
        no_token_retry_seconds: Delay before retrying when no credential exists (default: 5)
        detail_sync_spacing_seconds: Pause between resource kinds in a full sync
        history_size: Maximum sync / rate-limit records kept for monitoring
    """

    model_config = ConfigDict(extra="forbid")

    running_checks_interval_seconds: Annotated[float, Field(gt=0, le=300)] = 2.0
    idle_interval_seconds: Annotated[float, Field(gt=0, le=3600)] = 10.0
    no_token_retry_seconds: Annotated[float, Field(gt=0, le=300)] = 5.0
    detail_sync_spacing_seconds: Annotated[float, Field(ge=0, le=10)] = 0.25
    history_size: Annotated[int, Field(ge=1, le=100_000)] = 1000

    @model_validator(mode="after")
    def validate_interval_order(self) -> SyncConfig:
        """Running-checks polling must be faster than idle polling."""
        if self.running_checks_interval_seconds >= self.idle_interval_seconds:
            msg = (
                "running_checks_interval_seconds must be smaller than "
                "idle_interval_seconds"
            )
            raise ValueError(msg)
        return self


class StateConfig(BaseModel):
    """State storage configuration.

    Attributes:
        directory: Database directory (default: $XDG_DATA_HOME/pullmirror)
        database_name: SQLite file name inside the directory
    """

    model_config = ConfigDict(extra="forbid")

    directory: str | None = None
    database_name: Annotated[str, Field(min_length=1)] = DEFAULT_DATABASE_NAME

    def get_directory(self) -> Path:
        """Get the state directory path, expanding ~ if needed."""
        if self.directory:
            return Path(self.directory).expanduser()
        return data_dir()

    def get_database_path(self) -> Path:
        """Get the full path of the SQLite database."""
        return self.get_directory() / self.database_name


class Config(BaseModel):
    """Top-level configuration loaded from YAML.

    Attributes:
        version: Schema version (must be 1)
        github: GitHub API settings
        sync: Background syncer settings
        state: State storage settings
    """

    model_config = ConfigDict(extra="forbid")

    version: Literal[1] = 1
    github: GitHubConfig = Field(default_factory=GitHubConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    state: StateConfig = Field(default_factory=StateConfig)
