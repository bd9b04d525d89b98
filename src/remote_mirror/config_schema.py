"""Unified configuration schema for remote_mirror.

Defines Pydantic models for the YAML config structure with dedicated
sections for the mirrored trees and for logging. The validated ``mirror``
section is handed to ``config.load_config()`` as YAML fallbacks.

Usage:
    from remote_mirror.config_schema import build_config

    raw = load_hierarchical_config()
    unified = build_config(raw)
    fallbacks = unified.mirror.model_dump(exclude_none=True)
"""

from __future__ import annotations

import logging
from typing import Literal

from pydantic import BaseModel, Field, field_validator

from .mirror.filters import split_patterns

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Section models
# ---------------------------------------------------------------------------


class MirrorConfig(BaseModel):
    """Mirrored tree settings.

    All fields are optional to support zero-config: env vars and CLI args
    can supply the tree roots at runtime instead.
    """

    path1: str | None = Field(default=None, description="First tree root")
    path2: str | None = Field(default=None, description="Second tree root")
    check_interval_sec: int = Field(
        default=30,
        ge=1,
        le=86400,
        description="Seconds between polls (1-86400)",
    )
    excluded_files: list[str] = Field(
        default_factory=list,
        description="File name patterns excluded from mirroring",
    )
    excluded_folders: list[str] = Field(
        default_factory=list,
        description="Folder names excluded from mirroring",
    )
    logger_verbosity: int = Field(
        default=2, ge=1, le=3, description="Log verbosity tier (1-3)"
    )
    state_dir: str | None = Field(
        default=None, description="Directory for catalog files"
    )
    lock_wait_attempts: int = Field(
        default=30,
        ge=0,
        le=10000,
        description="Lock re-checks before a file is skipped during seeding",
    )
    lock_wait_interval_sec: float = Field(
        default=1.0,
        gt=0,
        le=60,
        description="Seconds between lock re-checks",
    )
    tombstone_retention_sec: int = Field(
        default=7 * 24 * 3600,
        ge=0,
        description="How long an unreplicated deletion is kept",
    )
    seed_empty_peer: bool = Field(
        default=False,
        description="Bulk-copy into an empty tree root on startup",
    )
    recycle_dir: str = Field(
        default=".mirror_recycle",
        description=(
            "Folder inside each tree root that receives removed and "
            "overwritten entries; empty to delete outright"
        ),
    )

    model_config = {"frozen": True}

    @field_validator("excluded_files", "excluded_folders", mode="before")
    @classmethod
    def _split_comma_list(cls, value: object) -> object:
        """Accept the comma-separated form used by ``ExcludedFiles``."""
        if value is None:
            return []
        if isinstance(value, str):
            return sorted(split_patterns(value))
        return value


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        file: Optional log file path.
        format: "text" or "json".
    """

    level: str = Field(default="INFO", description="Log level")
    file: str | None = Field(default=None, description="Log file path")
    format: Literal["text", "json"] = Field(
        default="text", description="Log line format"
    )

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Top-level unified config
# ---------------------------------------------------------------------------


class UnifiedConfig(BaseModel):
    """Top-level unified configuration.

    Aggregates all config sections. Every section has sensible defaults,
    so ``UnifiedConfig()`` (zero-config) is always valid.
    """

    mirror: MirrorConfig = Field(default_factory=MirrorConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Factory function
# ---------------------------------------------------------------------------


def build_config(raw_data: dict) -> UnifiedConfig:
    """Construct a ``UnifiedConfig`` from the raw dict returned by
    ``load_hierarchical_config()``.

    Handles missing sections gracefully; anything absent gets defaults.

    Args:
        raw_data: Merged configuration dictionary.

    Returns:
        Validated ``UnifiedConfig`` instance.
    """
    if not raw_data:
        return UnifiedConfig()

    return UnifiedConfig(**raw_data)
