"""
Application settings using Pydantic Settings.

Provides type-safe, validated configuration from environment variables
with sensible defaults for the invoice memory system.
"""

from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Annotated

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Application environment enumeration."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TESTING = "testing"


class LogLevel(str, Enum):
    """Logging level enumeration."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LogFormat(str, Enum):
    """Log output format enumeration."""

    JSON = "json"
    CONSOLE = "console"


class ConfidenceSettings(BaseSettings):
    """Confidence arithmetic and memory lifecycle settings."""

    model_config = SettingsConfigDict(
        env_prefix="MEMORY_",
        extra="ignore",
    )

    initial_confidence: Annotated[float, Field(ge=0.0, le=1.0)] = Field(
        default=0.6,
        description="Confidence assigned to a memory created from a human correction",
    )
    auto_apply_threshold: Annotated[float, Field(ge=0.0, le=1.0)] = Field(
        default=0.85,
        description="Confidence at which a memory is applied without review",
    )
    suggestion_threshold: Annotated[float, Field(ge=0.0, le=1.0)] = Field(
        default=0.70,
        description="Confidence at which a memory is offered as a suggestion",
    )
    minimum_threshold: Annotated[float, Field(ge=0.0, le=1.0)] = Field(
        default=0.50,
        description="Memories below this confidence are never recalled",
    )
    max_confidence: Annotated[float, Field(ge=0.0, le=1.0)] = Field(
        default=0.95,
        description="Upper bound for any memory confidence",
    )
    reinforcement_factor: Annotated[float, Field(ge=0.0, le=1.0)] = Field(
        default=0.05,
        description="Fraction of the remaining headroom gained on approval",
    )
    rejection_penalty_factor: Annotated[float, Field(ge=0.0, le=1.0)] = Field(
        default=0.7,
        description="Multiplier applied to confidence on rejection",
    )
    contradiction_penalty_factor: Annotated[float, Field(ge=0.0, le=1.0)] = Field(
        default=0.5,
        description="Multiplier applied when a correction contradicts a memory",
    )
    decay_half_life_days: Annotated[float, Field(gt=0.0, le=3650.0)] = Field(
        default=30.0,
        description="Time constant in days for unused-memory decay",
    )
    max_consecutive_rejections: Annotated[int, Field(ge=1, le=100)] = Field(
        default=3,
        description="Consecutive rejections after which a memory is deactivated",
    )

    @model_validator(mode="after")
    def validate_threshold_order(self) -> "ConfidenceSettings":
        """Ensure thresholds are ordered minimum <= suggestion <= auto-apply."""
        if not (
            self.minimum_threshold <= self.suggestion_threshold <= self.auto_apply_threshold
        ):
            raise ValueError(
                "Thresholds must satisfy minimum_threshold <= suggestion_threshold "
                "<= auto_apply_threshold"
            )
        return self


class DecisionSettings(BaseSettings):
    """Human-review decision settings."""

    model_config = SettingsConfigDict(
        env_prefix="DECISION_",
        extra="ignore",
    )

    low_extraction_confidence: Annotated[float, Field(ge=0.0, le=1.0)] = Field(
        default=0.6,
        description="Fields extracted below this confidence are flagged",
    )
    duplicate_window_days: Annotated[int, Field(ge=0, le=365)] = Field(
        default=7,
        description="Date window (+/- days) used for duplicate detection",
    )
    unmatched_confidence_epsilon: Annotated[float, Field(gt=0.0, le=0.5)] = Field(
        default=0.01,
        description="Unmatched fields are capped this far below the suggestion threshold",
    )


class POMatchingSettings(BaseSettings):
    """Purchase-order matching score settings."""

    model_config = SettingsConfigDict(
        env_prefix="PO_MATCH_",
        extra="ignore",
    )

    vendor_base_score: Annotated[float, Field(ge=0.0, le=1.0)] = Field(
        default=0.3,
        description="Score granted for a vendor match alone",
    )
    date_weight: Annotated[float, Field(ge=0.0, le=1.0)] = Field(
        default=0.2,
        description="Maximum score for date proximity",
    )
    date_window_days: Annotated[int, Field(ge=1, le=365)] = Field(
        default=30,
        description="Orders further apart than this contribute no date score",
    )
    code_overlap_weight: Annotated[float, Field(ge=0.0, le=1.0)] = Field(
        default=0.3,
        description="Maximum score for line-item code overlap",
    )
    line_match_bonus: Annotated[float, Field(ge=0.0, le=1.0)] = Field(
        default=0.1,
        description="Score per line item matching both code and quantity",
    )
    surface_threshold: Annotated[float, Field(ge=0.0, le=1.0)] = Field(
        default=0.5,
        description="Matches at or above this confidence are reported as patterns",
    )
    propose_threshold: Annotated[float, Field(ge=0.0, le=1.0)] = Field(
        default=0.7,
        description="Matches at or above this confidence are proposed as corrections",
    )


class ContributionSettings(BaseSettings):
    """Pending contributing-memory registry settings."""

    model_config = SettingsConfigDict(
        env_prefix="CONTRIBUTION_",
        extra="ignore",
    )

    max_pending: Annotated[int, Field(ge=1, le=1_000_000)] = Field(
        default=10_000,
        description="Maximum invoices awaiting feedback before LRU eviction",
    )
    ttl_seconds: Annotated[int, Field(ge=60, le=90 * 86400)] = Field(
        default=7 * 86400,
        description="Seconds a registration is kept while waiting for feedback",
    )


class DatabaseSettings(BaseSettings):
    """Memory store database settings."""

    model_config = SettingsConfigDict(
        env_prefix="DATABASE_",
        extra="ignore",
    )

    path: str = Field(
        default="./data/learned_memory.db",
        description="SQLite database path (':memory:' for an in-process database)",
    )


class LoggingSettings(BaseSettings):
    """Logging configuration settings."""

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        extra="ignore",
    )

    level: LogLevel = Field(
        default=LogLevel.INFO,
        description="Logging level",
    )
    format: LogFormat = Field(
        default=LogFormat.JSON,
        description="Log output format",
    )
    file_path: Path | None = Field(
        default=None,
        description="Optional log file path; console only when unset",
    )
    file_max_size_mb: Annotated[int, Field(ge=1, le=1000)] = Field(
        default=100,
        description="Maximum log file size in MB",
    )
    file_backup_count: Annotated[int, Field(ge=1, le=20)] = Field(
        default=5,
        description="Number of backup log files to keep",
    )
    mask_sensitive_data: bool = Field(
        default=True,
        description="Redact bank details and e-mail addresses in log entries",
    )


class Settings(BaseSettings):
    """
    Main application settings aggregating all configuration sections.

    Settings are loaded from environment variables with optional .env file support.
    Each section has its own prefix for environment variable naming.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    app_name: str = Field(
        default="invoice-memory",
        description="Application name",
    )
    app_version: str = Field(
        default="1.0.0",
        description="Application version",
    )
    app_env: Environment = Field(
        default=Environment.DEVELOPMENT,
        description="Application environment",
    )

    confidence: ConfidenceSettings = Field(default_factory=ConfidenceSettings)
    decision: DecisionSettings = Field(default_factory=DecisionSettings)
    po_matching: POMatchingSettings = Field(default_factory=POMatchingSettings)
    contributions: ContributionSettings = Field(default_factory=ContributionSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.app_env == Environment.PRODUCTION

    @property
    def is_testing(self) -> bool:
        """Check if running in testing environment."""
        return self.app_env == Environment.TESTING


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Get cached application settings instance.

    Returns:
        Settings: Application settings singleton.
    """
    return Settings()
