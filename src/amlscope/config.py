"""
amlscope configuration management using pydantic-settings.

Detection thresholds are loaded from environment variables prefixed with
AMLSCOPE_ (or a .env file) and validated at load time.
"""

import logging
from functools import lru_cache

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(ValueError):
    """Raised when a detector is constructed with out-of-range parameters."""


DEFAULT_HIGH_RISK_JURISDICTIONS = [
    "Cayman Islands",
    "British Virgin Islands",
    "Panama",
    "Belize",
    "Seychelles",
    "Marshall Islands",
]


class Settings(BaseSettings):
    """Detection settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="AMLSCOPE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Structuring
    structuring_threshold: float = Field(
        default=10000,
        description="Reporting threshold that structured deposits stay under",
    )
    structuring_buffer: float = Field(
        default=1000,
        description="Width of the suspicious band just below the threshold",
    )
    structuring_window_hours: float = Field(
        default=48,
        description="Maximum time between two in-band deposits",
    )

    # Round-tripping
    round_trip_max_chain_length: int = Field(
        default=5,
        description="Maximum number of transactions in a round trip",
    )
    round_trip_window_days: float = Field(
        default=7,
        description="Maximum time between first and last transaction of a round trip",
    )

    # Layering
    layering_min_chain_length: int = Field(
        default=3,
        description="Minimum number of transactions in a layering chain",
    )
    layering_max_chain_length: int = Field(
        default=10,
        description="Hard bound on layering chain length",
    )
    layering_window_hours: float = Field(
        default=72,
        description="Maximum time between first and last transaction of a chain",
    )
    layering_amount_variance: float = Field(
        default=0.10,
        description="Allowed relative difference from the chain's initial amount",
    )

    # Entity network
    shell_score_threshold: int = Field(
        default=50, description="Score at which an entity is a shell company"
    )
    shell_recent_days: int = Field(
        default=365, description="Registrations newer than this are recent"
    )
    high_risk_jurisdictions: list[str] = Field(
        default_factory=lambda: list(DEFAULT_HIGH_RISK_JURISDICTIONS),
        description="Jurisdictions that add shell-company points",
    )
    min_component_size: int = Field(
        default=3, description="Smallest connected component worth ranking"
    )
    ownership_types: list[str] = Field(
        default_factory=lambda: ["owner"],
        description="Relationship types treated as ownership",
    )
    max_ownership_cycle_length: int = Field(
        default=6, description="Longest ownership cycle searched for"
    )

    # Rule-based risk scoring
    risk_high_score: float = Field(
        default=70, description="Scores above this count as high risk"
    )
    risk_new_entity_days: int = Field(
        default=180, description="Entities registered within this many days are new"
    )

    # Entity behaviour anomalies
    anomaly_velocity_multiplier: float = Field(
        default=3.0, description="Daily count over this multiple of the average is a spike"
    )
    anomaly_min_daily_count: int = Field(
        default=3, description="Fewest transactions on a day that can be a spike"
    )
    anomaly_zscore_threshold: float = Field(
        default=3.0, description="Standard deviations above the mean for a volume anomaly"
    )
    anomaly_fan_min_count: int = Field(
        default=5, description="Fewest transfers in a fan-in or fan-out"
    )
    anomaly_fan_window_hours: float = Field(
        default=72, description="Window around the consolidating or distributing transfer"
    )
    anomaly_fan_tolerance: float = Field(
        default=0.10, description="Allowed relative gap between the single transfer and the total"
    )
    anomaly_round_amount_minimum: float = Field(
        default=10000, description="Smallest round amount flagged as an anomaly"
    )

    log_level: str = Field(default="INFO", description="Logging level")

    @field_validator(
        "structuring_threshold",
        "structuring_window_hours",
        "round_trip_window_days",
        "layering_window_hours",
        "anomaly_velocity_multiplier",
        "anomaly_zscore_threshold",
        "anomaly_fan_window_hours",
        "anomaly_round_amount_minimum",
    )
    @classmethod
    def validate_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("must be greater than zero")
        return v

    @field_validator("structuring_buffer")
    @classmethod
    def validate_buffer(cls, v: float) -> float:
        if v < 0:
            raise ValueError("must not be negative")
        return v

    @field_validator("layering_amount_variance", "anomaly_fan_tolerance")
    @classmethod
    def validate_variance(cls, v: float) -> float:
        if not 0 <= v <= 1:
            raise ValueError("must be between 0 and 1")
        return v

    @field_validator(
        "round_trip_max_chain_length",
        "layering_min_chain_length",
        "layering_max_chain_length",
        "max_ownership_cycle_length",
    )
    @classmethod
    def validate_chain_length(cls, v: int) -> int:
        if v < 2:
            raise ValueError("must be at least 2")
        return v

    @field_validator("shell_score_threshold", "risk_high_score")
    @classmethod
    def validate_score_threshold(cls, v: float) -> float:
        if not 0 < v <= 100:
            raise ValueError("must be between 1 and 100")
        return v

    @field_validator(
        "shell_recent_days",
        "min_component_size",
        "risk_new_entity_days",
        "anomaly_min_daily_count",
        "anomaly_fan_min_count",
    )
    @classmethod
    def validate_at_least_one(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be at least 1")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"unknown log level: {v}")
        return level

    @model_validator(mode="after")
    def validate_ranges(self) -> "Settings":
        """Check settings that depend on each other."""
        if self.structuring_buffer >= self.structuring_threshold:
            raise ValueError("STRUCTURING_BUFFER must be smaller than STRUCTURING_THRESHOLD")
        if self.layering_max_chain_length < self.layering_min_chain_length:
            raise ValueError(
                "LAYERING_MAX_CHAIN_LENGTH must not be below LAYERING_MIN_CHAIN_LENGTH"
            )
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide settings instance."""
    return Settings()
