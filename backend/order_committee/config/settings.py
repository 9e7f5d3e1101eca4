"""
Configuration management using Pydantic Settings.

Loads configuration from environment variables and .env file.
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal, Union

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

CONFIG_DIR = Path(__file__).parent


class Settings(BaseSettings):
    """Main settings class for the committee engine."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # API Settings
    groq_api_key: str = Field(default="")
    hf_token: str = Field(default="")
    ollama_host: str = Field(default="http://localhost:11434")

    # Committee Settings
    committee_size: int = Field(default=3, ge=1, description="Providers per task")
    min_successful_providers: int = Field(
        default=2, ge=1, description="Quorum of valid votes"
    )
    provider_timeout_seconds: float = Field(
        default=30.0, gt=0.0, description="Per-call provider timeout"
    )
    max_concurrent_provider_calls: int = Field(
        default=8, ge=1, description="Engine-wide cap on in-flight provider calls"
    )
    enforce_provider_diversity: bool = Field(
        default=False, description="Prefer one provider per model family"
    )

    # Consensus Settings
    confidence_threshold: float = Field(default=0.75, ge=0.0, le=1.0)
    critical_fields: list[str] = Field(default=["customer", "sku", "gtin"])
    tie_break_requires_review: bool = Field(default=True)

    # Calibration Settings
    calibration_steepness: float = Field(default=10.0, gt=0.0)
    calibration_center: Union[Literal["mean"], float] = Field(default="mean")

    # Evidence limits
    max_sample_values: int = Field(default=5, ge=1)
    max_header_length: int = Field(default=100, ge=4)
    max_sample_length: int = Field(default=200, ge=4)

    # Human Review Settings
    max_queue_size: int = Field(
        default=1000,
        ge=1,
        description="Maximum review queue size",
    )
    review_batch_size: int = Field(
        default=10,
        ge=1,
        description="Items per review session",
    )

    # Logging
    log_level: str = Field(default="INFO")
    log_json: bool = Field(default=False)

    # Storage
    audit_dir: Path = Field(default=Path("./data/audit"))
    weights_file: Path = Field(default=Path("./data/calibrated-weights.json"))

    # Config file paths
    config_dir: Path = Field(
        default=CONFIG_DIR,
        description="Directory containing config files",
    )

    @model_validator(mode="after")
    def _check_quorum(self) -> "Settings":
        if self.min_successful_providers > self.committee_size:
            raise ValueError(
                f"min_successful_providers ({self.min_successful_providers}) must not "
                f"exceed committee_size ({self.committee_size})"
            )
        return self

    @property
    def providers_yaml_path(self) -> Path:
        """Path to providers.yaml configuration file."""
        return self.config_dir / "providers.yaml"

    @property
    def prompts_yaml_path(self) -> Path:
        """Path to prompts.yaml configuration file."""
        return self.config_dir / "prompts.yaml"

    @property
    def thresholds(self) -> dict[str, object]:
        """Get review thresholds as a dictionary."""
        return {
            "confidence_threshold": self.confidence_threshold,
            "critical_fields": list(self.critical_fields),
            "tie_break_requires_review": self.tie_break_requires_review,
            "min_successful_providers": self.min_successful_providers,
        }


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Convenience function for accessing settings
settings = get_settings()
