"""
BidVet - Configuration Management

Central configuration using Pydantic settings with multi-provider LLM support.
"""

from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class LLMProvider(str, Enum):
    """Supported LLM providers."""
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GEMINI = "gemini"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # LLM Provider Configuration
    llm_provider: LLMProvider = Field(
        default=LLMProvider.OPENAI,
        description="LLM provider to use"
    )

    # Provider API Keys
    openai_api_key: Optional[str] = Field(default=None, description="OpenAI API key")
    anthropic_api_key: Optional[str] = Field(default=None, description="Anthropic API key")
    google_api_key: Optional[str] = Field(default=None, description="Google API key")

    # Model Configuration
    llm_model: Optional[str] = Field(
        default=None,
        description="Model to use (defaults based on provider)"
    )
    llm_temperature: float = Field(
        default=0.1,
        ge=0.0,
        le=1.0,
        description="Model temperature (low: extraction must be repeatable)"
    )
    llm_normalization: bool = Field(
        default=False,
        description="Let the LLM group scope items instead of the fuzzy matcher"
    )
    analysis_job_timeout: int = Field(
        default=1800,
        description="Seconds an analysis job may run; older processing runs count as abandoned"
    )

    # Storage Configuration
    data_dir: Path = Field(
        default=Path("./data"),
        description="Data directory for storage"
    )
    download_timeout_seconds: float = Field(
        default=30.0,
        description="Timeout for fetching remote bid documents"
    )

    # API Configuration
    api_host: str = Field(default="0.0.0.0", description="API host")
    api_port: int = Field(default=8000, description="API port")
    api_env: str = Field(default="development", description="API environment")
    cors_origins: str = Field(
        default="http://localhost:3000",
        description="CORS origins (comma-separated)"
    )
    cron_secret: Optional[str] = Field(
        default=None,
        description="Bearer secret for scheduled job triggers"
    )

    # Database Configuration
    database_url: str = Field(
        default="postgresql+asyncpg://localhost/bidvet",
        description="Database connection URL"
    )
    database_echo: bool = Field(
        default=False,
        description="Echo SQL queries for debugging"
    )

    # Redis Configuration (Job Queue)
    redis_url: str = Field(
        default="redis://localhost:6379",
        description="Redis connection URL"
    )

    # Rate limiting (slowapi storage; use redis:// for multi-process deployments)
    rate_limit_storage_uri: str = Field(
        default="memory://",
        description="Storage backend for rate-limit counters"
    )
    rate_limit_analyze: str = Field(default="5/minute", description="Analysis trigger limit")
    rate_limit_default: str = Field(default="100/minute", description="General API limit")

    # JWT Configuration
    jwt_secret: str = Field(
        default="change-this-in-production-use-long-random-string",
        description="JWT signing secret"
    )
    jwt_algorithm: str = Field(default="HS256", description="JWT algorithm")
    jwt_expire_minutes: int = Field(default=30, description="Access token expiry")

    # Matching Configuration
    matching_threshold: float = Field(
        default=82.0,
        ge=0.0,
        le=100.0,
        description="Minimum RapidFuzz score for two items to share a scope bucket"
    )
    matching_unit_override: float = Field(
        default=95.0,
        description="Score at which incompatible units are ignored"
    )

    # Confidence thresholds (used until a trade has been calibrated)
    confidence_threshold_low: float = Field(default=0.6, ge=0.0, le=1.0)
    confidence_threshold_medium: float = Field(default=0.8, ge=0.0, le=1.0)

    # Calibration Configuration
    calibration_min_samples: int = Field(
        default=200,
        description="Minimum approved corrections before a trade is calibrated"
    )
    calibration_target_rate: float = Field(
        default=0.05,
        description="Acceptable correction rate for high-confidence items"
    )
    calibration_step: float = Field(default=0.05, description="Threshold adjustment step")
    calibration_min_delta: float = Field(
        default=0.01,
        description="Smallest threshold change worth persisting"
    )
    calibration_medium_floor: float = Field(default=0.6)
    calibration_medium_ceiling: float = Field(default=0.95)
    calibration_low_floor: float = Field(default=0.4)

    # Training contributions
    training_auto_approve: bool = Field(
        default=False,
        description="Approve anonymized corrections without moderation"
    )

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins into a list."""
        return [origin.strip() for origin in self.cors_origins.split(",")]

    @property
    def default_model(self) -> str:
        """Get the default model for the active provider."""
        if self.llm_model:
            return self.llm_model

        defaults = {
            LLMProvider.OPENAI: "gpt-4o-mini",
            LLMProvider.ANTHROPIC: "claude-3-5-sonnet-20240620",
            LLMProvider.GEMINI: "gemini-1.5-pro",
        }
        return defaults.get(self.llm_provider, "gpt-4o-mini")

    # Data directories
    @property
    def documents_dir(self) -> Path:
        """Directory for stored bid documents."""
        path = self.data_dir / "documents"
        path.mkdir(parents=True, exist_ok=True)
        return path

    @property
    def logs_dir(self) -> Path:
        """Directory for log files."""
        path = self.data_dir / "logs"
        path.mkdir(parents=True, exist_ok=True)
        return path


# Global settings instance
settings = Settings()
