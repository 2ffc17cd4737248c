# ==============================================================================
# Application Configuration
# ==============================================================================
"""
Configuration management using pydantic-settings.

All configuration is loaded from environment variables, with support for
.env files via python-dotenv.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load .env file before any settings are instantiated
load_dotenv()


class TrackerSettings(BaseSettings):
    """Event tracking and delivery settings."""

    model_config = SettingsConfigDict(env_prefix="TRACKER_")

    endpoint: str = Field(
        default="http://localhost:8000/api/analytics/track",
        description="Collector endpoint that receives event batches",
    )
    batch_size: int = Field(default=10, description="Pending events that trigger a flush")
    flush_interval_seconds: float = Field(
        default=30.0, description="Seconds between timer-driven flushes"
    )
    send_timeout_seconds: float = Field(
        default=5.0, description="Per-batch delivery timeout in seconds"
    )
    max_queue_size: int = Field(
        default=10_000,
        description="Maximum pending events kept while offline (oldest are dropped)",
    )
    sample_rate: float = Field(
        default=1.0, ge=0.0, le=1.0, description="Fraction of sessions that are tracked"
    )
    debug: bool = Field(default=False, description="Log every tracked event")
    event_log: Path = Field(
        default=Path("data/events.jsonl"),
        description="JSONL event log written by the file collector",
    )

    @property
    def event_log_path(self) -> Path:
        """Resolve the event log to an absolute path from the working directory."""
        if self.event_log.is_absolute():
            return self.event_log
        return Path.cwd() / self.event_log


class ValkeySettings(BaseSettings):
    """Valkey (Redis-compatible) connection settings for assignments and consent."""

    model_config = SettingsConfigDict(env_prefix="VALKEY_")

    host: str = Field(default="localhost", description="Valkey host")
    port: int = Field(default=6379, description="Valkey port")
    password: Optional[str] = Field(default=None, description="Valkey password")
    db: int = Field(default=0, description="Valkey database number")
    ssl: bool = Field(default=False, description="Use SSL/TLS connection")

    # Assignment persistence
    assignment_ttl_days: int = Field(
        default=180, description="TTL for cached experiment assignments in days"
    )

    @property
    def url(self) -> str:
        """Build Valkey connection URL."""
        scheme = "rediss" if self.ssl else "redis"
        if self.password:
            return f"{scheme}://:{self.password}@{self.host}:{self.port}/{self.db}"
        return f"{scheme}://{self.host}:{self.port}/{self.db}"


class ExperimentSettings(BaseSettings):
    """Thresholds used when recommending an action for an experiment."""

    model_config = SettingsConfigDict(env_prefix="EXPERIMENT_")

    min_sample_size: int = Field(
        default=100, description="Participants required before recommending a decision"
    )
    confidence_threshold: float = Field(
        default=95.0, description="Minimum per-variant confidence (0-100) for a decision"
    )
    min_relative_lift: float = Field(
        default=0.05, description="Minimum relative lift over control to implement a variant"
    )


class ConsentSettings(BaseSettings):
    """Tracking consent settings."""

    model_config = SettingsConfigDict(env_prefix="CONSENT_")

    default_granted: bool = Field(
        default=True, description="Consent assumed when no flag has been stored"
    )
    cache_key: str = Field(default="beacon:consent", description="Cache key for the consent flag")


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        extra="ignore",
    )

    # Nested settings
    tracker: TrackerSettings = Field(default_factory=TrackerSettings)
    valkey: ValkeySettings = Field(default_factory=ValkeySettings)
    experiment: ExperimentSettings = Field(default_factory=ExperimentSettings)
    consent: ConsentSettings = Field(default_factory=ConsentSettings)

    # General settings
    log_level: str = Field(default="INFO", description="Logging level")


@lru_cache
def get_settings() -> Settings:
    """
    Get cached application settings.

    Settings are loaded once and cached for subsequent calls.
    """
    return Settings()
