"""Attendance alerts configuration loaded from environment variables."""

from pydantic import Field
from pydantic_settings import BaseSettings


class AlertsConfig(BaseSettings):
    """Attendance alerts configuration loaded from environment variables.

    Settings are loaded from environment variables with sensible defaults.
    For local development, create a .env file in the project root.
    """

    # Login relay (forwards credentials to the college portal)
    api_base_url: str = Field(
        default="https://kietkt.onrender.com/api",
        description="Base URL of the portal login relay",
    )
    portal_user: str = Field(
        default="",
        description="Portal username used for the initial login",
    )
    portal_pass: str = Field(
        default="",
        description="Portal password used for the initial login",
    )
    request_timeout_seconds: float = Field(
        default=30.0,
        description="Timeout applied to every relay request",
    )

    # Paths
    state_dir: str = Field(
        default="data/state",
        description="Directory for the session token and per-course targets",
    )

    # Risk evaluation
    default_target: int = Field(
        default=75,
        ge=0,
        le=100,
        description="Attendance target used when a course has none stored",
    )
    zero_total_at_risk: bool = Field(
        default=True,
        description="Treat a course with zero recorded classes as 0% (at risk)",
    )

    # Alert planning
    reminder_lead_minutes: int = Field(
        default=10,
        ge=1,
        description="Minutes before class start for the pre-class reminder",
    )
    morning_summary_hour: int = Field(
        default=7,
        ge=0,
        le=23,
        description="Local hour of the daily at-risk summary",
    )
    run_log_size: int = Field(
        default=50,
        ge=1,
        description="Number of scheduler outcome lines kept in memory",
    )

    # Live tracker
    tick_interval_seconds: float = Field(
        default=1.0,
        gt=0,
        description="Live tracker recompute interval",
    )
    countdown_threshold_minutes: int = Field(
        default=60,
        ge=1,
        description="Show a countdown instead of a clock time below this gap",
    )

    # Logging
    log_json: bool = Field(
        default=False,
        description="Output logs in JSON format (for production)",
    )
    log_level: str = Field(
        default="INFO",
        description="Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )

    model_config = {
        "env_prefix": "",
        "case_sensitive": False,
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }


# Singleton pattern
_config: AlertsConfig | None = None


def get_config() -> AlertsConfig:
    """Get the attendance alerts configuration singleton.

    Returns:
        AlertsConfig: Configuration instance
    """
    global _config
    if _config is None:
        _config = AlertsConfig()
    return _config


def reset_config() -> None:
    """Drop the cached configuration so the next get_config() re-reads the env."""
    global _config
    _config = None
