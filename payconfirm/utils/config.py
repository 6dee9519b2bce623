"""Configuration for the payment confirmation engine.

Pydantic-based settings; every field can be overridden with an environment
variable using the ``PAYCONFIRM_`` prefix or a ``.env`` file.

Environment Variables:
- PAYCONFIRM_NOTIFICATION_MATCH_WINDOW_SECONDS: Match window for notifications (default: 600)
- PAYCONFIRM_SMS_MATCH_WINDOW_SECONDS: Match window for SMS (default: 600)
- PAYCONFIRM_STALE_AFTER_SECONDS: Age after which pending payments are swept (default: 1800)
- PAYCONFIRM_SWEEP_INTERVAL_SECONDS: Sweeper period (default: 60)
- PAYCONFIRM_AUTO_CONFIRM_THRESHOLD: Minimum match confidence for auto-confirmation (default: 85)
- PAYCONFIRM_MANUAL_REVIEW_THRESHOLD: Minimum match confidence for manual review (default: 60)
- PAYCONFIRM_HISTORY_CAP: Confirmation records kept in the audit log (default: 50)
"""

from datetime import timedelta
from pathlib import Path

from platformdirs import PlatformDirs
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .logging import get_logger

logger = get_logger(__name__)

dirs = PlatformDirs("payconfirm", appauthor=False)


class Settings(BaseSettings):
    """Engine settings.

    Example:
        >>> settings = Settings(sms_match_window_seconds=300)
        >>> settings.sms_match_window
        datetime.timedelta(seconds=300)
    """

    model_config = SettingsConfigDict(
        env_prefix="PAYCONFIRM_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Matching
    notification_match_window_seconds: int = Field(
        default=600,
        ge=30,
        le=3600,
        description="Maximum age of a pending payment a notification may confirm",
    )

    sms_match_window_seconds: int = Field(
        default=600,
        ge=30,
        le=3600,
        description="Maximum age of a pending payment an SMS may confirm",
    )

    max_clock_skew_seconds: int = Field(
        default=5,
        ge=0,
        le=300,
        description="Tolerance for messages timestamped slightly before tracking began",
    )

    auto_confirm_threshold: int = Field(
        default=85,
        ge=0,
        le=100,
        description="Match confidence at or above which a payment is confirmed automatically",
    )

    manual_review_threshold: int = Field(
        default=60,
        ge=0,
        le=100,
        description="Match confidence at or above which a match is flagged for manual review",
    )

    # Sweeper
    stale_after_seconds: int = Field(
        default=1800,
        ge=60,
        le=86400,
        description="Pending payments older than this are evicted",
    )

    sweep_interval_seconds: int = Field(
        default=60,
        ge=1,
        le=3600,
        description="Seconds between sweeper runs",
    )

    # Ingestion
    dedupe_window: int = Field(
        default=100,
        ge=1,
        le=10000,
        description="Number of recent event keys remembered for duplicate suppression",
    )

    # Persistence
    data_dir: Path = Field(default=Path(dirs.user_data_dir))
    history_path: Path | None = Field(
        default=None,
        description="Confirmation audit log file (defaults to <data_dir>/confirmations.json)",
    )
    history_cap: int = Field(
        default=50,
        ge=1,
        le=1000,
        description="Maximum number of confirmation records kept (FIFO)",
    )

    # Observability
    audit_log_events: bool = Field(default=True, description="Log every published event")
    log_level: str = Field(default="INFO")
    json_logs: bool = Field(default=False)
    prometheus_enabled: bool = Field(default=False)
    metrics_port: int = Field(default=8000, ge=1, le=65535)

    @model_validator(mode="after")
    def _check_thresholds(self) -> "Settings":
        if self.manual_review_threshold > self.auto_confirm_threshold:
            raise ValueError(
                "manual_review_threshold must not exceed auto_confirm_threshold "
                f"({self.manual_review_threshold} > {self.auto_confirm_threshold})"
            )
        longest_window = max(self.notification_match_window_seconds, self.sms_match_window_seconds)
        if self.stale_after_seconds < longest_window:
            raise ValueError(
                "stale_after_seconds must be at least the longest match window "
                f"({self.stale_after_seconds} < {longest_window})"
            )
        return self

    @property
    def notification_match_window(self) -> timedelta:
        return timedelta(seconds=self.notification_match_window_seconds)

    @property
    def sms_match_window(self) -> timedelta:
        return timedelta(seconds=self.sms_match_window_seconds)

    @property
    def max_clock_skew(self) -> timedelta:
        return timedelta(seconds=self.max_clock_skew_seconds)

    @property
    def stale_after(self) -> timedelta:
        return timedelta(seconds=self.stale_after_seconds)

    @property
    def sweep_interval(self) -> timedelta:
        return timedelta(seconds=self.sweep_interval_seconds)

    @property
    def confirmation_log_path(self) -> Path:
        """Resolved location of the confirmation audit log."""
        return self.history_path or self.data_dir / "confirmations.json"


_settings: Settings | None = None


def get_settings() -> Settings:
    """Get or create the process-wide settings."""
    global _settings

    if _settings is None:
        _settings = Settings()
        logger.debug(
            "settings_loaded",
            notification_window=_settings.notification_match_window_seconds,
            sms_window=_settings.sms_match_window_seconds,
            stale_after=_settings.stale_after_seconds,
        )

    return _settings


def reload_settings() -> Settings:
    """Re-read settings from the environment."""
    global _settings
    _settings = None
    return get_settings()
