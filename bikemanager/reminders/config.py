from typing import Literal, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from croniter import croniter
from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from bikemanager.core.config import settings as core_settings


class ReminderSettings(BaseSettings):
    # Scanner
    ENABLED: bool = False
    CRON: str = "0 9 * * *"  # 9 AM daily
    TIMEZONE: str = "America/Sao_Paulo"
    SEND_HOUR: int = 9
    RUN_ON_STARTUP: Optional[bool] = None  # None = only in development

    # Queue
    QUEUE_BACKEND: Literal["auto", "redis", "memory"] = "auto"
    QUEUE_NAME: str = "email-processing"
    REDIS_URL: Optional[str] = None  # Falls back to the core REDIS_URL
    WORKER_CONCURRENCY: int = 5
    MAX_ATTEMPTS: int = 3
    BACKOFF_BASE_SECONDS: float = 2.0
    POLL_INTERVAL_SECONDS: float = 5.0
    VISIBILITY_TIMEOUT_SECONDS: int = 60 * 60 * 24

    # Retained history (observability only)
    KEEP_COMPLETED: int = 100
    KEEP_FAILED: int = 50
    COMPLETED_RETENTION_HOURS: int = 24
    FAILED_RETENTION_DAYS: int = 7

    # Metrics
    METRICS_ENABLED: bool = True

    @field_validator("CRON")
    @classmethod
    def _valid_cron(cls, v: str) -> str:
        if len(v.split()) != 5 or not croniter.is_valid(v):
            raise ValueError(f"invalid cron expression: {v!r}")
        return v

    @field_validator("TIMEZONE")
    @classmethod
    def _valid_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"unknown timezone: {v!r}") from e
        return v

    @field_validator("SEND_HOUR")
    @classmethod
    def _valid_hour(cls, v: int) -> int:
        if not 0 <= v <= 23:
            raise ValueError("SEND_HOUR must be between 0 and 23")
        return v

    @model_validator(mode="after")
    def _finalize(self) -> "ReminderSettings":
        if not self.REDIS_URL:
            self.REDIS_URL = core_settings.REDIS_URL
        if self.RUN_ON_STARTUP is None:
            self.RUN_ON_STARTUP = core_settings.is_development
        if self.WORKER_CONCURRENCY < 1:
            raise ValueError("WORKER_CONCURRENCY must be at least 1")
        if self.MAX_ATTEMPTS < 1:
            raise ValueError("MAX_ATTEMPTS must be at least 1")
        longest_backoff = self.BACKOFF_BASE_SECONDS * (2 ** max(self.MAX_ATTEMPTS - 2, 0))
        if longest_backoff >= self.max_countdown_seconds:
            raise ValueError(
                "VISIBILITY_TIMEOUT_SECONDS is too short for the retry backoff "
                f"({longest_backoff}s must stay under {self.max_countdown_seconds}s)"
            )
        return self

    @property
    def max_countdown_seconds(self) -> float:
        """Longest countdown handed to the broker; later jobs are re-sent in hops."""
        return self.VISIBILITY_TIMEOUT_SECONDS / 2

    @property
    def zoneinfo(self) -> ZoneInfo:
        return ZoneInfo(self.TIMEZONE)

    model_config = SettingsConfigDict(env_prefix="MAINTENANCE_REMINDER_", env_file=".env", extra="ignore")


settings = ReminderSettings()
