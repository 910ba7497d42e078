"""
Application configuration using Pydantic Settings.

Loads all environment variables from .env file with validation and type safety.
"""

from datetime import timedelta, tzinfo
from functools import lru_cache
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


EMAIL_PROVIDERS = ('smtp', 'resend', 'console')


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Automatically loads from .env file in project root.
    """

    # Database Configuration
    database_url: Optional[str] = Field(None, alias='DATABASE_URL')

    # Redis Configuration (optional cross-process tick lease)
    redis_url: Optional[str] = Field(None, alias='REDIS_URL')
    tick_lease_seconds: int = Field(300, alias='TICK_LEASE_SECONDS')

    # Poller Configuration
    polling_interval: int = Field(60, alias='POLLING_INTERVAL')
    max_concurrent_workers: int = Field(10, alias='MAX_CONCURRENT_WORKERS')
    scheduler_batch_size: int = Field(500, alias='SCHEDULER_BATCH_SIZE')
    retry_window_hours: int = Field(24, alias='RETRY_WINDOW_HOURS')
    shutdown_grace_seconds: int = Field(30, alias='SHUTDOWN_GRACE_SECONDS')

    # Reminder Generation
    reminder_window_days: int = Field(7, alias='REMINDER_WINDOW_DAYS')
    reminder_timezone: str = Field('UTC', alias='REMINDER_TIMEZONE')

    # Email Configuration
    email_provider: str = Field('console', alias='EMAIL_PROVIDER')
    email_from: str = Field('reminders@localhost', alias='EMAIL_FROM')
    email_from_name: str = Field('Medication Reminders', alias='EMAIL_FROM_NAME')

    # SMTP Configuration
    smtp_server: str = Field('smtp.gmail.com', alias='SMTP_SERVER')
    smtp_port: int = Field(587, alias='SMTP_PORT')
    smtp_username: Optional[str] = Field(None, alias='SMTP_USERNAME')
    smtp_password: Optional[str] = Field(None, alias='SMTP_PASSWORD')
    smtp_use_tls: bool = Field(False, alias='SMTP_USE_TLS')
    smtp_timeout: int = Field(30, alias='SMTP_TIMEOUT')

    # Resend API Configuration
    resend_api_key: Optional[str] = Field(None, alias='RESEND_API_KEY')
    resend_api_url: str = Field('https://api.resend.com/emails', alias='RESEND_API_URL')
    resend_timeout: int = Field(15, alias='RESEND_TIMEOUT')

    # Web Push (VAPID) Configuration
    vapid_public_key: Optional[str] = Field(None, alias='VAPID_PUBLIC_KEY')
    vapid_private_key: Optional[str] = Field(None, alias='VAPID_PRIVATE_KEY')
    vapid_subject: str = Field('mailto:reminders@localhost', alias='VAPID_SUBJECT')
    push_ttl_seconds: int = Field(3600, alias='PUSH_TTL_SECONDS')

    # Logging
    log_level: str = Field('INFO', alias='LOG_LEVEL')
    log_file: str = Field('logs/reminders.log', alias='LOG_FILE')

    model_config = SettingsConfigDict(
        env_file='.env',
        env_file_encoding='utf-8',
        case_sensitive=False,
        populate_by_name=True,
        extra='ignore'
    )

    @field_validator('email_provider')
    @classmethod
    def validate_email_provider(cls, value: str) -> str:
        provider = (value or 'console').strip().lower()
        if provider not in EMAIL_PROVIDERS:
            raise ValueError(
                f"EMAIL_PROVIDER must be one of {', '.join(EMAIL_PROVIDERS)}, got {value!r}"
            )
        return provider

    @field_validator('reminder_timezone')
    @classmethod
    def validate_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown REMINDER_TIMEZONE {value!r}") from e
        return value

    @field_validator(
        'polling_interval',
        'max_concurrent_workers',
        'scheduler_batch_size',
        'retry_window_hours',
        'reminder_window_days',
        'tick_lease_seconds'
    )
    @classmethod
    def validate_positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("must be greater than zero")
        return value

    @property
    def timezone(self) -> tzinfo:
        """Timezone that medication times of day are expressed in."""
        return ZoneInfo(self.reminder_timezone)

    @property
    def retry_window(self) -> timedelta:
        """How long past its scheduled time a reminder may stay pending."""
        return timedelta(hours=self.retry_window_hours)

    @property
    def push_enabled(self) -> bool:
        return bool(self.vapid_public_key and self.vapid_private_key)


@lru_cache
def get_settings() -> Settings:
    """Cached settings instance."""
    return Settings()
