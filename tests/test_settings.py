"""
Tests for configuration loading in medreminder/config/settings.py.
"""

from datetime import timedelta
from zoneinfo import ZoneInfo

import pytest
from pydantic import ValidationError

from medreminder.config.settings import Settings, get_settings


@pytest.fixture(autouse=True)
def clear_settings_cache():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def test_defaults(monkeypatch):
    for name in ('EMAIL_PROVIDER', 'POLLING_INTERVAL', 'REMINDER_TIMEZONE', 'RETRY_WINDOW_HOURS'):
        monkeypatch.delenv(name, raising=False)

    settings = Settings(_env_file=None)

    assert settings.email_provider == 'console'
    assert settings.polling_interval == 60
    assert settings.retry_window == timedelta(hours=24)
    assert settings.timezone == ZoneInfo('UTC')
    assert settings.push_enabled is False


def test_reads_environment(monkeypatch):
    monkeypatch.setenv('EMAIL_PROVIDER', 'Resend')
    monkeypatch.setenv('POLLING_INTERVAL', '30')
    monkeypatch.setenv('REMINDER_TIMEZONE', 'Asia/Kolkata')
    monkeypatch.setenv('VAPID_PUBLIC_KEY', 'pub')
    monkeypatch.setenv('VAPID_PRIVATE_KEY', 'priv')

    settings = get_settings()

    assert settings.email_provider == 'resend'
    assert settings.polling_interval == 30
    assert settings.timezone == ZoneInfo('Asia/Kolkata')
    assert settings.push_enabled is True


def test_get_settings_is_cached():
    assert get_settings() is get_settings()


def test_unknown_email_provider_rejected():
    with pytest.raises(ValidationError, match="EMAIL_PROVIDER"):
        Settings(_env_file=None, EMAIL_PROVIDER='sendgrid')


def test_unknown_timezone_rejected():
    with pytest.raises(ValidationError, match="REMINDER_TIMEZONE"):
        Settings(_env_file=None, REMINDER_TIMEZONE='Mars/Olympus_Mons')


@pytest.mark.parametrize("field", [
    'POLLING_INTERVAL',
    'MAX_CONCURRENT_WORKERS',
    'SCHEDULER_BATCH_SIZE',
    'RETRY_WINDOW_HOURS',
    'REMINDER_WINDOW_DAYS',
    'TICK_LEASE_SECONDS',
])
def test_non_positive_values_rejected(field):
    with pytest.raises(ValidationError):
        Settings(_env_file=None, **{field: 0})
