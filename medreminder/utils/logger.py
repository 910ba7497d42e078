"""
Centralized logging configuration for the medication reminder service.

Provides a single rotating log file with daily rotation and 30-day retention.
Logs the key pipeline events: reminders regenerated, sent, skipped, delivery
failures, and removed push destinations.
"""

import logging
import os
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import Optional


def setup_logger(
    name: str = None,
    log_level: str = 'INFO',
    log_file: str = 'logs/reminders.log'
) -> logging.Logger:
    """
    Configure and return a logger with rotating file handler.

    Writes to a single log file rotated at midnight and kept for 30 days,
    and mirrors everything to the console.

    Args:
        name: Logger name (uses root logger if None)
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Path to log file

    Returns:
        Configured logger instance
    """
    log_path = Path(log_file)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger(name)

    # Only configure if not already configured
    if logger.handlers:
        return logger

    level = getattr(logging, log_level.upper(), logging.INFO)
    logger.setLevel(level)

    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    file_handler = TimedRotatingFileHandler(
        filename=log_file,
        when='midnight',
        interval=1,
        backupCount=30,
        encoding='utf-8'
    )
    file_handler.suffix = "%Y-%m-%d"

    # logs/reminders.log.2025-11-16 -> logs/reminders-2025-11-16.log
    def namer(default_name):
        base_filename = log_file.replace('.log', '')
        date_part = default_name.split('.')[-1]
        return f"{base_filename}-{date_part}.log"

    file_handler.namer = namer
    file_handler.setLevel(level)
    file_handler.setFormatter(formatter)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)

    logger.addHandler(file_handler)
    logger.addHandler(console_handler)

    logger.propagate = False

    return logger


def get_logger(name: str = None) -> logging.Logger:
    """
    Get a logger instance.

    If the logger hasn't been configured yet, it is set up from the
    LOG_LEVEL and LOG_FILE environment variables.

    Args:
        name: Logger name (uses root logger if None)

    Returns:
        Logger instance
    """
    logger = logging.getLogger(name)

    if not logger.handlers:
        log_level = os.getenv('LOG_LEVEL', 'INFO')
        log_file = os.getenv('LOG_FILE', 'logs/reminders.log')
        return setup_logger(name, log_level, log_file)

    return logger


# Event log shared by the helpers below
app_logger = get_logger('medreminder.events')


def log_reminders_regenerated(medication_id: str, created: int, timing: list):
    """
    Log when a medication's pending reminders are regenerated.

    Args:
        medication_id: Medication ID
        created: Number of pending reminders now scheduled
        timing: Resolved times of day
    """
    app_logger.info(
        f"Reminders regenerated | medication_id={medication_id} | "
        f"created={created} | timing={','.join(timing) or 'as-needed'}"
    )


def log_reminder_sent(reminder_id: str, medication_id: str, channels: list):
    """
    Log when a reminder was delivered on at least one channel.

    Args:
        reminder_id: Reminder ID
        medication_id: Medication ID
        channels: Channels that succeeded
    """
    app_logger.info(
        f"Reminder sent | reminder_id={reminder_id} | "
        f"medication_id={medication_id} | channels={','.join(channels)}"
    )


def log_reminder_skipped(reminder_id: str, reason: str):
    app_logger.info(
        f"Reminder skipped | reminder_id={reminder_id} | reason={reason}"
    )


def log_delivery_failed(
    reminder_id: str,
    channel: str,
    destination: str,
    status: str,
    detail: Optional[str] = None
):
    """
    Log a failed delivery attempt on one destination.

    Args:
        reminder_id: Reminder ID
        channel: Channel name (email, push)
        destination: Destination label
        status: transient or permanent
        detail: Provider error message
    """
    detail_str = f" | detail={detail}" if detail else ""
    app_logger.warning(
        f"Delivery failed | reminder_id={reminder_id} | channel={channel} | "
        f"destination={destination} | status={status}{detail_str}"
    )


def log_destination_removed(subscription_id: str, user_id: str):
    app_logger.info(
        f"Push subscription removed | subscription_id={subscription_id} | "
        f"user_id={user_id}"
    )


def log_tick_summary(summary):
    """
    Log the outcome of one poll tick.

    Args:
        summary: TickSummary from the poller
    """
    app_logger.info(
        f"Tick complete | due={summary.due} | sent={summary.sent} | "
        f"skipped={summary.skipped} | expired={summary.expired} | "
        f"retrying={summary.retrying} | errors={summary.errors}"
    )
