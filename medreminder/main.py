"""
Main application for the medication reminder service.

Wires the pipeline together and runs it:
1. Connect PostgreSQL (and Redis for the tick lease, if configured)
2. Build the email and push channels from configuration
3. Run the reminder poller every POLLING_INTERVAL seconds

Shutdown lets the in-flight tick finish within SHUTDOWN_GRACE_SECONDS and
cancels it otherwise; each reminder's status write is atomic, so an
abandoned tick leaves no reminder half-updated.
"""

import asyncio
import signal
from typing import Optional

from medreminder.channels import create_email_channel, create_push_channel
from medreminder.config import Settings, get_settings
from medreminder.core.dispatcher import NotificationDispatcher
from medreminder.core.scheduler import ReminderPoller
from medreminder.core.service import ReminderService
from medreminder.core.tick_lease import TickLease
from medreminder.db import db
from medreminder.utils.logger import get_logger


logger = get_logger(__name__)


class Application:
    """
    Main application orchestrator.

    Owns the database, the optional tick lease, the channels, and the
    poller, and manages their lifecycle.
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.db = db
        self.tick_lease: Optional[TickLease] = None
        self.email_channel = None
        self.push_channel = None
        self.dispatcher: Optional[NotificationDispatcher] = None
        self.poller: Optional[ReminderPoller] = None
        self.service: Optional[ReminderService] = None
        self.poller_task: Optional[asyncio.Task] = None

    async def initialize(self):
        """
        Initialize all system components.

        Connects to the database and Redis and builds the pipeline.
        """
        logger.info("Initializing reminder service...")

        await self.db.connect(self.settings.database_url)
        await self.db.init_schema()
        logger.info("Database connected")

        if self.settings.redis_url:
            self.tick_lease = TickLease(ttl_seconds=self.settings.tick_lease_seconds)
            await self.tick_lease.connect(self.settings.redis_url)

        self.email_channel = create_email_channel(self.settings)
        self.push_channel = create_push_channel(self.settings)

        self.dispatcher = NotificationDispatcher(
            self.db,
            email_channel=self.email_channel,
            push_channel=self.push_channel,
            tz=self.settings.timezone
        )
        self.poller = ReminderPoller(
            self.db,
            self.dispatcher,
            interval_seconds=self.settings.polling_interval,
            retry_window=self.settings.retry_window,
            batch_size=self.settings.scheduler_batch_size,
            max_concurrent=self.settings.max_concurrent_workers,
            tick_lease=self.tick_lease
        )
        self.service = ReminderService(
            self.db,
            window_days=self.settings.reminder_window_days,
            tz=self.settings.timezone
        )

        logger.info("Reminder service initialized successfully")

    async def shutdown(self):
        """
        Gracefully shutdown all system components.

        Stops the poller, waits for the current tick, and closes connections.
        """
        logger.info("Shutting down reminder service...")

        if self.poller and self.poller.running:
            self.poller.stop()

        if self.poller_task and not self.poller_task.done():
            try:
                await asyncio.wait_for(
                    asyncio.shield(self.poller_task),
                    timeout=self.settings.shutdown_grace_seconds
                )
            except asyncio.TimeoutError:
                logger.warning("In-flight tick did not finish in time, abandoning it")
                self.poller_task.cancel()
                try:
                    await self.poller_task
                except asyncio.CancelledError:
                    pass

        if self.email_channel is not None:
            await self.email_channel.close()
        if self.tick_lease is not None:
            await self.tick_lease.close()
        await self.db.close()

        logger.info("Reminder service shutdown complete")

    async def run(self):
        """
        Run the reminder poller until shutdown.
        """
        logger.info("Starting medication reminder service")
        logger.info(f"Polling interval: {self.settings.polling_interval}s")
        logger.info(f"Max concurrent dispatches: {self.settings.max_concurrent_workers}")
        logger.info(f"Retry window: {self.settings.retry_window_hours}h")

        self.poller_task = asyncio.create_task(self.poller.start())
        await asyncio.gather(self.poller_task, return_exceptions=True)


async def main():
    """
    Main entry point for the application.

    Initializes the application, sets up signal handlers for graceful
    shutdown, and runs the poller.
    """
    app = Application()

    loop = asyncio.get_running_loop()
    shutdown_task = None

    def signal_handler():
        nonlocal shutdown_task
        logger.info("Received shutdown signal")
        if shutdown_task is None:
            shutdown_task = asyncio.create_task(app.shutdown())

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, signal_handler)

    try:
        await app.initialize()
        await app.run()

    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received")

    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)

    finally:
        if shutdown_task is not None:
            await shutdown_task
        else:
            await app.shutdown()


def run():
    """Console script entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
