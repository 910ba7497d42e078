"""
Background poller that delivers due medication reminders.

Every interval the poller scans for pending reminders whose time has come,
dispatches them concurrently and records each outcome with one atomic status
write. Ticks never overlap: the loop awaits each tick before scheduling the
next, a lock makes a concurrent run_tick() a no-op, and an optional Redis
lease, renewed while the tick runs, extends that guarantee across processes.

A StorageError from any reminder, or losing the lease, aborts the tick: no
further reminders start, in-flight ones finish, and the rest stay pending for
the next interval.

Reminders that keep failing transiently are retried on later ticks until they
are more than retry_window past due, then skipped.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Optional

from pydantic import BaseModel

from medreminder.core.errors import StorageError
from medreminder.core.models import Reminder, ReminderStatus
from medreminder.utils.logger import (
    get_logger,
    log_reminder_sent,
    log_reminder_skipped,
    log_tick_summary,
)


logger = get_logger(__name__)


OUTCOME_SENT = "sent"
OUTCOME_SKIPPED = "skipped"
OUTCOME_EXPIRED = "expired"
OUTCOME_RETRYING = "retrying"


class TickSummary(BaseModel):
    """Counts for one poll tick."""

    due: int = 0
    sent: int = 0
    skipped: int = 0
    expired: int = 0
    retrying: int = 0
    errors: int = 0


class ReminderPoller:
    """
    Periodic scanner and dispatcher for due reminders.

    States per tick: idle -> scanning -> dispatching -> idle.
    Call start() to run the loop and stop() to end it after the current tick.
    """

    def __init__(
        self,
        store,
        dispatcher,
        interval_seconds: int = 60,
        retry_window: timedelta = timedelta(hours=24),
        batch_size: Optional[int] = 500,
        max_concurrent: int = 10,
        tick_lease=None,
        lease_renew_interval: Optional[float] = None
    ):
        self.store = store
        self.dispatcher = dispatcher
        self.interval_seconds = interval_seconds
        self.retry_window = retry_window
        self.batch_size = batch_size
        self.max_concurrent = max_concurrent
        self.tick_lease = tick_lease
        # Defaults to a third of the lease TTL
        self.lease_renew_interval = lease_renew_interval
        self.running = False
        self._lease_held = False
        self._tick_lock = asyncio.Lock()
        self._stop_event: Optional[asyncio.Event] = None

    @property
    def busy(self) -> bool:
        """True while a tick is in progress."""
        return self._tick_lock.locked()

    async def _acquire_lease(self) -> bool:
        self._lease_held = False
        if self.tick_lease is None:
            return True

        try:
            acquired = await self.tick_lease.acquire()
        except Exception as e:
            # Status writes are guarded by status = 'pending', so running
            # without the lease cannot double-transition a reminder
            logger.warning(f"Tick lease unavailable, running tick without it: {e}")
            return True

        if not acquired:
            logger.info("Tick lease held by another instance, skipping tick")
        self._lease_held = bool(acquired)
        return acquired

    async def _release_lease(self):
        if self._lease_held:
            self._lease_held = False
            await self.tick_lease.release()

    async def _keep_lease(self, abort: asyncio.Event):
        """Renew the tick lease until cancelled; set abort if it is lost."""
        interval = self.lease_renew_interval or self.tick_lease.ttl_seconds / 3

        while True:
            await asyncio.sleep(interval)
            try:
                renewed = await self.tick_lease.renew()
            except Exception as e:
                logger.error(f"Could not renew tick lease: {e}")
                renewed = False

            if not renewed:
                logger.error("Tick lease lost, no further reminders will start this tick")
                abort.set()
                return

    async def _process_reminder(self, reminder: Reminder, now: datetime) -> str:
        """
        Dispatch one reminder and record the outcome.

        Args:
            reminder: Due pending reminder
            now: Tick instant

        Returns:
            One of the OUTCOME_* constants
        """
        if now - reminder.scheduled_time > self.retry_window:
            await self.store.set_reminder_status(reminder.id, ReminderStatus.SKIPPED)
            log_reminder_skipped(reminder.id, "retry_window_exceeded")
            return OUTCOME_EXPIRED

        outcome = await self.dispatcher.dispatch(reminder)

        if outcome.status == ReminderStatus.SENT:
            await self.store.set_reminder_status(reminder.id, ReminderStatus.SENT, sent_at=now)
            log_reminder_sent(reminder.id, reminder.medication_id, outcome.succeeded_channels)
            return OUTCOME_SENT

        if outcome.status == ReminderStatus.SKIPPED:
            await self.store.set_reminder_status(reminder.id, ReminderStatus.SKIPPED)
            log_reminder_skipped(reminder.id, outcome.reason)
            return OUTCOME_SKIPPED

        logger.info(
            f"Reminder {reminder.id} left pending after transient failure, "
            f"will retry next tick"
        )
        return OUTCOME_RETRYING

    async def _run_tick(self, now: datetime, abort: asyncio.Event) -> Optional[TickSummary]:
        try:
            due = await self.store.list_due_reminders(now, limit=self.batch_size)
        except StorageError as e:
            logger.error(f"Could not load due reminders, aborting tick: {e}")
            return None

        summary = TickSummary(due=len(due))
        if not due:
            logger.debug("No due reminders")
            return summary

        logger.info(f"Found {len(due)} due reminder(s)")

        semaphore = asyncio.Semaphore(self.max_concurrent)

        async def worker(reminder: Reminder) -> Optional[str]:
            async with semaphore:
                if abort.is_set():
                    return None
                try:
                    return await self._process_reminder(reminder, now)
                except StorageError:
                    # Store is down; left-over reminders wait for the next tick
                    abort.set()
                    raise

        # Tasks are created in ascending scheduled_time order; the semaphore
        # admits waiters first-in first-out
        results = await asyncio.gather(
            *[worker(reminder) for reminder in due],
            return_exceptions=True
        )

        not_started = 0
        for reminder, result in zip(due, results):
            if isinstance(result, Exception):
                summary.errors += 1
                logger.error(
                    f"Error processing reminder {reminder.id}: {result}",
                    exc_info=result
                )
            elif result is None:
                not_started += 1
            else:
                setattr(summary, result, getattr(summary, result) + 1)

        if abort.is_set():
            logger.error(
                f"Tick aborted, {not_started} of {len(due)} due reminder(s) "
                f"left for the next tick"
            )
            log_tick_summary(summary)
            return None

        log_tick_summary(summary)
        return summary

    async def run_tick(self, now: Optional[datetime] = None) -> Optional[TickSummary]:
        """
        Run one scan-and-dispatch cycle.

        Skipped if a tick is already in progress in this process or, with a
        lease configured, in another one.

        Args:
            now: Tick instant (defaults to current UTC time)

        Returns:
            TickSummary, or None if the tick was skipped or aborted
        """
        if self._tick_lock.locked():
            logger.warning("Previous tick still running, skipping")
            return None

        async with self._tick_lock:
            if not await self._acquire_lease():
                return None

            abort = asyncio.Event()
            keeper = None
            if self._lease_held:
                keeper = asyncio.create_task(self._keep_lease(abort))

            try:
                return await self._run_tick(now or datetime.now(timezone.utc), abort)
            finally:
                if keeper is not None:
                    keeper.cancel()
                    try:
                        await keeper
                    except asyncio.CancelledError:
                        pass
                await self._release_lease()

    async def start(self):
        """
        Start the poller loop.

        Runs a tick every interval_seconds until stop() is called. A tick that
        overruns the interval delays the next one instead of overlapping it.
        """
        if self.running:
            logger.warning("Reminder poller already running")
            return

        self.running = True
        self._stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()

        logger.info(
            f"Starting reminder poller (checking every {self.interval_seconds}s)"
        )

        while self.running:
            started = loop.time()

            try:
                await self.run_tick()
            except Exception as e:
                logger.error(f"Error in poller loop: {e}", exc_info=True)

            remaining = max(0.0, self.interval_seconds - (loop.time() - started))
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=remaining)
            except asyncio.TimeoutError:
                pass

        logger.info("Reminder poller stopped")

    def stop(self):
        """Stop the poller loop after the current tick."""
        logger.info("Stopping reminder poller...")
        self.running = False
        if self._stop_event is not None:
            self._stop_event.set()
