"""
Regeneration entrypoint and query surface for medication reminders.

The records application calls into ReminderService whenever a medication is
created, edited, extracted from a document, or deleted. This is the only way
reminders enter the pipeline from outside.
"""

from datetime import datetime, timezone
from typing import List, Optional

from medreminder.core.generator import generate_reminder_times
from medreminder.core.models import Medication, Reminder
from medreminder.core.timing import resolve_medication_timing
from medreminder.utils.logger import get_logger, log_reminders_regenerated


logger = get_logger(__name__)


SCHEDULE_FIELDS = ('frequency', 'timing', 'start_date', 'end_date', 'status')


class ReminderService:
    """Keeps each medication's pending reminders in line with its schedule."""

    def __init__(self, store, window_days: int = 7, tz=timezone.utc):
        self.store = store
        self.window_days = window_days
        self.tz = tz

    def _now(self) -> datetime:
        return datetime.now(timezone.utc)

    async def regenerate(
        self,
        medication: Medication,
        now: Optional[datetime] = None
    ) -> List[Reminder]:
        """
        Replace a medication's pending reminders with a freshly generated set.

        Stopped and completed medications end up with no pending reminders.
        Sent and skipped history is never touched.

        Args:
            medication: Medication to schedule
            now: Reference instant (defaults to current UTC time)

        Returns:
            The reminders now pending for the medication

        Raises:
            StorageError: If the store cannot be updated
        """
        now = now or self._now()
        timing = resolve_medication_timing(medication)

        times = []
        if medication.is_active:
            times = generate_reminder_times(
                medication,
                now,
                window_days=self.window_days,
                tz=self.tz,
                timing=timing
            )

        reminders = await self.store.replace_pending_reminders(medication.id, times)
        log_reminders_regenerated(medication.id, len(reminders), timing)
        return reminders

    async def regenerate_by_id(
        self,
        medication_id: str,
        now: Optional[datetime] = None
    ) -> List[Reminder]:
        """
        Load a medication and regenerate its reminders.

        Args:
            medication_id: Medication ID
            now: Reference instant

        Returns:
            Pending reminders, empty if the medication does not exist
        """
        medication = await self.store.get_medication(medication_id)
        if medication is None:
            logger.warning(f"Cannot regenerate reminders, medication {medication_id} not found")
            return []
        return await self.regenerate(medication, now)

    async def on_medication_changed(
        self,
        previous: Optional[Medication],
        current: Medication,
        now: Optional[datetime] = None
    ) -> Optional[List[Reminder]]:
        """
        React to a medication create or update.

        Regenerates only when the medication is new or a schedule-affecting
        field changed.

        Args:
            previous: Medication before the change, None on create
            current: Medication after the change
            now: Reference instant

        Returns:
            The pending reminders if regenerated, None if nothing changed
        """
        if previous is not None:
            changed = [
                field for field in SCHEDULE_FIELDS
                if getattr(previous, field) != getattr(current, field)
            ]
            if not changed:
                logger.debug(f"Medication {current.id} schedule unchanged, keeping reminders")
                return None
            logger.info(f"Medication {current.id} changed {', '.join(changed)}, regenerating")

        return await self.regenerate(current, now)

    async def on_medication_deleted(self, medication_id: str) -> int:
        """Delete every reminder of a removed medication."""
        deleted = await self.store.delete_reminders_for_medication(medication_id)
        logger.info(f"Deleted {deleted} reminders for medication {medication_id}")
        return deleted

    async def list_for_medication(self, medication_id: str) -> List[Reminder]:
        return await self.store.list_reminders_by_medication(medication_id)

    async def list_due(self, now: Optional[datetime] = None) -> List[Reminder]:
        return await self.store.list_due_reminders(now or self._now())
