"""
Shared fixtures for the reminder pipeline tests.

InMemoryReminderStore implements the same async surface as
medreminder.db.connect.Database so the service, dispatcher and poller can
be exercised without PostgreSQL.
"""

import itertools
from datetime import datetime, timezone
from typing import Dict, List, Optional

import pytest

from medreminder.core.errors import StorageError
from medreminder.core.models import (
    DeliveryResult,
    DeliveryStatus,
    Medication,
    PushSubscription,
    Reminder,
    ReminderMessage,
    ReminderStatus,
    UserContact,
)


NOW = datetime(2025, 3, 10, 9, 30, tzinfo=timezone.utc)


class InMemoryReminderStore:
    """Dict-backed reminder store with the Database method signatures."""

    def __init__(self):
        self.medications: Dict[str, Medication] = {}
        self.contacts: Dict[str, UserContact] = {}
        self.subscriptions: Dict[str, PushSubscription] = {}
        self.reminders: Dict[str, Reminder] = {}
        self.fail_list_due = False
        self.status_writes: List[tuple] = []
        self._ids = itertools.count(1)

    def _next_id(self, prefix: str) -> str:
        return f"{prefix}-{next(self._ids)}"

    # Seeding helpers

    def add_medication(self, medication: Medication) -> Medication:
        self.medications[medication.id] = medication
        return medication

    def add_contact(self, user_id: str, email: Optional[str], language: str = 'en'):
        self.contacts[user_id] = UserContact(user_id=user_id, email=email, language=language)

    def add_subscription(self, user_id: str, endpoint: str) -> PushSubscription:
        subscription = PushSubscription(
            id=self._next_id('sub'),
            user_id=user_id,
            endpoint=endpoint,
            p256dh='p256dh-key',
            auth='auth-secret'
        )
        self.subscriptions[subscription.id] = subscription
        return subscription

    def add_reminder(
        self,
        medication_id: str,
        scheduled_time: datetime,
        status: ReminderStatus = ReminderStatus.PENDING
    ) -> Reminder:
        reminder = Reminder(
            id=self._next_id('rem'),
            medication_id=medication_id,
            scheduled_time=scheduled_time,
            status=status
        )
        self.reminders[reminder.id] = reminder
        return reminder

    # Store surface

    async def create_reminder(self, medication_id, scheduled_time):
        for reminder in self.reminders.values():
            if reminder.medication_id == medication_id and reminder.scheduled_time == scheduled_time:
                return None
        return self.add_reminder(medication_id, scheduled_time)

    async def list_reminders_by_medication(self, medication_id):
        return sorted(
            (r for r in self.reminders.values() if r.medication_id == medication_id),
            key=lambda r: r.scheduled_time
        )

    async def list_due_reminders(self, now, limit=None):
        if self.fail_list_due:
            raise StorageError("connection refused")
        due = sorted(
            (
                r for r in self.reminders.values()
                if r.status == ReminderStatus.PENDING and r.scheduled_time <= now
            ),
            key=lambda r: r.scheduled_time
        )
        return due[:limit] if limit is not None else due

    async def set_reminder_status(self, reminder_id, status, sent_at=None):
        status = ReminderStatus(status)
        if not status.is_terminal:
            raise ValueError("Reminders can only transition to sent or skipped")
        self.status_writes.append((reminder_id, status))
        reminder = self.reminders.get(reminder_id)
        if reminder is None or reminder.status != ReminderStatus.PENDING:
            return False
        self.reminders[reminder_id] = reminder.model_copy(update={
            'status': status,
            'sent_at': sent_at if status == ReminderStatus.SENT else None,
        })
        return True

    async def replace_pending_reminders(self, medication_id, scheduled_times):
        for reminder_id, reminder in list(self.reminders.items()):
            if reminder.medication_id == medication_id and reminder.status == ReminderStatus.PENDING:
                del self.reminders[reminder_id]

        created = []
        for scheduled_time in scheduled_times:
            reminder = await self.create_reminder(medication_id, scheduled_time)
            if reminder is not None:
                created.append(reminder)
        return sorted(created, key=lambda r: r.scheduled_time)

    async def delete_reminders_for_medication(self, medication_id):
        doomed = [rid for rid, r in self.reminders.items() if r.medication_id == medication_id]
        for reminder_id in doomed:
            del self.reminders[reminder_id]
        return len(doomed)

    async def get_medication(self, medication_id):
        return self.medications.get(medication_id)

    async def get_user_contact(self, user_id):
        return self.contacts.get(user_id)

    async def list_push_subscriptions(self, user_id):
        return [s for s in self.subscriptions.values() if s.user_id == user_id]

    async def delete_push_subscription(self, subscription_id):
        return self.subscriptions.pop(subscription_id, None) is not None


class RecordingChannel:
    """Channel double that returns scripted statuses and records every send."""

    def __init__(self, name: str, statuses=None, default: DeliveryStatus = DeliveryStatus.SUCCESS):
        self.name = name
        self.statuses = dict(statuses or {})
        self.default = default
        self.sent: List[tuple] = []

    def _label(self, destination) -> str:
        return getattr(destination, 'endpoint', None) or str(destination)

    async def send(self, destination, message: ReminderMessage) -> DeliveryResult:
        label = self._label(destination)
        self.sent.append((label, message))
        status = self.statuses.get(label, self.default)
        return DeliveryResult(
            channel=self.name,
            destination=label,
            status=status,
            detail=None if status == DeliveryStatus.SUCCESS else f"{status.value} failure"
        )

    async def close(self):
        return None


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def store() -> InMemoryReminderStore:
    return InMemoryReminderStore()


@pytest.fixture
def make_medication():
    """Factory for medications with sensible defaults."""

    def _make(**overrides) -> Medication:
        data = {
            'id': 'med-1',
            'user_id': 'user-1',
            'name': 'Metformin',
            'dosage': '500mg',
            'frequency': 'Twice daily',
            'timing': [],
            'start_date': datetime(2025, 3, 1, tzinfo=timezone.utc),
        }
        data.update(overrides)
        return Medication(**data)

    return _make
