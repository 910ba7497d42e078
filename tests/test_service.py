"""
Tests for ReminderService regeneration in medreminder/core/service.py.
"""

from datetime import datetime, timedelta, timezone

import pytest

from medreminder.core.models import MedicationStatus, ReminderStatus
from medreminder.core.service import ReminderService


@pytest.fixture
def service(store):
    return ReminderService(store, window_days=7)


@pytest.mark.asyncio
async def test_regenerate_creates_pending_reminders(service, store, make_medication, now):
    medication = make_medication(frequency="twice daily")

    reminders = await service.regenerate(medication, now)

    assert len(reminders) == 13
    assert all(r.status == ReminderStatus.PENDING for r in reminders)
    assert [r.scheduled_time for r in reminders] == sorted(r.scheduled_time for r in reminders)
    assert len(store.reminders) == 13


@pytest.mark.asyncio
async def test_regenerate_twice_yields_same_pending_set(service, store, make_medication, now):
    medication = make_medication(frequency="three times daily")

    first = await service.regenerate(medication, now)
    second = await service.regenerate(medication, now)

    assert [r.scheduled_time for r in first] == [r.scheduled_time for r in second]
    pending = [r for r in store.reminders.values() if r.status == ReminderStatus.PENDING]
    assert len(pending) == len(second)


@pytest.mark.asyncio
async def test_regenerate_preserves_history(service, store, make_medication, now):
    medication = make_medication(frequency="once daily")
    sent = store.add_reminder(medication.id, now - timedelta(days=1), ReminderStatus.SENT)
    skipped = store.add_reminder(medication.id, now - timedelta(days=2), ReminderStatus.SKIPPED)
    stale = store.add_reminder(medication.id, now + timedelta(hours=3))

    await service.regenerate(medication, now)

    assert store.reminders[sent.id].status == ReminderStatus.SENT
    assert store.reminders[skipped.id].status == ReminderStatus.SKIPPED
    assert stale.id not in store.reminders


@pytest.mark.asyncio
async def test_regenerate_does_not_duplicate_terminal_slot(service, store, make_medication, now):
    medication = make_medication(frequency="once daily")
    tomorrow = datetime(2025, 3, 11, 8, 0, tzinfo=timezone.utc)
    store.add_reminder(medication.id, tomorrow, ReminderStatus.SKIPPED)

    reminders = await service.regenerate(medication, now)

    assert tomorrow not in [r.scheduled_time for r in reminders]
    matching = [r for r in store.reminders.values() if r.scheduled_time == tomorrow]
    assert len(matching) == 1


@pytest.mark.asyncio
async def test_stopped_medication_has_no_pending_reminders(service, store, make_medication, now):
    medication = make_medication(frequency="twice daily")
    await service.regenerate(medication, now)

    stopped = medication.model_copy(update={'status': MedicationStatus.STOPPED})
    reminders = await service.regenerate(stopped, now)

    assert reminders == []
    assert not [r for r in store.reminders.values() if r.status == ReminderStatus.PENDING]


@pytest.mark.asyncio
async def test_regenerate_by_id_missing_medication(service):
    assert await service.regenerate_by_id('missing') == []


@pytest.mark.asyncio
async def test_regenerate_by_id_loads_medication(service, store, make_medication, now):
    store.add_medication(make_medication(frequency="once daily"))

    reminders = await service.regenerate_by_id('med-1', now)

    assert len(reminders) == 6


class TestOnMedicationChanged:

    @pytest.mark.asyncio
    async def test_create_regenerates(self, service, make_medication, now):
        reminders = await service.on_medication_changed(None, make_medication(), now)
        assert reminders

    @pytest.mark.asyncio
    async def test_unrelated_edit_keeps_reminders(self, service, store, make_medication, now):
        before = make_medication()
        await service.regenerate(before, now)
        ids = set(store.reminders)

        after = before.model_copy(update={'name': 'Metformin XR', 'instructions': 'With food'})
        result = await service.on_medication_changed(before, after, now)

        assert result is None
        assert set(store.reminders) == ids

    @pytest.mark.asyncio
    async def test_frequency_edit_regenerates(self, service, store, make_medication, now):
        before = make_medication(frequency="once daily")
        await service.regenerate(before, now)

        after = before.model_copy(update={'frequency': 'twice daily'})
        reminders = await service.on_medication_changed(before, after, now)

        assert len(reminders) == 13
        times = {r.scheduled_time.strftime('%H:%M') for r in reminders}
        assert times == {"08:00", "20:00"}


@pytest.mark.asyncio
async def test_on_medication_deleted_removes_all_reminders(service, store, make_medication, now):
    medication = make_medication()
    await service.regenerate(medication, now)
    store.add_reminder(medication.id, now - timedelta(days=1), ReminderStatus.SENT)
    store.add_reminder('med-other', now + timedelta(hours=1))

    deleted = await service.on_medication_deleted(medication.id)

    assert deleted == 14
    assert [r.medication_id for r in store.reminders.values()] == ['med-other']


@pytest.mark.asyncio
async def test_list_due_returns_only_past_pending(service, store, now):
    due = store.add_reminder('med-1', now - timedelta(minutes=5))
    store.add_reminder('med-1', now + timedelta(minutes=5))
    store.add_reminder('med-1', now - timedelta(minutes=10), ReminderStatus.SENT)

    result = await service.list_due(now)

    assert [r.id for r in result] == [due.id]


@pytest.mark.asyncio
async def test_list_for_medication_includes_history(service, store, now):
    store.add_reminder('med-1', now - timedelta(days=1), ReminderStatus.SENT)
    store.add_reminder('med-1', now + timedelta(days=1))

    result = await service.list_for_medication('med-1')

    assert [r.status for r in result] == [ReminderStatus.SENT, ReminderStatus.PENDING]
