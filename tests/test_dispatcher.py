"""
Tests for multi-channel routing in medreminder/core/dispatcher.py.
"""

from datetime import timedelta

import pytest

from medreminder.core.dispatcher import NotificationDispatcher, aggregate_status
from medreminder.core.models import (
    DeliveryResult,
    DeliveryStatus,
    MedicationStatus,
    ReminderStatus,
)
from tests.conftest import RecordingChannel


GONE_ENDPOINT = "https://fcm.googleapis.com/fcm/send/gone"
LIVE_ENDPOINT = "https://updates.push.services.mozilla.com/wpush/v2/live"


def _result(status: DeliveryStatus) -> DeliveryResult:
    return DeliveryResult(channel="email", destination="x", status=status)


class TestAggregateStatus:

    def test_any_success_is_sent(self):
        results = [_result(DeliveryStatus.PERMANENT), _result(DeliveryStatus.SUCCESS)]
        assert aggregate_status(results) == ReminderStatus.SENT

    def test_transient_without_success_stays_pending(self):
        results = [_result(DeliveryStatus.PERMANENT), _result(DeliveryStatus.TRANSIENT)]
        assert aggregate_status(results) == ReminderStatus.PENDING

    def test_all_permanent_is_skipped(self):
        assert aggregate_status([_result(DeliveryStatus.PERMANENT)]) == ReminderStatus.SKIPPED

    def test_nothing_attempted_is_skipped(self):
        assert aggregate_status([]) == ReminderStatus.SKIPPED


@pytest.fixture
def email():
    return RecordingChannel("email")


@pytest.fixture
def push():
    return RecordingChannel("push")


@pytest.fixture
def reminder(store, make_medication, now):
    store.add_medication(make_medication())
    return store.add_reminder('med-1', now - timedelta(minutes=1))


@pytest.mark.asyncio
async def test_delivers_to_email_and_every_subscription(store, email, push, reminder):
    store.add_contact('user-1', 'patient@example.com')
    store.add_subscription('user-1', GONE_ENDPOINT)
    store.add_subscription('user-1', LIVE_ENDPOINT)
    dispatcher = NotificationDispatcher(store, email_channel=email, push_channel=push)

    outcome = await dispatcher.dispatch(reminder)

    assert outcome.status == ReminderStatus.SENT
    assert outcome.reason == "delivered"
    assert outcome.succeeded_channels == ["email", "push"]
    assert [dest for dest, _ in email.sent] == ['patient@example.com']
    assert {dest for dest, _ in push.sent} == {GONE_ENDPOINT, LIVE_ENDPOINT}


@pytest.mark.asyncio
async def test_message_is_rendered_in_user_language(store, email, reminder):
    store.add_contact('user-1', 'patient@example.com', language='hi')
    dispatcher = NotificationDispatcher(store, email_channel=email)

    await dispatcher.dispatch(reminder)

    _, message = email.sent[0]
    assert message.subject == "💊 दवा लेने का समय: Metformin"


@pytest.mark.asyncio
async def test_missing_medication_is_skipped(store, email, now):
    reminder = store.add_reminder('med-gone', now)
    dispatcher = NotificationDispatcher(store, email_channel=email)

    outcome = await dispatcher.dispatch(reminder)

    assert outcome.status == ReminderStatus.SKIPPED
    assert outcome.reason == "medication_not_found"
    assert email.sent == []


@pytest.mark.asyncio
async def test_inactive_medication_is_skipped(store, email, make_medication, now):
    store.add_medication(make_medication(status=MedicationStatus.COMPLETED))
    store.add_contact('user-1', 'patient@example.com')
    reminder = store.add_reminder('med-1', now)
    dispatcher = NotificationDispatcher(store, email_channel=email)

    outcome = await dispatcher.dispatch(reminder)

    assert outcome.status == ReminderStatus.SKIPPED
    assert outcome.reason == "medication_completed"
    assert email.sent == []


@pytest.mark.asyncio
async def test_no_destinations_is_skipped(store, email, push, reminder):
    store.add_contact('user-1', None)
    dispatcher = NotificationDispatcher(store, email_channel=email, push_channel=push)

    outcome = await dispatcher.dispatch(reminder)

    assert outcome.status == ReminderStatus.SKIPPED
    assert outcome.reason == "no_destinations"


@pytest.mark.asyncio
async def test_unconfigured_push_channel_ignores_subscriptions(store, email, reminder):
    store.add_contact('user-1', 'patient@example.com')
    store.add_subscription('user-1', LIVE_ENDPOINT)
    dispatcher = NotificationDispatcher(store, email_channel=email, push_channel=None)

    outcome = await dispatcher.dispatch(reminder)

    assert outcome.succeeded_channels == ["email"]
    assert len(store.subscriptions) == 1


@pytest.mark.asyncio
async def test_gone_subscription_is_removed_and_reminder_skipped(store, push, reminder):
    push.statuses = {GONE_ENDPOINT: DeliveryStatus.PERMANENT}
    subscription = store.add_subscription('user-1', GONE_ENDPOINT)
    dispatcher = NotificationDispatcher(store, push_channel=push)

    outcome = await dispatcher.dispatch(reminder)

    assert outcome.status == ReminderStatus.SKIPPED
    assert outcome.reason == "all_destinations_failed"
    assert subscription.id not in store.subscriptions


@pytest.mark.asyncio
async def test_gone_subscription_removed_even_when_email_succeeds(store, email, push, reminder):
    store.add_contact('user-1', 'patient@example.com')
    push.statuses = {GONE_ENDPOINT: DeliveryStatus.PERMANENT}
    gone = store.add_subscription('user-1', GONE_ENDPOINT)
    live = store.add_subscription('user-1', LIVE_ENDPOINT)
    dispatcher = NotificationDispatcher(store, email_channel=email, push_channel=push)

    outcome = await dispatcher.dispatch(reminder)

    assert outcome.status == ReminderStatus.SENT
    assert gone.id not in store.subscriptions
    assert live.id in store.subscriptions


@pytest.mark.asyncio
async def test_transient_push_failure_keeps_subscription(store, push, reminder):
    push.default = DeliveryStatus.TRANSIENT
    subscription = store.add_subscription('user-1', LIVE_ENDPOINT)
    dispatcher = NotificationDispatcher(store, push_channel=push)

    outcome = await dispatcher.dispatch(reminder)

    assert outcome.status == ReminderStatus.PENDING
    assert outcome.reason == "transient_failure"
    assert subscription.id in store.subscriptions


@pytest.mark.asyncio
async def test_subscription_delete_failure_does_not_abort_dispatch(store, push, reminder):
    push.default = DeliveryStatus.PERMANENT
    store.add_subscription('user-1', GONE_ENDPOINT)

    async def broken_delete(subscription_id):
        raise RuntimeError("db unavailable")

    store.delete_push_subscription = broken_delete
    dispatcher = NotificationDispatcher(store, push_channel=push)

    outcome = await dispatcher.dispatch(reminder)

    assert outcome.status == ReminderStatus.SKIPPED
