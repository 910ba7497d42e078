"""
Routing of a due reminder to every destination of its owner.

For one reminder the dispatcher loads the medication and the owner's
destinations, renders the message once, and attempts every available channel
concurrently. The aggregate decides the reminder's fate:

- any success            -> sent
- any transient failure  -> stays pending (retried next tick)
- otherwise              -> skipped

Push subscriptions that fail permanently are deleted so they are never
retried.
"""

import asyncio
from datetime import timezone, tzinfo
from typing import List, Optional

from pydantic import BaseModel, Field

from medreminder.channels.base import Channel
from medreminder.channels.templates import render_reminder
from medreminder.core.models import (
    DeliveryResult,
    DeliveryStatus,
    PushSubscription,
    Reminder,
    ReminderStatus,
)
from medreminder.utils.logger import get_logger, log_delivery_failed, log_destination_removed


logger = get_logger(__name__)


class DispatchOutcome(BaseModel):
    """Aggregate result of dispatching one reminder."""

    reminder_id: str
    status: ReminderStatus
    reason: str
    results: List[DeliveryResult] = Field(default_factory=list)

    @property
    def succeeded_channels(self) -> List[str]:
        return sorted({r.channel for r in self.results if r.succeeded})


def aggregate_status(results: List[DeliveryResult]) -> ReminderStatus:
    """
    Decide a reminder's status from its delivery results.

    Args:
        results: Results of every attempted destination

    Returns:
        SENT if anything succeeded, PENDING if anything failed transiently,
        SKIPPED otherwise (including when nothing was attempted)
    """
    statuses = {r.status for r in results}
    if DeliveryStatus.SUCCESS in statuses:
        return ReminderStatus.SENT
    if DeliveryStatus.TRANSIENT in statuses:
        return ReminderStatus.PENDING
    return ReminderStatus.SKIPPED


class NotificationDispatcher:
    """
    Delivers a reminder across the email and push channels.

    Either channel may be None when it is not configured for the deployment.
    """

    def __init__(
        self,
        store,
        email_channel: Optional[Channel] = None,
        push_channel: Optional[Channel] = None,
        tz: tzinfo = timezone.utc
    ):
        self.store = store
        self.email_channel = email_channel
        self.push_channel = push_channel
        self.tz = tz

    async def _send_push(self, subscription: PushSubscription, message) -> DeliveryResult:
        result = await self.push_channel.send(subscription, message)

        if result.status == DeliveryStatus.PERMANENT:
            await self._remove_subscription(subscription)

        return result

    async def _remove_subscription(self, subscription: PushSubscription):
        try:
            removed = await self.store.delete_push_subscription(subscription.id)
        except Exception as e:
            # Left in place; the next permanent failure will try again
            logger.error(f"Failed to delete push subscription {subscription.id}: {e}")
            return

        if removed:
            log_destination_removed(subscription.id, subscription.user_id)
        else:
            logger.debug(f"Push subscription {subscription.id} already removed")

    async def dispatch(self, reminder: Reminder) -> DispatchOutcome:
        """
        Deliver one due reminder on every available channel.

        Args:
            reminder: A pending, due reminder

        Returns:
            DispatchOutcome with the status the reminder should move to

        Raises:
            StorageError: If the medication or destinations cannot be loaded
        """
        medication = await self.store.get_medication(reminder.medication_id)

        if medication is None:
            return DispatchOutcome(
                reminder_id=reminder.id,
                status=ReminderStatus.SKIPPED,
                reason="medication_not_found"
            )

        if not medication.is_active:
            return DispatchOutcome(
                reminder_id=reminder.id,
                status=ReminderStatus.SKIPPED,
                reason=f"medication_{medication.status.value}"
            )

        contact = await self.store.get_user_contact(medication.user_id)
        language = contact.language if contact else 'en'

        subscriptions: List[PushSubscription] = []
        if self.push_channel is not None:
            subscriptions = await self.store.list_push_subscriptions(medication.user_id)

        message = render_reminder(medication, reminder.scheduled_time, language, self.tz)

        attempts = []
        if self.email_channel is not None and contact and contact.email:
            attempts.append(self.email_channel.send(contact.email, message))
        for subscription in subscriptions:
            attempts.append(self._send_push(subscription, message))

        if not attempts:
            logger.warning(
                f"No deliverable destination for reminder {reminder.id} "
                f"(user {medication.user_id})"
            )
            return DispatchOutcome(
                reminder_id=reminder.id,
                status=ReminderStatus.SKIPPED,
                reason="no_destinations"
            )

        results = list(await asyncio.gather(*attempts))

        for result in results:
            if not result.succeeded:
                log_delivery_failed(
                    reminder.id,
                    result.channel,
                    result.destination,
                    result.status.value,
                    result.detail
                )

        status = aggregate_status(results)
        reason = {
            ReminderStatus.SENT: "delivered",
            ReminderStatus.PENDING: "transient_failure",
            ReminderStatus.SKIPPED: "all_destinations_failed",
        }[status]

        return DispatchOutcome(
            reminder_id=reminder.id,
            status=status,
            reason=reason,
            results=results
        )
