"""
Browser push delivery using the Web Push protocol with VAPID authentication.

Each destination is a PushSubscription carrying the endpoint URL and the
p256dh/auth secrets; the payload is encrypted per subscription by pywebpush.
pywebpush is synchronous, so sends run in a worker thread.
"""

import asyncio
import json
from typing import Optional

import requests
from pywebpush import WebPushException, webpush

from medreminder.channels.base import Channel
from medreminder.core.errors import PermanentDeliveryError, TransientDeliveryError
from medreminder.core.models import PushSubscription, ReminderMessage
from medreminder.utils.logger import get_logger


logger = get_logger(__name__)


# Push service responses meaning the subscription is gone for good
GONE_STATUS_CODES = frozenset({403, 404, 410})


class PushChannel(Channel):
    """Web Push channel. The destination is a PushSubscription."""

    name = "push"

    def __init__(
        self,
        vapid_private_key: str,
        vapid_subject: str,
        ttl: int = 3600,
        timeout: int = 15
    ):
        self.vapid_private_key = vapid_private_key
        self.vapid_subject = vapid_subject
        self.ttl = ttl
        self.timeout = timeout

    def describe(self, destination: PushSubscription) -> str:
        return destination.label

    def _send_sync(self, subscription: PushSubscription, data: str):
        return webpush(
            subscription_info=subscription.to_webpush_info(),
            data=data,
            vapid_private_key=self.vapid_private_key,
            # pywebpush adds "exp" to the claims dict, so pass a fresh one
            vapid_claims={'sub': self.vapid_subject},
            ttl=self.ttl,
            timeout=self.timeout
        )

    async def _deliver(self, destination: PushSubscription, message: ReminderMessage) -> None:
        """
        Encrypt and post the push payload.

        Raises:
            PermanentDeliveryError: The push service reports the subscription gone
            TransientDeliveryError: Any other push service or network failure
        """
        data = json.dumps(message.push_payload, ensure_ascii=False)

        try:
            await asyncio.to_thread(self._send_sync, destination, data)
        except WebPushException as e:
            status_code: Optional[int] = getattr(e.response, 'status_code', None)
            if status_code in GONE_STATUS_CODES:
                logger.warning(
                    f"[Push] Subscription gone ({status_code}): {destination.label}..."
                )
                raise PermanentDeliveryError(
                    f"Subscription expired or invalid ({status_code})",
                    status_code=status_code
                ) from e
            raise TransientDeliveryError(
                f"Push service error ({status_code}): {e.message}",
                status_code=status_code
            ) from e
        except requests.RequestException as e:
            raise TransientDeliveryError(f"Push request failed: {e!r}") from e

        logger.info(f"[Push] Notification sent to {destination.label}...")


def create_push_channel(settings) -> Optional[PushChannel]:
    """
    Build the push channel, or None when VAPID keys are not configured.

    Args:
        settings: Application Settings

    Returns:
        PushChannel, or None if push is disabled
    """
    if not settings.push_enabled:
        logger.warning("VAPID keys not configured, push notifications disabled")
        return None

    logger.info(f"Push notifications enabled (VAPID subject {settings.vapid_subject})")
    return PushChannel(
        vapid_private_key=settings.vapid_private_key,
        vapid_subject=settings.vapid_subject,
        ttl=settings.push_ttl_seconds
    )
