"""
Common delivery contract for reminder channels.

Every channel exposes send(destination, message) and always returns a
DeliveryResult. Backends signal failures by raising TransientDeliveryError
or PermanentDeliveryError; send() converts them (and any unexpected
exception, as transient) into a classified result so one destination can
never abort its siblings.
"""

from abc import ABC, abstractmethod
from typing import Any

from medreminder.core.errors import PermanentDeliveryError, TransientDeliveryError
from medreminder.core.models import DeliveryResult, DeliveryStatus, ReminderMessage
from medreminder.utils.logger import get_logger


logger = get_logger(__name__)


class Channel(ABC):
    """Base class for a delivery channel."""

    name: str = "channel"

    @abstractmethod
    async def _deliver(self, destination: Any, message: ReminderMessage) -> None:
        """Deliver one message. Raise a DeliveryError subclass on failure."""

    def describe(self, destination: Any) -> str:
        """Short destination label for logs and results."""
        return str(destination)

    def _result(self, destination: Any, status: DeliveryStatus, detail: str = None) -> DeliveryResult:
        return DeliveryResult(
            channel=self.name,
            destination=self.describe(destination),
            status=status,
            detail=detail
        )

    async def send(self, destination: Any, message: ReminderMessage) -> DeliveryResult:
        """
        Send a message and classify the outcome.

        Args:
            destination: Channel-specific destination
            message: Rendered reminder content

        Returns:
            DeliveryResult with SUCCESS, TRANSIENT or PERMANENT status
        """
        try:
            await self._deliver(destination, message)
        except PermanentDeliveryError as e:
            return self._result(destination, DeliveryStatus.PERMANENT, str(e))
        except TransientDeliveryError as e:
            return self._result(destination, DeliveryStatus.TRANSIENT, str(e))
        except Exception as e:
            logger.error(
                f"Unexpected {self.name} delivery error for {self.describe(destination)}: {e}",
                exc_info=True
            )
            return self._result(destination, DeliveryStatus.TRANSIENT, repr(e))

        return self._result(destination, DeliveryStatus.SUCCESS)
