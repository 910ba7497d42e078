"""
Error taxonomy for the reminder pipeline.

Timing problems are recovered locally, storage problems abort the current
poll tick, and delivery problems are classified at the channel boundary so
they never abort sibling dispatches.
"""


class ReminderError(Exception):
    """Base class for all reminder pipeline errors."""
    pass


class TimingValidationError(ReminderError):
    """Raised for a malformed HH:MM value. Always handled by a fallback."""
    pass


class StorageError(ReminderError):
    """Raised when the persistence layer is unavailable or a query fails."""
    pass


class DatabaseNotConnectedError(StorageError):
    """Raised when database operations are attempted without an active connection pool."""
    pass


class DeliveryError(ReminderError):
    """Base class for channel delivery failures."""

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.status_code = status_code


class TransientDeliveryError(DeliveryError):
    """Provider or network failure that may succeed on a later tick."""
    pass


class PermanentDeliveryError(DeliveryError):
    """The destination will never accept deliveries again without re-registration."""
    pass
