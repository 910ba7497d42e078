"""
Domain models for medication reminders and their delivery destinations.

Records coming back from asyncpg are plain dicts; these Pydantic models give
them a validated shape before they move through the pipeline.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class MedicationStatus(str, Enum):
    """Lifecycle of a medication course."""
    ACTIVE = "active"
    STOPPED = "stopped"
    COMPLETED = "completed"


class MedicationSource(str, Enum):
    """Where a medication record came from."""
    MANUAL = "manual"
    EXTRACTED = "extracted"


class ReminderStatus(str, Enum):
    """Reminder states. SENT and SKIPPED are terminal."""
    PENDING = "pending"
    SENT = "sent"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self is not ReminderStatus.PENDING


class DeliveryStatus(str, Enum):
    """Outcome of one send attempt on one destination."""
    SUCCESS = "success"
    TRANSIENT = "transient"
    PERMANENT = "permanent"


class Medication(BaseModel):
    """A medication course owned by one user."""

    model_config = ConfigDict(use_enum_values=False)

    id: str
    user_id: str
    name: str
    dosage: str
    frequency: str
    timing: List[str] = Field(default_factory=list)
    start_date: datetime
    end_date: Optional[datetime] = None
    status: MedicationStatus = MedicationStatus.ACTIVE
    instructions: Optional[str] = None
    source: MedicationSource = MedicationSource.MANUAL

    @property
    def is_active(self) -> bool:
        return self.status == MedicationStatus.ACTIVE


class Reminder(BaseModel):
    """One scheduled dose notification."""

    id: str
    medication_id: str
    scheduled_time: datetime
    status: ReminderStatus = ReminderStatus.PENDING
    sent_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class PushSubscription(BaseModel):
    """A browser push destination registered by a user."""

    id: str
    user_id: str
    endpoint: str
    p256dh: str
    auth: str
    user_agent: Optional[str] = None

    def to_webpush_info(self) -> Dict[str, Any]:
        """Subscription dict in the shape pywebpush expects."""
        return {
            "endpoint": self.endpoint,
            "keys": {"p256dh": self.p256dh, "auth": self.auth},
        }

    @property
    def label(self) -> str:
        return self.endpoint[:50]


class UserContact(BaseModel):
    """Contact details needed to reach a reminder's owner."""

    user_id: str
    email: Optional[str] = None
    language: str = "en"


class ReminderMessage(BaseModel):
    """Rendered reminder content for every channel."""

    subject: str
    title: str
    text_body: str
    html_body: str
    push_payload: Dict[str, Any]


class DeliveryResult(BaseModel):
    """Classified result of sending one message to one destination."""

    channel: str
    destination: str
    status: DeliveryStatus
    detail: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == DeliveryStatus.SUCCESS
