"""
Async PostgreSQL connection and reminder store operations using asyncpg.

Provides connection pooling and the persistence operations of the reminder
pipeline: reminder creation and status transitions, atomic regeneration of a
medication's pending set, due-reminder scans, and the destination lookups the
dispatcher needs.

All methods assume connect() has been called. Every persistence failure is
raised as StorageError so the poller can abort a tick cleanly.
"""

import asyncio
import json
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import asyncpg

from medreminder.core.errors import DatabaseNotConnectedError, StorageError
from medreminder.core.models import (
    Medication,
    MedicationSource,
    PushSubscription,
    Reminder,
    ReminderStatus,
    UserContact,
)
from medreminder.utils.logger import get_logger


logger = get_logger(__name__)


SCHEMA_PATH = Path(__file__).with_name('schema.sql')

STORAGE_EXCEPTIONS = (
    asyncpg.PostgresError,
    asyncpg.InterfaceError,
    OSError,
    asyncio.TimeoutError,
)


def _medication_from_row(row) -> Medication:
    data = dict(row)

    timing = data.get('timing')
    if isinstance(timing, str):
        try:
            timing = json.loads(timing)
        except json.JSONDecodeError:
            # Legacy rows store a single bare time
            timing = [timing]
    if not isinstance(timing, list):
        timing = []
    data['timing'] = timing

    # The records app labels document extraction as 'ai'
    if data.get('source') == 'ai':
        data['source'] = MedicationSource.EXTRACTED.value

    return Medication.model_validate(data)


def _language_from_settings(raw) -> str:
    if not raw:
        return 'en'
    try:
        user_settings = json.loads(raw) if isinstance(raw, str) else dict(raw)
    except (json.JSONDecodeError, TypeError, ValueError):
        return 'en'
    # Valid JSON that is not an object (null, a string, a list) carries no language
    if not isinstance(user_settings, dict):
        return 'en'
    language = user_settings.get('language')
    return language if isinstance(language, str) and language else 'en'


class Database:
    """Async PostgreSQL database connection manager with connection pooling."""

    def __init__(self):
        self.pool: Optional[asyncpg.Pool] = None

    async def connect(self, database_url: Optional[str] = None):
        """
        Create connection pool to PostgreSQL database.

        Args:
            database_url: PostgreSQL connection string

        Raises:
            ValueError: If database_url is not provided
            StorageError: If the pool cannot be created
        """
        if self.pool is not None:
            return

        if not database_url:
            raise ValueError("DATABASE_URL not configured in settings")

        try:
            self.pool = await asyncpg.create_pool(
                database_url,
                min_size=2,
                max_size=10,
                command_timeout=60
            )
        except STORAGE_EXCEPTIONS as e:
            raise StorageError(f"Could not connect to database: {e}") from e

    async def close(self):
        """Close the connection pool."""
        if self.pool:
            await self.pool.close()
            self.pool = None

    def _ensure_connected(self):
        """Verify pool is initialized. Raises DatabaseNotConnectedError if not."""
        if self.pool is None:
            raise DatabaseNotConnectedError(
                "Database pool not initialized. Call await db.connect() first."
            )

    @asynccontextmanager
    async def _connection(self):
        """Acquire a pooled connection, translating driver errors to StorageError."""
        self._ensure_connected()
        try:
            async with self.pool.acquire() as conn:
                yield conn
        except STORAGE_EXCEPTIONS as e:
            raise StorageError(str(e) or e.__class__.__name__) from e

    async def init_schema(self):
        """Create the reminder tables and indexes if they do not exist."""
        ddl = SCHEMA_PATH.read_text(encoding='utf-8')
        async with self._connection() as conn:
            await conn.execute(ddl)
        logger.info("Reminder schema applied")

    # Reminders

    async def create_reminder(
        self,
        medication_id: str,
        scheduled_time: datetime
    ) -> Optional[Reminder]:
        """
        Insert a pending reminder with idempotency.

        Uses ON CONFLICT DO NOTHING on (medication_id, scheduled_time).

        Args:
            medication_id: Owning medication
            scheduled_time: When the reminder is due

        Returns:
            The created Reminder, or None if one already exists for that time
        """
        query = """
            INSERT INTO medication_reminders (medication_id, scheduled_time, status)
            VALUES ($1, $2, 'pending')
            ON CONFLICT (medication_id, scheduled_time) DO NOTHING
            RETURNING *
        """

        async with self._connection() as conn:
            row = await conn.fetchrow(query, medication_id, scheduled_time)
            return Reminder.model_validate(dict(row)) if row else None

    async def list_reminders_by_medication(self, medication_id: str) -> List[Reminder]:
        """
        Get all reminders for a medication, oldest first.

        Args:
            medication_id: Medication ID

        Returns:
            List of reminders (empty list if none found)
        """
        query = """
            SELECT * FROM medication_reminders
            WHERE medication_id = $1
            ORDER BY scheduled_time ASC
        """

        async with self._connection() as conn:
            rows = await conn.fetch(query, medication_id)
            return [Reminder.model_validate(dict(row)) for row in rows]

    async def list_due_reminders(
        self,
        now: datetime,
        limit: Optional[int] = None
    ) -> List[Reminder]:
        """
        Get pending reminders whose scheduled time has passed.

        Args:
            now: Cut-off instant (inclusive)
            limit: Maximum number of rows, None for all

        Returns:
            Due reminders in ascending scheduled_time order
        """
        query = """
            SELECT * FROM medication_reminders
            WHERE status = 'pending'
            AND scheduled_time <= $1
            ORDER BY scheduled_time ASC
            LIMIT $2
        """

        async with self._connection() as conn:
            rows = await conn.fetch(query, now, limit)
            return [Reminder.model_validate(dict(row)) for row in rows]

    async def set_reminder_status(
        self,
        reminder_id: str,
        status: ReminderStatus,
        sent_at: Optional[datetime] = None
    ) -> bool:
        """
        Move a pending reminder to a terminal status.

        A single UPDATE guarded by status = 'pending', so sent and skipped
        reminders never change again.

        Args:
            reminder_id: Reminder ID
            status: New status (SENT or SKIPPED)
            sent_at: Delivery time, recorded for SENT

        Returns:
            True if the row transitioned, False if it was missing or already terminal
        """
        status = ReminderStatus(status)
        if not status.is_terminal:
            raise ValueError("Reminders can only transition to sent or skipped")

        query = """
            UPDATE medication_reminders
            SET status = $2, sent_at = $3
            WHERE id = $1 AND status = 'pending'
        """

        async with self._connection() as conn:
            result = await conn.execute(
                query,
                reminder_id,
                status.value,
                sent_at if status == ReminderStatus.SENT else None
            )
            return result != 'UPDATE 0'

    async def replace_pending_reminders(
        self,
        medication_id: str,
        scheduled_times: Sequence[datetime]
    ) -> List[Reminder]:
        """
        Atomically replace a medication's pending reminders.

        Deletes the still-pending rows and inserts the new set in one
        transaction. Sent and skipped rows are left untouched; a new time
        that collides with one of them is not re-inserted.

        Args:
            medication_id: Medication ID
            scheduled_times: Freshly generated reminder times

        Returns:
            The newly inserted reminders
        """
        delete_query = """
            DELETE FROM medication_reminders
            WHERE medication_id = $1 AND status = 'pending'
        """
        insert_query = """
            INSERT INTO medication_reminders (medication_id, scheduled_time, status)
            SELECT $1, t, 'pending' FROM unnest($2::timestamptz[]) AS t
            ON CONFLICT (medication_id, scheduled_time) DO NOTHING
            RETURNING *
        """

        async with self._connection() as conn:
            async with conn.transaction():
                await conn.execute(delete_query, medication_id)
                if not scheduled_times:
                    return []
                rows = await conn.fetch(insert_query, medication_id, list(scheduled_times))

        reminders = [Reminder.model_validate(dict(row)) for row in rows]
        return sorted(reminders, key=lambda r: r.scheduled_time)

    async def delete_reminders_for_medication(self, medication_id: str) -> int:
        """
        Delete every reminder of a medication, history included.

        Args:
            medication_id: Medication ID

        Returns:
            Number of rows deleted
        """
        query = """
            DELETE FROM medication_reminders WHERE medication_id = $1
        """

        async with self._connection() as conn:
            result = await conn.execute(query, medication_id)
            return int(result.split()[-1])

    # Collaborator records

    async def get_medication(self, medication_id: str) -> Optional[Medication]:
        """
        Fetch a medication by ID.

        Args:
            medication_id: Medication ID

        Returns:
            Medication, or None if not found
        """
        query = """
            SELECT * FROM medications WHERE id = $1
        """

        async with self._connection() as conn:
            row = await conn.fetchrow(query, medication_id)
            return _medication_from_row(row) if row else None

    async def get_user_contact(self, user_id: str) -> Optional[UserContact]:
        """
        Fetch a user's email address and language preference.

        Args:
            user_id: User ID

        Returns:
            UserContact, or None if the user does not exist
        """
        query = """
            SELECT id, email, settings FROM users WHERE id = $1
        """

        async with self._connection() as conn:
            row = await conn.fetchrow(query, user_id)

        if not row:
            return None

        return UserContact(
            user_id=str(row['id']),
            email=row['email'] or None,
            language=_language_from_settings(row['settings'])
        )

    # Push subscriptions

    async def list_push_subscriptions(self, user_id: str) -> List[PushSubscription]:
        """
        Get all push subscriptions of a user, newest first.

        Args:
            user_id: User ID

        Returns:
            List of subscriptions (empty list if none found)
        """
        query = """
            SELECT * FROM push_subscriptions
            WHERE user_id = $1
            ORDER BY created_at DESC
        """

        async with self._connection() as conn:
            rows = await conn.fetch(query, user_id)
            return [PushSubscription.model_validate(dict(row)) for row in rows]

    async def upsert_push_subscription(
        self,
        user_id: str,
        endpoint: str,
        p256dh: str,
        auth: str,
        user_agent: Optional[str] = None
    ) -> PushSubscription:
        """
        Register a push subscription, re-assigning it if the endpoint is known.

        Args:
            user_id: Owning user
            endpoint: Push service endpoint URL
            p256dh: Key-exchange public key
            auth: Authentication secret
            user_agent: Browser user agent, informational

        Returns:
            The stored subscription
        """
        query = """
            INSERT INTO push_subscriptions (user_id, endpoint, p256dh, auth, user_agent)
            VALUES ($1, $2, $3, $4, $5)
            ON CONFLICT (endpoint) DO UPDATE
            SET user_id = EXCLUDED.user_id,
                p256dh = EXCLUDED.p256dh,
                auth = EXCLUDED.auth,
                user_agent = EXCLUDED.user_agent,
                updated_at = NOW()
            RETURNING *
        """

        async with self._connection() as conn:
            row = await conn.fetchrow(query, user_id, endpoint, p256dh, auth, user_agent)
            return PushSubscription.model_validate(dict(row))

    async def delete_push_subscription(self, subscription_id: str) -> bool:
        """
        Delete a push subscription. Safe to call for one that is already gone.

        Args:
            subscription_id: Subscription ID

        Returns:
            True if a row was deleted, False if it no longer existed
        """
        query = """
            DELETE FROM push_subscriptions WHERE id = $1
        """

        async with self._connection() as conn:
            result = await conn.execute(query, subscription_id)
            return result != 'DELETE 0'


# Global database instance
db = Database()
