"""
Redis lease that keeps poll ticks from overlapping across processes.

A tick runs only while its process holds the lease key. The holder renews
the key while its tick runs; the key expires on its own, so a crashed
process cannot block ticks for longer than the TTL.
"""

import uuid
from typing import Optional

import redis.asyncio as redis

from medreminder.utils.logger import get_logger


logger = get_logger(__name__)


# Delete the key only if it still holds our token
RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""

# Extend the TTL only if the key still holds our token
RENEW_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("pexpire", KEYS[1], ARGV[2])
end
return 0
"""


class TickLease:
    """
    Redis-based mutual exclusion for the reminder poller.

    Uses SET NX EX so acquiring is a single atomic operation.
    """

    LEASE_KEY = "medreminder:poller:tick"

    def __init__(self, ttl_seconds: int = 300):
        self.ttl_seconds = ttl_seconds
        self.redis_client: Optional[redis.Redis] = None
        self._token: Optional[str] = None

    async def connect(self, redis_url: str):
        """
        Connect to Redis server.

        Args:
            redis_url: Redis connection string

        Raises:
            ValueError: If redis_url is empty
        """
        if self.redis_client is not None:
            return

        if not redis_url:
            raise ValueError("REDIS_URL not configured in settings")

        self.redis_client = redis.from_url(
            redis_url,
            encoding="utf-8",
            decode_responses=True
        )
        logger.info("Connected to Redis for tick lease")

    async def close(self):
        """Close Redis connection."""
        if self.redis_client:
            await self.redis_client.aclose()
            self.redis_client = None
            logger.info("Closed Redis connection")

    async def acquire(self) -> bool:
        """
        Try to take the lease.

        Returns:
            True if this process now holds the lease, False if another does

        Raises:
            redis.RedisError: If Redis is unreachable
        """
        token = uuid.uuid4().hex
        acquired = await self.redis_client.set(
            self.LEASE_KEY,
            token,
            nx=True,
            ex=self.ttl_seconds
        )
        if acquired:
            self._token = token
            return True
        return False

    async def renew(self) -> bool:
        """
        Push the lease expiry ttl_seconds into the future.

        Returns:
            True if this process still held the lease and it was extended,
            False if the lease had already expired or been taken over

        Raises:
            redis.RedisError: If Redis is unreachable
        """
        if self._token is None:
            return False

        renewed = await self.redis_client.eval(
            RENEW_SCRIPT,
            1,
            self.LEASE_KEY,
            self._token,
            self.ttl_seconds * 1000
        )
        return bool(renewed)

    async def release(self):
        """Release the lease if this process still holds it."""
        if self._token is None:
            return

        token, self._token = self._token, None
        try:
            await self.redis_client.eval(RELEASE_SCRIPT, 1, self.LEASE_KEY, token)
        except redis.RedisError as e:
            # The key expires on its own after ttl_seconds
            logger.warning(f"Failed to release tick lease: {e}")
