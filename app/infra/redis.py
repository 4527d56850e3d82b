"""
Redis Connection Management

Singleton Redis connection plus the inbound-message de-duplication store.
Fails open: when Redis is unavailable every message is processed.
"""

import logging
from typing import Optional

import redis.asyncio as redis
from redis.asyncio import Redis
from redis.asyncio.retry import Retry
from redis.backoff import ExponentialBackoff
from redis.exceptions import ConnectionError, TimeoutError, RedisError

from app.config import settings

# Logger
logger = logging.getLogger(__name__)

# App prefix for namespacing (allows multiple apps/versions on same Redis)
APP_PREFIX = "whatsapp-scheduler:v1:"


class RedisClient:
    """
    Manages Redis connection as a singleton.

    Features:
    - Connection pooling
    - Automatic retries
    - Timeouts
    - Graceful failure handling
    """

    _client: Optional[Redis] = None
    _connected: bool = False

    @classmethod
    async def get_client(cls) -> Optional[Redis]:
        """
        Get or create Redis client.

        Returns:
            Redis client or None if connection fails
        """
        if cls._client is not None and cls._connected:
            return cls._client

        try:
            retry = Retry(ExponentialBackoff(), retries=3)

            cls._client = redis.from_url(
                settings.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5.0,
                socket_timeout=5.0,
                retry_on_timeout=True,
                retry=retry,
            )

            await cls._client.ping()
            cls._connected = True
            logger.info("Redis connection established successfully")
            return cls._client

        except (ConnectionError, TimeoutError, RedisError) as e:
            logger.error(f"Failed to connect to Redis: {e}")
            cls._connected = False
            cls._client = None
            return None

    @classmethod
    async def close(cls) -> None:
        """Close Redis connection."""
        if cls._client is not None:
            try:
                await cls._client.aclose()
                logger.info("Redis connection closed")
            except RedisError as e:
                logger.error(f"Error closing Redis connection: {e}")
            finally:
                cls._client = None
                cls._connected = False

    @classmethod
    def is_connected(cls) -> bool:
        """Check if Redis is connected."""
        return cls._connected


async def get_redis() -> Optional[Redis]:
    """
    FastAPI dependency that provides Redis client.

    Returns None if Redis is unavailable.
    """
    return await RedisClient.get_client()


class MessageDeduplicator:
    """
    Remembers inbound WhatsApp message ids.

    Key: whatsapp-scheduler:v1:inbound:{message_id}

    The Cloud API re-delivers webhooks it did not see acknowledged in time;
    claiming the id with SET NX lets only the first delivery through.

    IMPORTANT: Fails OPEN - if Redis is unavailable, messages are processed.
    """

    INBOUND_PREFIX = f"{APP_PREFIX}inbound:"

    def __init__(self, redis_client: Optional[Redis], ttl: Optional[int] = None):
        self.redis = redis_client
        self.ttl = ttl or settings.message_dedup_ttl

    def _key(self, message_id: str) -> str:
        return f"{self.INBOUND_PREFIX}{message_id}"

    async def claim(self, message_id: str) -> bool:
        """
        Claim a message id for processing.

        Returns:
            True if this is the first delivery (or Redis is unavailable),
            False if the id was already claimed
        """
        if not message_id or self.redis is None:
            return True

        try:
            claimed = await self.redis.set(self._key(message_id), "1", nx=True, ex=self.ttl)
            if not claimed:
                logger.info(f"Duplicate delivery of message {message_id}")
            return bool(claimed)

        except RedisError as e:
            logger.error(f"Dedup check failed for {message_id}: {e} - processing anyway")
            return True

    async def release(self, message_id: str) -> None:
        """Forget a claim so a failed message can be retried by the sender."""
        if not message_id or self.redis is None:
            return

        try:
            await self.redis.delete(self._key(message_id))
        except RedisError as e:
            logger.error(f"Failed to release claim on {message_id}: {e}")


async def get_message_deduplicator() -> MessageDeduplicator:
    """
    Get MessageDeduplicator instance.

    Returns a deduplicator even if Redis is unavailable (fails open).
    """
    client = await get_redis()
    return MessageDeduplicator(client)


async def check_redis_health() -> bool:
    """
    Check Redis connectivity for health checks.

    Returns:
        True if Redis is accessible and responding, False otherwise
    """
    try:
        client = await get_redis()
        if client is None:
            return False

        await client.ping()
        return True

    except Exception as e:
        logger.error(f"Redis health check failed: {e}")
        return False
