import redis.asyncio as aioredis
from redis.asyncio import Redis
from redis.asyncio.client import PubSub
from typing import Optional

from schoolfeed.core.config import settings
from schoolfeed.core.logging_config import logger


class RedisClient:
    """Redis client for feed persistence and live change events"""

    def __init__(self, url: Optional[str] = None):
        self.url = url or settings.REDIS_URL
        self.redis: Optional[Redis] = None

    async def connect(self):
        """Connect to Redis"""
        try:
            self.redis = await aioredis.from_url(
                self.url,
                encoding="utf-8",
                decode_responses=True
            )
            logger.info("Redis connected successfully")
        except Exception as e:
            logger.error(f"Redis connection error: {e}")
            raise

    async def disconnect(self):
        """Disconnect from Redis"""
        if self.redis:
            await self.redis.close()
            self.redis = None
        logger.info("Redis disconnected")

    async def publish(self, channel: str, message: str) -> int:
        """Publish a message, returns the number of receivers"""
        try:
            return await self.redis.publish(channel, message)
        except Exception as e:
            logger.error(f"Redis PUBLISH error: {e}")
            return 0

    def pubsub(self) -> PubSub:
        """New pub/sub handle on the main connection pool"""
        return self.redis.pubsub(ignore_subscribe_messages=True)

