# app/services/infrastructure/redis_client.py
import json
from typing import Any

import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool

from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class RedisPublishError(Exception):
    """Publishing to a realtime channel failed."""

    def __init__(self, message: str, channel: str):
        super().__init__(message)
        self.channel = channel


class RedisClient:
    """Pooled Redis client used for the family realtime channels."""

    def __init__(self, url: str, max_connections: int = 20):
        self.url = url
        self.max_connections = max_connections
        self.pool: ConnectionPool | None = None
        self.client: redis.Redis | None = None
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> None:
        """Initialize connection pool on startup"""
        if self._initialized:
            return

        try:
            logger.info("Attempting Redis connection", url_preview=self.url.split("@")[-1][:40])

            self.pool = ConnectionPool.from_url(
                self.url,
                max_connections=self.max_connections,
                retry_on_timeout=True,
                socket_connect_timeout=10,
                socket_timeout=10,
                health_check_interval=30,
                decode_responses=True,
            )
            self.client = redis.Redis(connection_pool=self.pool)

            await self.client.ping()
            self._initialized = True
            logger.info("Redis client initialized", max_connections=self.max_connections)

        except Exception as e:
            logger.error("Failed to initialize Redis client", error=str(e))
            self._initialized = False
            raise RuntimeError("Redis initialization failed") from e

    async def close(self) -> None:
        """Clean shutdown"""
        try:
            if self.client:
                await self.client.aclose()
            if self.pool:
                await self.pool.disconnect()
            logger.info("Redis client closed")
        except Exception as e:
            logger.error("Error closing Redis client", error=str(e))
        finally:
            self._initialized = False

    async def ping(self) -> bool:
        if not self._initialized:
            return False
        try:
            return bool(await self.client.ping())
        except Exception as e:
            logger.error("Redis ping failed", error=str(e))
            return False

    async def publish(self, channel: str, message: dict[str, Any]) -> int:
        """
        Publish a JSON message. Returns the number of subscribers that got it.

        Raises RedisPublishError instead of returning False so the caller can
        record the member as not alerted.
        """
        if not self._initialized:
            raise RedisPublishError("Redis client not initialized", channel=channel)

        try:
            return await self.client.publish(channel, json.dumps(message, default=str))
        except redis.RedisError as e:
            raise RedisPublishError(f"Publish failed: {e}", channel=channel) from e
