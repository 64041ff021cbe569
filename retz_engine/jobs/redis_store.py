"""
Redis-based DriverState store.

Lets several runner processes (or a restarted one) share the state of the
tasks they drive.

Redis Data Structures:
- driver_state:{key}: HASH - serialized DriverState (all values as strings)
"""

import logging
from typing import Optional

import redis
from redis.exceptions import RedisError

from retz_engine.jobs.errors import StateError
from retz_engine.jobs.state import DriverState
from retz_engine.jobs.state_store import StateStore

logger = logging.getLogger(__name__)


class RedisStateStore(StateStore):
    """
    Redis-based storage for driver state.

    Example:
        >>> store = RedisStateStore("redis://localhost:6379")
        >>> store.save("12345-build", state)
        >>> store.load("12345-build")
        DriverState(job_id=42, ...)
    """

    # Redis key prefix
    STATE_PREFIX = "driver_state:"

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379",
        db: int = 0,
        ttl_seconds: Optional[int] = None
    ):
        """
        Initialize Redis connection.

        Args:
            redis_url: Redis connection URL (e.g., redis://localhost:6379)
            db: Redis database number
            ttl_seconds: Expire saved state after this many seconds (None = never)
        """
        self.redis_url = redis_url
        self.db = db
        self.ttl_seconds = ttl_seconds

        # Create connection pool for thread safety
        self.pool = redis.ConnectionPool.from_url(
            redis_url,
            db=db,
            decode_responses=False,  # DriverState.from_dict decodes
            max_connections=20
        )
        self.redis = redis.Redis(connection_pool=self.pool)

        # Test connection
        try:
            self.redis.ping()
            logger.info("Connected to Redis at %s", redis_url)
        except RedisError as e:
            logger.error("Failed to connect to Redis: %s", e)
            raise StateError(f"Failed to connect to Redis at {redis_url}: {e}") from e

    def close(self):
        """Close Redis connections."""
        self.pool.disconnect()
        logger.info("Redis connections closed")

    def load(self, key: str) -> Optional[DriverState]:
        try:
            data = self.redis.hgetall(self._key(key))
        except RedisError as e:
            logger.error("Failed to load state %s: %s", key, e)
            raise StateError(f"Failed to load state {key}: {e}") from e
        if not data:
            return None
        return DriverState.from_dict(data)

    def save(self, key: str, state: DriverState) -> None:
        """
        Replace the stored state.

        Uses a transaction (MULTI/EXEC) so readers never see a hash with
        fields from two different ticks.
        """
        redis_key = self._key(key)
        mapping = {k: str(v) for k, v in state.to_dict().items()}

        pipe = self.redis.pipeline()
        try:
            pipe.delete(redis_key)
            pipe.hset(redis_key, mapping=mapping)
            if self.ttl_seconds:
                pipe.expire(redis_key, self.ttl_seconds)
            pipe.execute()
            logger.debug("Saved state for %s: %r", key, state)
        except RedisError as e:
            logger.error("Failed to save state %s: %s", key, e)
            raise StateError(f"Failed to save state {key}: {e}") from e

    def clear(self, key: str) -> None:
        try:
            self.redis.delete(self._key(key))
            logger.debug("Cleared state for %s", key)
        except RedisError as e:
            logger.error("Failed to clear state %s: %s", key, e)
            raise StateError(f"Failed to clear state {key}: {e}") from e

    def _key(self, key: str) -> str:
        return f"{self.STATE_PREFIX}{key}"
