"""Redis client management."""

import redis.asyncio as redis
from redis.asyncio import Redis

from geotrigger.core.config import get_settings

# Global connection pool
_pool: redis.ConnectionPool | None = None


async def init_redis_pool() -> None:
    """Initialize Redis connection pool."""
    global _pool
    if _pool is None:
        settings = get_settings()
        _pool = redis.ConnectionPool.from_url(
            settings.redis_url,
            decode_responses=True,
            max_connections=20,
            socket_timeout=5.0,
        )


async def close_redis_pool() -> None:
    """Close Redis connection pool."""
    global _pool
    if _pool is not None:
        await _pool.disconnect()
        _pool = None


def get_redis() -> Redis:
    """Get Redis client from pool.

    Returns:
        Redis client instance

    Raises:
        RuntimeError: If pool not initialized
    """
    if _pool is None:
        raise RuntimeError("Redis pool not initialized. Call init_redis_pool() first.")
    return redis.Redis(connection_pool=_pool)


# Key prefixes
class RedisKeys:
    """Redis key patterns."""

    # Rules
    RULE_DETAIL = "geotrigger:rules:detail:{rule_id}"
    RULE_BY_USER = "geotrigger:rules:by_user:{user_id}"
    RULE_ALL = "geotrigger:rules:all"

    # Location events and their attempts
    EVENT_DETAIL = "geotrigger:events:detail:{event_id}"
    EVENT_TIMELINE = "geotrigger:events:timeline"
    EVENT_BY_WALLET = "geotrigger:events:by_wallet:{public_key}"
    EVENT_BY_USER = "geotrigger:events:by_user:{user_id}"
    EVENT_BY_RULE = "geotrigger:events:by_rule:{rule_id}"

    # Rate limiting
    HISTORY = "geotrigger:history:{rule_id}:{public_key}"

    # WebAuthn
    PASSKEY = "geotrigger:passkeys:{public_key}"

    # Quorum presence
    PRESENCE = "geotrigger:presence:{rule_id}"
    PRESENCE_SINCE = "geotrigger:presence:since:{rule_id}"

    # Ingestion
    PROCESSED = "geotrigger:processed:{match_id}"
    EXECUTION_QUEUE = "geotrigger:execution:queue"
    INFLIGHT = "geotrigger:execution:inflight:{event_id}:{rule_id}:{public_key}"
    INFLIGHT_KEY = "geotrigger:execution:inflight_by_key:{rule_id}:{public_key}"

    @classmethod
    def rule_detail(cls, rule_id: int) -> str:
        return cls.RULE_DETAIL.format(rule_id=rule_id)

    @classmethod
    def rule_by_user(cls, user_id: str) -> str:
        return cls.RULE_BY_USER.format(user_id=user_id)

    @classmethod
    def event_detail(cls, event_id: str) -> str:
        return cls.EVENT_DETAIL.format(event_id=event_id)

    @classmethod
    def event_by_wallet(cls, public_key: str) -> str:
        return cls.EVENT_BY_WALLET.format(public_key=public_key)

    @classmethod
    def event_by_user(cls, user_id: str) -> str:
        return cls.EVENT_BY_USER.format(user_id=user_id)

    @classmethod
    def event_by_rule(cls, rule_id: int) -> str:
        return cls.EVENT_BY_RULE.format(rule_id=rule_id)

    @classmethod
    def history(cls, rule_id: int, public_key: str) -> str:
        return cls.HISTORY.format(rule_id=rule_id, public_key=public_key)

    @classmethod
    def passkey(cls, public_key: str) -> str:
        return cls.PASSKEY.format(public_key=public_key)

    @classmethod
    def presence(cls, rule_id: int) -> str:
        return cls.PRESENCE.format(rule_id=rule_id)

    @classmethod
    def presence_since(cls, rule_id: int) -> str:
        return cls.PRESENCE_SINCE.format(rule_id=rule_id)

    @classmethod
    def processed(cls, match_id: str) -> str:
        return cls.PROCESSED.format(match_id=match_id)

    @classmethod
    def inflight(cls, event_id: str, rule_id: int, public_key: str) -> str:
        return cls.INFLIGHT.format(event_id=event_id, rule_id=rule_id, public_key=public_key)

    @classmethod
    def inflight_key(cls, rule_id: int, public_key: str) -> str:
        return cls.INFLIGHT_KEY.format(rule_id=rule_id, public_key=public_key)
