"""Auxiliary storage operations (history, passkeys, presence, idempotency, queues)."""

import json
from datetime import datetime, timedelta

from redis.asyncio import Redis
from redis.exceptions import WatchError

from geotrigger.core.config import get_settings
from geotrigger.core.logging import get_logger
from geotrigger.models.execution import RuleExecutionHistory
from geotrigger.storage.redis_client import RedisKeys, get_redis

logger = get_logger(__name__)


class IdempotencyStore:
    """Idempotency check storage for ingested geo-matches."""

    TTL_SECONDS = 3600  # 1 hour

    def __init__(self, redis: Redis | None = None):
        self._redis = redis

    @property
    def redis(self) -> Redis:
        return self._redis or get_redis()

    async def mark_processed(self, match_id: str) -> bool:
        """Mark a match as processed.

        Args:
            match_id: Match identifier to mark

        Returns:
            True if newly marked, False if already existed
        """
        key = RedisKeys.processed(match_id)
        result = await self.redis.set(key, "1", nx=True, ex=self.TTL_SECONDS)
        return bool(result)


class HistoryStore:
    """RuleExecutionHistory rows, one Redis hash per (rule, wallet)."""

    def __init__(self, redis: Redis | None = None, max_retries: int | None = None):
        self._redis = redis
        self._max_retries = max_retries or get_settings().transition_max_retries

    @property
    def redis(self) -> Redis:
        return self._redis or get_redis()

    async def get(self, rule_id: int, public_key: str) -> RuleExecutionHistory:
        """Get history for a key; an empty row when nothing executed yet."""
        data = await self.redis.hgetall(RedisKeys.history(rule_id, public_key))
        return _history_from_hash(rule_id, public_key, data)

    async def record_execution(
        self,
        rule_id: int,
        public_key: str,
        window_seconds: int | None,
        executed_at: datetime | None = None,
    ) -> RuleExecutionHistory:
        """Upsert the history row after a completed execution.

        The current window restarts at this execution when the previous
        window has elapsed (or none was configured).
        """
        key = RedisKeys.history(rule_id, public_key)
        executed_at = executed_at or datetime.utcnow()

        async with self.redis.pipeline(transaction=True) as pipe:
            for _ in range(self._max_retries):
                try:
                    await pipe.watch(key)
                    row = _history_from_hash(rule_id, public_key, await pipe.hgetall(key))

                    window_open = (
                        window_seconds
                        and row.window_started_at is not None
                        and executed_at - row.window_started_at < timedelta(seconds=window_seconds)
                    )
                    if window_open:
                        row.window_count += 1
                    else:
                        row.window_started_at = executed_at
                        row.window_count = 1
                    row.execution_count += 1
                    if row.last_execution_at is None or executed_at > row.last_execution_at:
                        row.last_execution_at = executed_at

                    pipe.multi()
                    pipe.hset(key, mapping=_history_to_hash(row))
                    await pipe.execute()
                    return row
                except WatchError:
                    logger.debug("History upsert raced, retrying", rule_id=rule_id)
                    continue

        raise RuntimeError(f"Could not record execution for rule {rule_id}: too much contention")


class PasskeyRegistry:
    """Passkey public keys registered per wallet on the execution surface."""

    def __init__(self, redis: Redis | None = None):
        self._redis = redis

    @property
    def redis(self) -> Redis:
        return self._redis or get_redis()

    async def get(self, public_key: str) -> str | None:
        """Registered passkey (hex, uncompressed P-256 point) for a wallet."""
        return await self.redis.get(RedisKeys.passkey(public_key))

    async def register(self, public_key: str, passkey_hex: str) -> None:
        await self.redis.set(RedisKeys.passkey(public_key), passkey_hex.lower())


class PresenceStore:
    """Which wallets the geo-matcher recently reported in range of a rule."""

    def __init__(self, redis: Redis | None = None, ttl_seconds: int | None = None):
        self._redis = redis
        self._ttl = ttl_seconds or get_settings().presence_ttl_seconds

    @property
    def redis(self) -> Redis:
        return self._redis or get_redis()

    async def mark_in_range(self, rule_id: int, public_key: str, seen_at: datetime | None = None) -> None:
        """Record an in-range report.

        A report more than the presence TTL after the previous one starts a
        new stay, resetting the wallet's in-range-since time.
        """
        seen_at = seen_at or datetime.utcnow()
        key = RedisKeys.presence(rule_id)
        since_key = RedisKeys.presence_since(rule_id)

        last_seen = await self.redis.zscore(key, public_key)
        if last_seen is None or seen_at.timestamp() - last_seen > self._ttl:
            await self.redis.hset(since_key, public_key, seen_at.isoformat())
        else:
            await self.redis.hsetnx(since_key, public_key, seen_at.isoformat())

        await self.redis.zadd(key, {public_key: seen_at.timestamp()})
        await self.redis.expire(key, self._ttl * 2)
        await self.redis.expire(since_key, self._ttl * 2)

    async def mark_out_of_range(self, rule_id: int, public_key: str) -> None:
        await self.redis.zrem(RedisKeys.presence(rule_id), public_key)
        await self.redis.hdel(RedisKeys.presence_since(rule_id), public_key)

    async def dwell_seconds(self, rule_id: int, public_key: str, now: datetime | None = None) -> float | None:
        """Seconds the wallet has been continuously in range.

        Returns:
            None when the wallet is not currently in range
        """
        now = now or datetime.utcnow()
        last_seen = await self.redis.zscore(RedisKeys.presence(rule_id), public_key)
        if last_seen is None or now.timestamp() - last_seen > self._ttl:
            return None
        since = await self.redis.hget(RedisKeys.presence_since(rule_id), public_key)
        if not since:
            return None
        return max((now - datetime.fromisoformat(since)).total_seconds(), 0.0)

    async def present_wallets(self, rule_id: int, now: datetime | None = None) -> set[str]:
        now = now or datetime.utcnow()
        cutoff = (now - timedelta(seconds=self._ttl)).timestamp()
        members = await self.redis.zrangebyscore(RedisKeys.presence(rule_id), min=cutoff, max="+inf")
        return set(members)


class ExecutionQueue:
    """Queue of auto-executable attempts for the worker."""

    def __init__(self, redis: Redis | None = None):
        self._redis = redis

    @property
    def redis(self) -> Redis:
        return self._redis or get_redis()

    async def enqueue(self, rule_id: int, public_key: str, event_id: str) -> None:
        payload = json.dumps({"rule_id": rule_id, "public_key": public_key, "event_id": event_id})
        await self.redis.lpush(RedisKeys.EXECUTION_QUEUE, payload)

    async def dequeue(self, timeout: int = 2) -> tuple[int, str, str] | None:
        """Get next queued attempt as (rule_id, public_key, event_id)."""
        result = await self.redis.brpop(RedisKeys.EXECUTION_QUEUE, timeout=timeout)
        if not result:
            return None
        _, data = result
        item = json.loads(data)
        return int(item["rule_id"]), item["public_key"], item["event_id"]

    async def queue_length(self) -> int:
        return await self.redis.llen(RedisKeys.EXECUTION_QUEUE)


def _history_from_hash(rule_id: int, public_key: str, data: dict) -> RuleExecutionHistory:
    def _dt(value: str | None) -> datetime | None:
        return datetime.fromisoformat(value) if value else None

    return RuleExecutionHistory(
        rule_id=rule_id,
        public_key=public_key,
        last_execution_at=_dt(data.get("last_execution_at")),
        execution_count=int(data.get("execution_count", 0)),
        window_started_at=_dt(data.get("window_started_at")),
        window_count=int(data.get("window_count", 0)),
    )


def _history_to_hash(row: RuleExecutionHistory) -> dict[str, str]:
    return {
        "last_execution_at": row.last_execution_at.isoformat() if row.last_execution_at else "",
        "execution_count": str(row.execution_count),
        "window_started_at": row.window_started_at.isoformat() if row.window_started_at else "",
        "window_count": str(row.window_count),
    }
